"""Single-attempt webhook delivery with timing and failure classification.

One call to ``DeliveryExecutor.deliver`` is one attempt:

- URL safety (static + DNS re-check) gates the attempt; a rejected URL
  returns immediately with status 0 and no network I/O
- The body is the exact ``payload.to_json()`` string, signed when the
  endpoint has a secret
- The whole attempt is bounded by the configured timeout (max 30s)
- At most ``max_response_bytes`` of the response body are read
- Redirects are not followed, so a 3xx cannot bounce the request to an
  address the safety check never saw

``deliver`` never raises; every outcome is a ``DeliveryResult``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

import httpx

from leadhooks.models import DeliveryResult

from .signing import sign
from .url_safety import UrlSafetyValidator

if TYPE_CHECKING:
    from leadhooks.models import WebhookEndpoint, WebhookPayload

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Leadhooks-Webhook/1.0"
DEFAULT_TIMEOUT_SECONDS = 30.0
MAX_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RESPONSE_BYTES = 10_000


def build_headers(
    endpoint: WebhookEndpoint,
    payload: WebhookPayload,
    body: str,
    user_agent: str = DEFAULT_USER_AGENT,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Build the request headers for a delivery.

    X-Webhook-Signature is only present when the endpoint has a secret.
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": user_agent,
        "X-Webhook-ID": payload.id,
        "X-Webhook-Event": payload.event,
        "X-Webhook-Timestamp": str(timestamp if timestamp is not None else int(time.time())),
    }
    if endpoint.secret:
        headers["X-Webhook-Signature"] = sign(endpoint.secret, body)
    return headers


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


async def _read_limited(response: httpx.Response, limit: int) -> str | None:
    """Read at most ``limit`` bytes of the response body.

    Stops pulling from the stream once the limit is reached, so memory use is
    bounded regardless of what the server sends. Undecodable bytes, including
    a character split by the cut, are dropped so the UTF-8 encoded text never
    exceeds ``limit`` bytes.
    """
    if limit <= 0:
        return None

    chunks: list[bytes] = []
    size = 0
    try:
        async for chunk in response.aiter_bytes():
            chunk = chunk[: limit - size]
            chunks.append(chunk)
            size += len(chunk)
            if size >= limit:
                break
    except httpx.TimeoutException:
        raise
    except httpx.HTTPError as e:
        # Keep whatever arrived; the status code already classifies the attempt
        logger.debug("Failed to read webhook response body: %s", e)

    text = b"".join(chunks).decode("utf-8", errors="ignore")
    return text or None


class DeliveryExecutor:
    """Performs one timed, signed HTTP POST to a webhook endpoint.

    Example:
        ```python
        executor = DeliveryExecutor(UrlSafetyValidator(), timeout_seconds=10)
        result = await executor.deliver(endpoint, payload)
        if not result.success:
            print(result.status_code, result.error)
        ```
    """

    def __init__(
        self,
        validator: UrlSafetyValidator | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            validator: URL safety validator run before every attempt.
            timeout_seconds: Per-attempt timeout, capped at MAX_TIMEOUT_SECONDS.
            max_response_bytes: Maximum response body bytes to read and keep.
            user_agent: User-Agent header value.
            transport: Optional httpx transport (used by tests).
        """
        self._validator = validator or UrlSafetyValidator()
        self._timeout = min(max(timeout_seconds, 0.001), MAX_TIMEOUT_SECONDS)
        self._max_response_bytes = max(0, max_response_bytes)
        self._user_agent = user_agent
        self._transport = transport

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    @property
    def max_response_bytes(self) -> int:
        return self._max_response_bytes

    async def deliver(self, endpoint: WebhookEndpoint, payload: WebhookPayload) -> DeliveryResult:
        """Deliver a payload to an endpoint once.

        Args:
            endpoint: Target webhook.
            payload: Payload to send (serialized with ``to_json()``).

        Returns:
            DeliveryResult describing the attempt. Never raises.
        """
        started = time.monotonic()
        try:
            return await self._deliver(endpoint, payload, started)
        except Exception as e:
            logger.exception("Webhook delivery error for %s: %s", endpoint.id, e)
            return DeliveryResult(
                success=False,
                status_code=None,
                duration_ms=_elapsed_ms(started),
                error=f"Unexpected error: {e}",
            )

    def _timed_out(self, started: float) -> DeliveryResult:
        return DeliveryResult(
            success=False,
            status_code=None,
            duration_ms=_elapsed_ms(started),
            error=f"Request timeout after {int(self._timeout * 1000)}ms",
        )

    async def _deliver(
        self,
        endpoint: WebhookEndpoint,
        payload: WebhookPayload,
        started: float,
    ) -> DeliveryResult:
        # DNS re-check and HTTP exchange share one deadline
        try:
            async with asyncio.timeout(self._timeout):
                check = await self._validator.validate(endpoint.url)
        except TimeoutError:
            return self._timed_out(started)
        if not check.valid:
            logger.warning("Webhook %s blocked by URL safety check: %s", endpoint.id, check.reason)
            return DeliveryResult(
                success=False,
                status_code=0,
                duration_ms=_elapsed_ms(started),
                error=check.reason,
            )

        body = payload.to_json()
        headers = build_headers(endpoint, payload, body, self._user_agent)

        remaining = self._timeout - (time.monotonic() - started)
        try:
            async with asyncio.timeout(remaining):
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    transport=self._transport,
                    follow_redirects=False,
                ) as client:
                    async with client.stream(
                        "POST",
                        endpoint.url,
                        content=body.encode("utf-8"),
                        headers=headers,
                    ) as response:
                        status_code = response.status_code
                        reason = response.reason_phrase
                        response_body = await _read_limited(response, self._max_response_bytes)
        except (httpx.TimeoutException, TimeoutError):
            return self._timed_out(started)
        except httpx.ConnectError as e:
            # Refused connections, DNS failures and TLS handshake errors
            return DeliveryResult(
                success=False,
                status_code=None,
                duration_ms=_elapsed_ms(started),
                error=f"Connection failed: {e}",
            )
        except httpx.HTTPError as e:
            return DeliveryResult(
                success=False,
                status_code=None,
                duration_ms=_elapsed_ms(started),
                error=f"Request failed: {e}",
            )

        duration_ms = _elapsed_ms(started)
        success = 200 <= status_code < 300

        if success:
            logger.info(
                "Webhook delivered: %s to %s (status %d)",
                payload.event,
                endpoint.id,
                status_code,
            )
        else:
            logger.warning(
                "Webhook rejected: %s to %s (status %d)",
                payload.event,
                endpoint.id,
                status_code,
            )

        return DeliveryResult(
            success=success,
            status_code=status_code,
            response_body=response_body,
            duration_ms=duration_ms,
            error=None if success else f"HTTP {status_code} {reason}".strip(),
        )


__all__ = [
    "DEFAULT_MAX_RESPONSE_BYTES",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_USER_AGENT",
    "MAX_TIMEOUT_SECONDS",
    "DeliveryExecutor",
    "build_headers",
]
