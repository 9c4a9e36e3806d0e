"""Outbound URL safety checks (SSRF defense).

Two phases:

1. ``validate_url`` - static check of the literal URL: HTTPS only, and the
   host must not be localhost or a private/reserved address.
2. ``check_resolved`` - run right before each delivery attempt: resolve the
   hostname and reject if *any* returned address is private. This closes the
   DNS rebinding window between registration and delivery.

If resolution itself fails the check fails open by default and lets the HTTP
call fail on its own. Pass ``fail_closed=True`` to treat it as unsafe.

Neither phase performs the webhook HTTP call.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from collections.abc import Awaitable, Callable
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[list[str]]]

PRIVATE_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
)

INVALID_URL = "Invalid URL format"
HTTPS_REQUIRED = "URL must use HTTPS protocol"
PRIVATE_HOST = "Webhooks to private IP addresses or localhost are not allowed"
RESOLVES_PRIVATE = "URL resolves to a private IP address"
RESOLUTION_FAILED = "URL hostname could not be resolved"


class UrlCheck(BaseModel):
    """Outcome of a URL safety check."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    valid: bool
    reason: str | None = None


_OK = UrlCheck(valid=True)


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def is_private_address(host: str) -> bool:
    """Check whether a hostname or IP literal points at a private network.

    Examples:
        >>> is_private_address("192.168.1.1")
        True
        >>> is_private_address("LOCALHOST")
        True
        >>> is_private_address("8.8.8.8")
        False
    """
    normalized = host.strip().strip("[]").rstrip(".").lower()
    if normalized == "localhost" or normalized.endswith(".localhost"):
        return True

    address = _parse_ip(normalized)
    if address is None:
        return False
    return any(address in network for network in PRIVATE_NETWORKS)


def _hostname(url: str) -> str | None:
    try:
        parts = urlsplit(url.strip())
        # Accessing port validates it; bad ports raise ValueError
        _ = parts.port
    except ValueError:
        return None
    return parts.hostname


def validate_url(url: str) -> UrlCheck:
    """Static safety check on the literal URL string.

    Args:
        url: The webhook URL.

    Returns:
        UrlCheck with valid=False and a reason when the URL is rejected.
    """
    if not isinstance(url, str) or not url.strip():
        return UrlCheck(valid=False, reason=INVALID_URL)

    try:
        scheme = urlsplit(url.strip()).scheme.lower()
    except ValueError:
        return UrlCheck(valid=False, reason=INVALID_URL)

    if scheme != "https":
        return UrlCheck(valid=False, reason=HTTPS_REQUIRED)

    hostname = _hostname(url)
    if not hostname:
        return UrlCheck(valid=False, reason=INVALID_URL)

    if is_private_address(hostname):
        return UrlCheck(valid=False, reason=PRIVATE_HOST)

    return _OK


async def resolve_host(hostname: str) -> list[str]:
    """Resolve a hostname to the unique set of addresses it maps to."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return sorted({str(info[4][0]) for info in infos})


async def check_resolved(
    url: str,
    resolver: Resolver | None = None,
    fail_closed: bool = False,
    timeout_seconds: float = 5.0,
) -> UrlCheck:
    """Resolve the URL's hostname and reject it if any address is private.

    Args:
        url: The webhook URL (assumed to have passed ``validate_url``).
        resolver: Async callable returning addresses for a hostname.
        fail_closed: Treat resolution failure as unsafe instead of allowing it.
        timeout_seconds: Upper bound on the DNS lookup.

    Returns:
        UrlCheck for this attempt.
    """
    hostname = _hostname(url)
    if not hostname:
        return UrlCheck(valid=False, reason=INVALID_URL)

    # IP literals were fully checked by the static phase
    if _parse_ip(hostname.strip("[]")) is not None:
        return _OK

    resolve = resolver or resolve_host
    try:
        async with asyncio.timeout(timeout_seconds):
            addresses = await resolve(hostname)
    except (OSError, TimeoutError) as e:
        logger.debug("DNS resolution failed for %s: %s", hostname, e)
        addresses = []

    if not addresses:
        if fail_closed:
            return UrlCheck(valid=False, reason=RESOLUTION_FAILED)
        return _OK

    for address in addresses:
        if is_private_address(address.split("%", 1)[0]):
            logger.warning("Webhook host %s resolves to private address %s", hostname, address)
            return UrlCheck(valid=False, reason=RESOLVES_PRIVATE)

    return _OK


class UrlSafetyValidator:
    """Runs both URL safety phases with a fixed resolver and failure policy.

    Example:
        ```python
        validator = UrlSafetyValidator(fail_closed=False)
        check = await validator.validate("https://hooks.example.com/in")
        if not check.valid:
            print(check.reason)
        ```
    """

    def __init__(
        self,
        resolver: Resolver | None = None,
        fail_closed: bool = False,
        dns_timeout_seconds: float = 5.0,
    ) -> None:
        self._resolver = resolver
        self._fail_closed = fail_closed
        self._dns_timeout = dns_timeout_seconds

    def validate_static(self, url: str) -> UrlCheck:
        """Static check only (used at registration time)."""
        return validate_url(url)

    async def validate(self, url: str) -> UrlCheck:
        """Static check followed by the DNS re-check (used per attempt)."""
        check = validate_url(url)
        if not check.valid:
            return check
        return await check_resolved(
            url,
            resolver=self._resolver,
            fail_closed=self._fail_closed,
            timeout_seconds=self._dns_timeout,
        )


__all__ = [
    "PRIVATE_NETWORKS",
    "Resolver",
    "UrlCheck",
    "UrlSafetyValidator",
    "check_resolved",
    "is_private_address",
    "resolve_host",
    "validate_url",
]
