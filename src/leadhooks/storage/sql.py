"""SQLAlchemy-backed webhook store.

Works with any async SQLAlchemy driver (``postgresql+asyncpg``,
``sqlite+aiosqlite``). Atomicity comes from the database:

- ``record_failure`` is one ``UPDATE ... RETURNING`` that increments the
  counter and flips ``enabled`` in the same statement
- ``claim_due`` takes each due row with a conditional ``UPDATE`` on the
  lease column, so two workers never claim the same retry

Timestamps are stored in UTC and normalized back to aware datetimes.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    delete,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from leadhooks.exceptions import StorageError
from leadhooks.models import (
    DeliveryAttempt,
    FailureUpdate,
    PendingDelivery,
    WebhookEndpoint,
    WebhookPayload,
    utc_now,
)

from .base import WebhookStore

logger = logging.getLogger(__name__)

metadata = MetaData()

webhooks_table = Table(
    "webhooks",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("url", Text, nullable=False),
    Column("events", JSON, nullable=False),
    Column("secret", String(255), nullable=True),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("failure_count", Integer, nullable=False, default=0),
    Column("last_triggered_at", DateTime(timezone=True), nullable=True),
    Column("last_status_code", Integer, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

deliveries_table = Table(
    "webhook_deliveries",
    metadata,
    Column("id", String(64), primary_key=True),
    Column(
        "webhook_id",
        String(64),
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("event", String(64), nullable=False),
    Column("payload", JSON, nullable=False),
    Column("status_code", Integer, nullable=True),
    Column("response_body", Text, nullable=True),
    Column("error", Text, nullable=True),
    Column("attempt", Integer, nullable=False, default=0),
    Column("attempted_at", DateTime(timezone=True), nullable=False, index=True),
    Column("duration_ms", Integer, nullable=False, default=0),
)

pending_table = Table(
    "webhook_pending_deliveries",
    metadata,
    Column("id", String(64), primary_key=True),
    Column(
        "webhook_id",
        String(64),
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("payload", JSON, nullable=False),
    Column("next_attempt_index", Integer, nullable=False),
    Column("next_attempt_at", DateTime(timezone=True), nullable=False, index=True),
    Column("claimed_until", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

_WEBHOOK_COLUMNS = frozenset(c.name for c in webhooks_table.columns) - {"id", "created_at"}


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _from_db(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _webhook_from_row(row: Any) -> WebhookEndpoint:
    return WebhookEndpoint(
        id=row.id,
        name=row.name,
        url=row.url,
        events=list(row.events),
        secret=row.secret,
        enabled=row.enabled,
        failure_count=row.failure_count,
        last_triggered_at=_from_db(row.last_triggered_at),
        last_status_code=row.last_status_code,
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
    )


def _attempt_from_row(row: Any) -> DeliveryAttempt:
    return DeliveryAttempt(
        id=row.id,
        webhook_id=row.webhook_id,
        event=row.event,
        payload=WebhookPayload.model_validate(row.payload),
        status_code=row.status_code,
        response_body=row.response_body,
        error=row.error,
        attempt=row.attempt,
        attempted_at=_from_db(row.attempted_at),
        duration_ms=row.duration_ms,
    )


def _pending_from_row(row: Any) -> PendingDelivery:
    return PendingDelivery(
        id=row.id,
        webhook_id=row.webhook_id,
        payload=WebhookPayload.model_validate(row.payload),
        next_attempt_index=row.next_attempt_index,
        next_attempt_at=_from_db(row.next_attempt_at),
        claimed_until=_from_db(row.claimed_until),
        created_at=_from_db(row.created_at),
    )


class SQLWebhookStore(WebhookStore):
    """WebhookStore on top of an async SQLAlchemy engine.

    Example:
        ```python
        store = SQLWebhookStore("postgresql+asyncpg://localhost/crm")
        await store.initialize()
        await store.create_webhook(endpoint)
        ```
    """

    def __init__(
        self,
        url: str | None = None,
        engine: AsyncEngine | None = None,
        create_tables: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            url: Database URL for ``create_async_engine``.
            engine: Existing engine to use instead of ``url``.
            create_tables: Create missing tables on ``initialize``.
        """
        if engine is None and url is None:
            raise ValueError("SQLWebhookStore requires a database url or an engine")
        self._url = url
        self._engine = engine
        self._owns_engine = engine is None
        self._create_tables = create_tables

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise StorageError("Store not initialized. Call initialize() first.")
        return self._engine

    async def initialize(self) -> None:
        if self._engine is None:
            assert self._url is not None
            self._engine = create_async_engine(self._url)
        if self._create_tables:
            async with self._transaction() as conn:
                await conn.run_sync(metadata.create_all)
        logger.info("SQL webhook store initialized")

    async def close(self) -> None:
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncConnection]:
        try:
            async with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            logger.error("Webhook store operation failed: %s", e)
            raise StorageError(f"Database operation failed: {e}") from e

    # Webhooks

    async def create_webhook(self, webhook: WebhookEndpoint) -> WebhookEndpoint:
        async with self._transaction() as conn:
            await conn.execute(
                insert(webhooks_table).values(
                    id=webhook.id,
                    name=webhook.name,
                    url=webhook.url,
                    events=list(webhook.events),
                    secret=webhook.secret,
                    enabled=webhook.enabled,
                    failure_count=webhook.failure_count,
                    last_triggered_at=_to_db(webhook.last_triggered_at),
                    last_status_code=webhook.last_status_code,
                    created_at=_to_db(webhook.created_at),
                    updated_at=_to_db(webhook.updated_at),
                )
            )
        return webhook

    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None:
        async with self._transaction() as conn:
            result = await conn.execute(
                select(webhooks_table).where(webhooks_table.c.id == webhook_id)
            )
            row = result.first()
        return _webhook_from_row(row) if row else None

    async def list_webhooks(self, include_disabled: bool = True) -> list[WebhookEndpoint]:
        stmt = select(webhooks_table).order_by(webhooks_table.c.created_at.desc())
        if not include_disabled:
            stmt = stmt.where(webhooks_table.c.enabled.is_(True))
        async with self._transaction() as conn:
            result = await conn.execute(stmt)
            rows = result.all()
        return [_webhook_from_row(row) for row in rows]

    async def get_webhooks_for_event(self, event_type: str) -> list[WebhookEndpoint]:
        # JSON containment differs per dialect; the enabled set is small
        webhooks = await self.list_webhooks(include_disabled=False)
        return [w for w in webhooks if w.subscribes_to(event_type)]

    async def update_webhook(self, webhook_id: str, **updates: Any) -> WebhookEndpoint | None:
        unknown = set(updates) - _WEBHOOK_COLUMNS
        if unknown:
            raise ValueError(f"Unknown webhook fields: {sorted(unknown)}")

        values = dict(updates)
        values.setdefault("updated_at", utc_now())
        for key in ("updated_at", "last_triggered_at"):
            if key in values:
                values[key] = _to_db(values[key])
        if "events" in values:
            values["events"] = list(values["events"])

        async with self._transaction() as conn:
            result = await conn.execute(
                update(webhooks_table)
                .where(webhooks_table.c.id == webhook_id)
                .values(**values)
                .returning(*webhooks_table.columns)
            )
            row = result.first()
        return _webhook_from_row(row) if row else None

    async def delete_webhook(self, webhook_id: str) -> bool:
        async with self._transaction() as conn:
            await conn.execute(
                delete(deliveries_table).where(deliveries_table.c.webhook_id == webhook_id)
            )
            await conn.execute(
                delete(pending_table).where(pending_table.c.webhook_id == webhook_id)
            )
            result = await conn.execute(
                delete(webhooks_table).where(webhooks_table.c.id == webhook_id)
            )
        return result.rowcount > 0

    # Failure tracking

    async def record_success(
        self,
        webhook_id: str,
        status_code: int | None,
        at: datetime,
    ) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                update(webhooks_table)
                .where(webhooks_table.c.id == webhook_id)
                .values(
                    failure_count=0,
                    last_triggered_at=_to_db(at),
                    last_status_code=status_code,
                    updated_at=_to_db(at),
                )
            )

    async def record_failure(
        self,
        webhook_id: str,
        status_code: int | None,
        at: datetime,
        threshold: int,
    ) -> FailureUpdate | None:
        c = webhooks_table.c
        async with self._transaction() as conn:
            result = await conn.execute(
                update(webhooks_table)
                .where(c.id == webhook_id)
                .values(
                    failure_count=c.failure_count + 1,
                    enabled=case((c.failure_count + 1 >= threshold, False), else_=c.enabled),
                    last_triggered_at=_to_db(at),
                    last_status_code=status_code,
                    updated_at=_to_db(at),
                )
                .returning(c.failure_count, c.enabled)
            )
            row = result.first()

        if row is None:
            return None
        return FailureUpdate(
            disabled=row.failure_count >= threshold and not row.enabled,
            failure_count=row.failure_count,
        )

    async def touch(self, webhook_id: str, status_code: int | None, at: datetime) -> None:
        async with self._transaction() as conn:
            await conn.execute(
                update(webhooks_table)
                .where(webhooks_table.c.id == webhook_id)
                .values(
                    last_triggered_at=_to_db(at),
                    last_status_code=status_code,
                    updated_at=_to_db(at),
                )
            )

    # Delivery log

    async def log_delivery(self, attempt: DeliveryAttempt) -> str:
        async with self._transaction() as conn:
            exists = await conn.scalar(
                select(webhooks_table.c.id).where(webhooks_table.c.id == attempt.webhook_id)
            )
            if exists is None:
                logger.debug("Dropping delivery log for deleted webhook %s", attempt.webhook_id)
                return attempt.id
            await conn.execute(
                insert(deliveries_table).values(
                    id=attempt.id,
                    webhook_id=attempt.webhook_id,
                    event=attempt.event,
                    payload=attempt.payload.model_dump(mode="json"),
                    status_code=attempt.status_code,
                    response_body=attempt.response_body,
                    error=attempt.error,
                    attempt=attempt.attempt,
                    attempted_at=_to_db(attempt.attempted_at),
                    duration_ms=attempt.duration_ms,
                )
            )
        return attempt.id

    async def list_deliveries(
        self,
        webhook_id: str,
        limit: int = 20,
        offset: int = 0,
    ) -> list[DeliveryAttempt]:
        stmt = (
            select(deliveries_table)
            .where(deliveries_table.c.webhook_id == webhook_id)
            .order_by(deliveries_table.c.attempted_at.desc(), deliveries_table.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._transaction() as conn:
            result = await conn.execute(stmt)
            rows = result.all()
        return [_attempt_from_row(row) for row in rows]

    async def count_deliveries(self, webhook_id: str) -> int:
        async with self._transaction() as conn:
            total = await conn.scalar(
                select(func.count())
                .select_from(deliveries_table)
                .where(deliveries_table.c.webhook_id == webhook_id)
            )
        return int(total or 0)

    # Pending retries

    async def add_pending(self, pending: PendingDelivery) -> str:
        async with self._transaction() as conn:
            await conn.execute(
                insert(pending_table).values(
                    id=pending.id,
                    webhook_id=pending.webhook_id,
                    payload=pending.payload.model_dump(mode="json"),
                    next_attempt_index=pending.next_attempt_index,
                    next_attempt_at=_to_db(pending.next_attempt_at),
                    claimed_until=_to_db(pending.claimed_until),
                    created_at=_to_db(pending.created_at),
                )
            )
        return pending.id

    async def claim_due(
        self,
        now: datetime,
        limit: int,
        lease_until: datetime,
    ) -> list[PendingDelivery]:
        c = pending_table.c
        now_db = _to_db(now)
        claimable = and_(
            c.next_attempt_at <= now_db,
            or_(c.claimed_until.is_(None), c.claimed_until <= now_db),
        )

        claimed: list[PendingDelivery] = []
        async with self._transaction() as conn:
            result = await conn.execute(
                select(c.id).where(claimable).order_by(c.next_attempt_at).limit(limit)
            )
            candidate_ids = [row.id for row in result.all()]

            for pending_id in candidate_ids:
                # Re-check the lease so a concurrent worker's claim wins
                result = await conn.execute(
                    update(pending_table)
                    .where(and_(c.id == pending_id, claimable))
                    .values(claimed_until=_to_db(lease_until))
                    .returning(*pending_table.columns)
                )
                row = result.first()
                if row is not None:
                    claimed.append(_pending_from_row(row))

        return claimed

    async def delete_pending(self, pending_id: str) -> None:
        async with self._transaction() as conn:
            await conn.execute(delete(pending_table).where(pending_table.c.id == pending_id))

    async def list_pending(self, webhook_id: str | None = None) -> list[PendingDelivery]:
        stmt = select(pending_table).order_by(pending_table.c.next_attempt_at)
        if webhook_id is not None:
            stmt = stmt.where(pending_table.c.webhook_id == webhook_id)
        async with self._transaction() as conn:
            result = await conn.execute(stmt)
            rows = result.all()
        return [_pending_from_row(row) for row in rows]


__all__ = [
    "SQLWebhookStore",
    "deliveries_table",
    "metadata",
    "pending_table",
    "webhooks_table",
]
