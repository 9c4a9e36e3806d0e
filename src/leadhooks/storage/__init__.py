"""Storage backends for Leadhooks.

This module provides the persistence layer for webhooks, their delivery
history and pending retries.

Example:
    ```python
    from leadhooks.storage import create_store

    async with create_store(settings) as store:
        await store.create_webhook(endpoint)
        hooks = await store.get_webhooks_for_event("lead.created")
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import WebhookStore
from .memory import InMemoryWebhookStore
from .sql import SQLWebhookStore

if TYPE_CHECKING:
    from leadhooks.config import Settings


def create_store(settings: Settings) -> WebhookStore:
    """Create the store selected by settings.

    Returns a SQLWebhookStore when ``database_url`` is set, otherwise an
    InMemoryWebhookStore.
    """
    if settings.database_url:
        return SQLWebhookStore(settings.database_url)
    return InMemoryWebhookStore()


__all__ = [
    "InMemoryWebhookStore",
    "SQLWebhookStore",
    "WebhookStore",
    "create_store",
]
