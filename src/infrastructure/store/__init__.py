# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Document store interface and adapters.

Example:
    from src.infrastructure.store import create_document_store, where

    store = create_document_store(settings)
    await store.connect()
    docs = await store.query("enrollments", [where("status", "==", "active")])
    await store.close()
"""

from typing import TYPE_CHECKING

from src.infrastructure.store.base import (
    SERVER_TIMESTAMP,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    FieldFilter,
    IncrementLimitError,
    StoreError,
    Subscription,
    SubscriptionCallback,
    where,
)
from src.infrastructure.store.memory import InMemoryDocumentStore

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Collection names
INVITE_CODES = "inviteCodes"
ENROLLMENTS = "enrollments"


def create_document_store(settings: "Settings") -> DocumentStore:
    """Build the adapter selected by ``settings.store.backend``.

    The caller still has to ``await store.connect()``.
    """
    if settings.store.backend == "redis":
        from src.infrastructure.store.redis_store import RedisDocumentStore

        return RedisDocumentStore(settings)
    return InMemoryDocumentStore()


__all__ = [
    "SERVER_TIMESTAMP",
    "Document",
    "DocumentNotFoundError",
    "DocumentStore",
    "FieldFilter",
    "IncrementLimitError",
    "InMemoryDocumentStore",
    "StoreError",
    "Subscription",
    "SubscriptionCallback",
    "where",
    "create_document_store",
    "INVITE_CODES",
    "ENROLLMENTS",
]
