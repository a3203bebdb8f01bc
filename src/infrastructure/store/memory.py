# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory document store.

Single-process adapter for tests and local development. Every operation
yields to the event loop once before touching state, so concurrent call
chains interleave between operations the way network round trips would,
while each individual operation stays atomic.

Thread-safety: designed for single-threaded async use only.
"""

import asyncio
import copy
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import uuid4

from src.infrastructure.store.base import (
    SERVER_TIMESTAMP,
    Document,
    DocumentNotFoundError,
    DocumentStore,
    FieldFilter,
    IncrementLimitError,
    Subscription,
    SubscriptionCallback,
    matches_all,
    order_documents,
)
from src.utils.datetime import format_iso, utc_now

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed DocumentStore with live subscriptions.

    Attributes:
        _collections: collection name -> doc id -> document body.
        _subscriptions: collection name -> open subscriptions.
        _locks: scope name -> lock, held while the scope has users.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize an empty store.

        Args:
            clock: Source of server timestamps.
        """
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        logger.debug("InMemoryDocumentStore initialized")

    async def close(self) -> None:
        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                await subscription.close()
        self._subscriptions.clear()

    # ========== Documents ==========

    async def create(self, collection: str, data: dict[str, Any]) -> Document:
        await asyncio.sleep(0)
        doc_id = uuid4().hex
        body = self._resolve(data)
        self._collection(collection)[doc_id] = body
        self._notify(collection, None, body)
        return self._snapshot(doc_id, body)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        await asyncio.sleep(0)
        body = self._collection(collection).get(doc_id)
        if body is None:
            return None
        return self._snapshot(doc_id, body)

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
    ) -> Document:
        await asyncio.sleep(0)
        docs = self._collection(collection)
        before = docs.get(doc_id)
        if before is None:
            raise DocumentNotFoundError(collection, doc_id)

        after = {**before, **self._resolve(changes)}
        after = {k: v for k, v in after.items() if v is not None}
        docs[doc_id] = after
        self._notify(collection, before, after)
        return self._snapshot(doc_id, after)

    async def delete(self, collection: str, doc_id: str) -> bool:
        await asyncio.sleep(0)
        before = self._collection(collection).pop(doc_id, None)
        if before is None:
            return False
        self._notify(collection, before, None)
        return True

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        await asyncio.sleep(0)
        results = self._select(collection, filters, order_by, descending)
        if limit is not None:
            results = results[:limit]
        return results

    async def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int = 1,
        max_value: int | None = None,
    ) -> int:
        await asyncio.sleep(0)
        docs = self._collection(collection)
        before = docs.get(doc_id)
        if before is None:
            raise DocumentNotFoundError(collection, doc_id)

        new_value = int(before.get(field_name, 0)) + amount
        if max_value is not None and new_value > max_value:
            raise IncrementLimitError(collection, doc_id, field_name, max_value)

        after = {**before, field_name: new_value}
        docs[doc_id] = after
        self._notify(collection, before, after)
        return new_value

    # ========== Subscriptions & locks ==========

    async def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        callback: SubscriptionCallback,
        order_by: str | None = None,
        descending: bool = False,
    ) -> Subscription:
        await asyncio.sleep(0)
        subscription = Subscription(
            collection,
            filters,
            callback,
            on_close=self._remove_subscription,
            order_by=order_by,
            descending=descending,
        )
        self._subscriptions.setdefault(collection, []).append(subscription)
        logger.debug("Subscribed to %s with %d filters", collection, len(filters))

        subscription.deliver(
            self._select(collection, subscription.filters, order_by, descending)
        )
        return subscription

    @asynccontextmanager
    async def lock(self, scope: str) -> AsyncIterator[None]:
        scope_lock = self._locks.setdefault(scope, asyncio.Lock())
        self._lock_users[scope] = self._lock_users.get(scope, 0) + 1
        try:
            async with scope_lock:
                yield
        finally:
            # Forget the scope once no holder or waiter is left
            self._lock_users[scope] -= 1
            if not self._lock_users[scope]:
                del self._lock_users[scope]
                del self._locks[scope]

    def subscription_count(self, collection: str | None = None) -> int:
        """Number of open subscriptions, optionally for one collection."""
        if collection is not None:
            return len(self._subscriptions.get(collection, []))
        return sum(len(subs) for subs in self._subscriptions.values())

    # ========== Internals ==========

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        """Copy ``data`` replacing SERVER_TIMESTAMP with the clock."""
        stamp = format_iso(self._clock())
        return {
            key: stamp if value is SERVER_TIMESTAMP else copy.deepcopy(value)
            for key, value in data.items()
        }

    def _snapshot(self, doc_id: str, body: dict[str, Any]) -> Document:
        return Document(id=doc_id, data=copy.deepcopy(body))

    def _select(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        order_by: str | None,
        descending: bool,
    ) -> list[Document]:
        matching = [
            self._snapshot(doc_id, body)
            for doc_id, body in self._collection(collection).items()
            if matches_all(body, filters)
        ]
        return order_documents(matching, order_by, descending)

    def _notify(
        self,
        collection: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        """Push fresh result sets to subscriptions the write touched."""
        for subscription in list(self._subscriptions.get(collection, [])):
            touched = (before is not None and matches_all(before, subscription.filters)) or (
                after is not None and matches_all(after, subscription.filters)
            )
            if not touched:
                continue
            subscription.deliver(
                self._select(
                    collection,
                    subscription.filters,
                    subscription.order_by,
                    subscription.descending,
                )
            )

    async def _remove_subscription(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.collection, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
