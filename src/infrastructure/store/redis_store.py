# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis-backed document store.

Key layout (``{prefix}`` comes from STORE_KEY_PREFIX):

- ``{prefix}:{collection}:doc:{id}``: JSON document body
- ``{prefix}:{collection}:ids``: set of ids in the collection
- ``{prefix}:changes:{collection}``: pub/sub channel, one message per write
- ``{prefix}:lock:{scope}``: distributed scope locks

Updates and increments run as WATCH/MULTI transactions so concurrent
writers never lose each other's changes. Queries load the whole
collection and filter client-side, which is fine at the size of one
school's enrollments.

Subscriptions share a single pattern subscription on the change channels.
Each write notification makes the listener re-run the queries of every
subscription on that collection and push the fresh result sets.

Example:
    store = RedisDocumentStore(settings)
    await store.connect()
    doc = await store.create("inviteCodes", {"code": "AB12CD34"})
    await store.close()
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.client import Pipeline, PubSub
from redis.exceptions import LockError
from redis.exceptions import RedisError as BaseRedisError

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
    matches_all,
    order_documents,
)
from src.utils.datetime import format_iso, utc_now

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = logging.getLogger(__name__)


class RedisDocumentStore(DocumentStore):
    """DocumentStore over redis-py's asyncio client.

    Attributes:
        _pool: The Redis connection pool.
        _redis: The Redis client, None until connect().
        _subscriptions: collection name -> open subscriptions.
    """

    def __init__(
        self,
        settings: "Settings",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the store.

        Args:
            settings: Application settings with redis and store sections.
            clock: Source of server timestamps.
        """
        self._settings = settings
        self._prefix = settings.store.key_prefix
        self._clock = clock
        self._pool: ConnectionPool | None = None
        self._redis: Redis | None = None
        self._pubsub: PubSub | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._listener_lock = asyncio.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}

    async def connect(self) -> None:
        """Create the connection pool and verify the server answers.

        Raises:
            StoreError: If connection fails.
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._settings.redis.url,
                max_connections=self._settings.redis.max_connections,
                decode_responses=True,
            )
            self._redis = Redis(connection_pool=self._pool)
            await self._redis.ping()
        except BaseRedisError as e:
            raise StoreError("Failed to connect to Redis", e) from e

    async def close(self) -> None:
        """Stop the change listener, close subscriptions and the pool."""
        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None

        for subscriptions in list(self._subscriptions.values()):
            for subscription in list(subscriptions):
                await subscription.close()
        self._subscriptions.clear()

        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    # ========== Documents ==========

    async def create(self, collection: str, data: dict[str, Any]) -> Document:
        redis = self._ensure_connected()
        doc_id = uuid4().hex
        body = self._resolve(data)
        try:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.set(self._doc_key(collection, doc_id), json.dumps(body))
                pipe.sadd(self._index_key(collection), doc_id)
                await pipe.execute()
        except BaseRedisError as e:
            raise StoreError(f"Failed to create document in {collection}", e) from e

        await self._publish_change(collection, doc_id)
        return Document(id=doc_id, data=body)

    async def get(self, collection: str, doc_id: str) -> Document | None:
        redis = self._ensure_connected()
        try:
            raw = await redis.get(self._doc_key(collection, doc_id))
        except BaseRedisError as e:
            raise StoreError(f"Failed to read {collection}/{doc_id}", e) from e

        if raw is None:
            return None
        return Document(id=doc_id, data=json.loads(raw))

    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
    ) -> Document:
        redis = self._ensure_connected()
        key = self._doc_key(collection, doc_id)
        resolved = self._resolve(changes)

        async def apply(pipe: Pipeline) -> dict[str, Any]:
            raw = await pipe.get(key)
            if raw is None:
                raise DocumentNotFoundError(collection, doc_id)
            body = {**json.loads(raw), **resolved}
            body = {k: v for k, v in body.items() if v is not None}
            pipe.multi()
            pipe.set(key, json.dumps(body))
            return body

        try:
            body = await redis.transaction(apply, key, value_from_callable=True)
        except BaseRedisError as e:
            raise StoreError(f"Failed to update {collection}/{doc_id}", e) from e

        await self._publish_change(collection, doc_id)
        return Document(id=doc_id, data=body)

    async def delete(self, collection: str, doc_id: str) -> bool:
        redis = self._ensure_connected()
        try:
            async with redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._doc_key(collection, doc_id))
                pipe.srem(self._index_key(collection), doc_id)
                deleted, _ = await pipe.execute()
        except BaseRedisError as e:
            raise StoreError(f"Failed to delete {collection}/{doc_id}", e) from e

        if not deleted:
            return False
        await self._publish_change(collection, doc_id)
        return True

    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        redis = self._ensure_connected()
        try:
            ids = sorted(await redis.smembers(self._index_key(collection)))
            raws = await redis.mget([self._doc_key(collection, i) for i in ids]) if ids else []
        except BaseRedisError as e:
            raise StoreError(f"Failed to query {collection}", e) from e

        documents = []
        for doc_id, raw in zip(ids, raws):
            # Index entries can briefly outlive a deleted body
            if raw is None:
                continue
            body = json.loads(raw)
            if matches_all(body, filters):
                documents.append(Document(id=doc_id, data=body))

        documents = order_documents(documents, order_by, descending)
        if limit is not None:
            documents = documents[:limit]
        return documents

    async def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int = 1,
        max_value: int | None = None,
    ) -> int:
        redis = self._ensure_connected()
        key = self._doc_key(collection, doc_id)

        async def apply(pipe: Pipeline) -> int:
            raw = await pipe.get(key)
            if raw is None:
                raise DocumentNotFoundError(collection, doc_id)
            body = json.loads(raw)
            new_value = int(body.get(field_name, 0)) + amount
            if max_value is not None and new_value > max_value:
                raise IncrementLimitError(collection, doc_id, field_name, max_value)
            body[field_name] = new_value
            pipe.multi()
            pipe.set(key, json.dumps(body))
            return new_value

        try:
            new_value = await redis.transaction(apply, key, value_from_callable=True)
        except BaseRedisError as e:
            raise StoreError(f"Failed to increment {collection}/{doc_id}.{field_name}", e) from e

        await self._publish_change(collection, doc_id)
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
        await self._ensure_listener()

        subscription = Subscription(
            collection,
            filters,
            callback,
            on_close=self._remove_subscription,
            order_by=order_by,
            descending=descending,
        )
        self._subscriptions.setdefault(collection, []).append(subscription)

        try:
            documents = await self.query(collection, filters, order_by, descending)
        except StoreError:
            await subscription.close()
            raise

        subscription.deliver(documents)
        return subscription

    @asynccontextmanager
    async def lock(self, scope: str) -> AsyncIterator[None]:
        redis = self._ensure_connected()
        scope_lock = redis.lock(
            f"{self._prefix}:lock:{scope}",
            timeout=self._settings.store.lock_timeout,
            blocking_timeout=self._settings.store.lock_blocking_timeout,
        )
        try:
            acquired = await scope_lock.acquire()
        except BaseRedisError as e:
            raise StoreError(f"Failed to acquire lock: {scope}", e) from e
        if not acquired:
            raise StoreError(f"Timed out waiting for lock: {scope}")

        try:
            yield
        finally:
            try:
                await scope_lock.release()
            except LockError:
                logger.warning("Lock %s expired before it was released", scope)

    # ========== Internals ==========

    def _ensure_connected(self) -> Redis:
        """Return the client or raise if connect() has not run.

        Raises:
            StoreError: If not connected.
        """
        if self._redis is None:
            raise StoreError("Redis document store not connected. Call connect() first.")
        return self._redis

    def _doc_key(self, collection: str, doc_id: str) -> str:
        return f"{self._prefix}:{collection}:doc:{doc_id}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:ids"

    def _channel(self, collection: str) -> str:
        return f"{self._prefix}:changes:{collection}"

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        stamp = format_iso(self._clock())
        return {key: stamp if value is SERVER_TIMESTAMP else value for key, value in data.items()}

    async def _publish_change(self, collection: str, doc_id: str) -> None:
        """Notify subscribers of a committed write.

        The write already stands, so a failed notification is logged and
        never reported as a failed write.
        """
        redis = self._ensure_connected()
        try:
            await redis.publish(self._channel(collection), doc_id)
        except BaseRedisError as e:
            logger.warning(
                "Failed to publish change for %s/%s: %s",
                collection,
                doc_id,
                str(e),
            )

    async def _ensure_listener(self) -> None:
        """Start the shared change listener once."""
        async with self._listener_lock:
            if self._listener_task is not None:
                return

            redis = self._ensure_connected()
            pubsub = redis.pubsub()
            try:
                await pubsub.psubscribe(self._channel("*"))
            except BaseRedisError as e:
                await pubsub.aclose()
                raise StoreError("Failed to subscribe to change notifications", e) from e

            self._pubsub = pubsub
            self._listener_task = asyncio.create_task(self._listen(pubsub))

    async def _listen(self, pubsub: PubSub) -> None:
        prefix_len = len(self._channel(""))
        try:
            async for message in pubsub.listen():
                if message["type"] != "pmessage":
                    continue
                await self._dispatch(message["channel"][prefix_len:])
        except BaseRedisError as e:
            logger.error("Change listener stopped: %s", str(e), exc_info=True)
            self._listener_task = None
            if self._pubsub is pubsub:
                self._pubsub = None
            with contextlib.suppress(BaseRedisError):
                await pubsub.aclose()

    async def _dispatch(self, collection: str) -> None:
        for subscription in list(self._subscriptions.get(collection, [])):
            try:
                documents = await self.query(
                    collection,
                    subscription.filters,
                    subscription.order_by,
                    subscription.descending,
                )
            except StoreError as e:
                logger.error(
                    "Failed to refresh subscription on %s: %s",
                    collection,
                    str(e),
                )
                continue
            subscription.deliver(documents)

    async def _remove_subscription(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.collection, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
