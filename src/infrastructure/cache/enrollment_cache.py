# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Read-through cache of active enrollments with live updates.

Entries are keyed by (EnrollmentView, key): a student id for the
"by student" partition, a teacher id for the "by teacher" partition.

A cold get() queries the store directly and opens a live subscription
for the key. From then on the store pushes the full active set on every
matching change, so the entry stays fresh for as long as the
subscription is open; the TTL only governs when a cold fetch is redone.

One cache belongs to one session. Call cleanup() (or leave the
``async with`` block) on logout so subscriptions never outlive the
identity that opened them.

Example:
    async with EnrollmentCache(store, ttl_seconds=300) as cache:
        classes = await cache.get(student_id, EnrollmentView.STUDENT)
        roster = await cache.get(teacher_id, EnrollmentView.TEACHER)

Thread-safety: single-threaded async use only.
"""

import time
from collections.abc import Callable
from typing import Any

from src.infrastructure.events import EventBus, EventData, EventPatterns
from src.infrastructure.store import (
    ENROLLMENTS,
    Document,
    DocumentStore,
    FieldFilter,
    StoreError,
    Subscription,
    where,
)
from src.models.enrollment import Enrollment, EnrollmentStatus, EnrollmentView
from src.utils.logging import get_logger

logger = get_logger(__name__)

CacheKey = tuple[EnrollmentView, str]

DEFAULT_TTL_SECONDS = 300.0


class EnrollmentCache:
    """Per-session cache of active enrollments by student and by teacher.

    Attributes:
        store: Document store to read and subscribe through.
        ttl_seconds: Age after which a cached entry is fetched again.
    """

    def __init__(
        self,
        store: DocumentStore,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize an empty cache.

        Args:
            store: Document store.
            ttl_seconds: Freshness window for cold-fetched entries.
            event_bus: Optional bus; enrollment events drop entries that
                have no open subscription.
            clock: Monotonic seconds source.
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._entries: dict[CacheKey, list[Enrollment]] = {}
        self._updated_at: dict[CacheKey, float] = {}
        # None marks a subscription whose setup is still in flight
        self._subscriptions: dict[CacheKey, Subscription | None] = {}
        # Bumped on every push and invalidation
        self._generations: dict[CacheKey, int] = {}
        # Bumped by cleanup(); work started before it is discarded
        self._epoch = 0

        self._hits = 0
        self._misses = 0

        self._detach: Callable[[], bool] | None = None
        if event_bus is not None:
            self._detach = event_bus.subscribe(
                EventPatterns.ALL_ENROLLMENT, self._on_enrollment_event
            )

    async def __aenter__(self) -> "EnrollmentCache":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.cleanup()

    async def get(
        self,
        key: str,
        role: EnrollmentView = EnrollmentView.STUDENT,
        force_refresh: bool = False,
    ) -> list[Enrollment]:
        """Active enrollments for a student or teacher, newest first.

        Args:
            key: Student id or teacher id.
            role: Which partition ``key`` belongs to.
            force_refresh: Query the store even if the entry is warm.

        Returns:
            The cached list. Repeated warm hits return the same object.

        Raises:
            StoreError: If the direct query fails.
        """
        cache_key = (role, key)
        if not force_refresh and self._is_warm(cache_key):
            self._hits += 1
            return self._entries[cache_key]

        self._misses += 1
        epoch = self._epoch
        generation = self._generations.get(cache_key, 0)

        documents = await self.store.query(
            ENROLLMENTS,
            self._filters(cache_key),
            order_by="enrolledAt",
            descending=True,
        )
        enrollments = [Enrollment.from_document(d) for d in documents]

        if self._epoch != epoch:
            logger.debug("enrollment_cache_query_after_cleanup", role=role.value, key=key)
            return enrollments

        if self._generations.get(cache_key, 0) == generation:
            self._store_entry(cache_key, enrollments)
        else:
            logger.debug(
                "enrollment_cache_stale_query_dropped",
                role=role.value,
                key=key,
            )
            enrollments = self._entries.get(cache_key, enrollments)

        await self._ensure_subscription(cache_key)
        return self._entries.get(cache_key, enrollments)

    def peek(
        self,
        key: str,
        role: EnrollmentView = EnrollmentView.STUDENT,
    ) -> list[Enrollment] | None:
        """Cached list for a key without touching the store or the TTL."""
        return self._entries.get((role, key))

    def invalidate(self, key: str, role: EnrollmentView | None = None) -> None:
        """Drop a cached entry. Its subscription stays open.

        Args:
            key: Student id or teacher id.
            role: Partition to drop from. None drops the key from both.
        """
        roles = [role] if role is not None else list(EnrollmentView)
        for view in roles:
            cache_key = (view, key)
            self._entries.pop(cache_key, None)
            self._updated_at.pop(cache_key, None)
            self._generations[cache_key] = self._generations.get(cache_key, 0) + 1

    def has_subscription(
        self,
        key: str,
        role: EnrollmentView = EnrollmentView.STUDENT,
    ) -> bool:
        """Whether a live subscription is open for the key."""
        return self._subscriptions.get((role, key)) is not None

    async def cleanup(self) -> None:
        """Close every subscription and forget all cached state.

        A get() still waiting on the store when this runs returns its
        result without caching it or opening a subscription.
        """
        self._epoch += 1
        if self._detach is not None:
            self._detach()
            self._detach = None

        subscriptions = [s for s in self._subscriptions.values() if s is not None]
        self._subscriptions.clear()
        for subscription in subscriptions:
            await subscription.close()

        self._entries.clear()
        self._updated_at.clear()
        self._generations.clear()

        logger.info("enrollment_cache_cleaned_up", closed_subscriptions=len(subscriptions))

    def get_stats(self) -> dict[str, Any]:
        """Entry, subscription and hit/miss counters."""
        established = sum(1 for s in self._subscriptions.values() if s is not None)
        return {
            "entries": len(self._entries),
            "subscriptions": established,
            "pending_subscriptions": len(self._subscriptions) - established,
            "hits": self._hits,
            "misses": self._misses,
            "ttl_seconds": self.ttl_seconds,
        }

    # ========== Internals ==========

    def _is_warm(self, cache_key: CacheKey) -> bool:
        if cache_key not in self._entries or cache_key not in self._subscriptions:
            return False
        updated_at = self._updated_at.get(cache_key)
        return updated_at is not None and self._clock() - updated_at < self.ttl_seconds

    @staticmethod
    def _filters(cache_key: CacheKey) -> list[FieldFilter]:
        role, key = cache_key
        return [
            where(role.field, "==", key),
            where("status", "==", EnrollmentStatus.ACTIVE.value),
        ]

    def _store_entry(self, cache_key: CacheKey, enrollments: list[Enrollment]) -> None:
        """Replace an entry, keeping the existing list when content is unchanged."""
        current = self._entries.get(cache_key)
        if current is None or current != enrollments:
            self._entries[cache_key] = enrollments
        self._updated_at[cache_key] = self._clock()

    async def _ensure_subscription(self, cache_key: CacheKey) -> None:
        """Open the live subscription for a key unless one exists or is pending."""
        if cache_key in self._subscriptions:
            return
        # Placeholder goes in before the first await
        self._subscriptions[cache_key] = None
        epoch = self._epoch

        role, key = cache_key
        try:
            subscription = await self.store.subscribe(
                ENROLLMENTS,
                self._filters(cache_key),
                lambda documents: self._on_push(cache_key, documents),
                order_by="enrolledAt",
                descending=True,
            )
        except StoreError as e:
            logger.error(
                "enrollment_cache_subscribe_failed",
                role=role.value,
                key=key,
                error=str(e),
            )
            if (
                self._epoch == epoch
                and cache_key in self._subscriptions
                and self._subscriptions[cache_key] is None
            ):
                del self._subscriptions[cache_key]
            return

        if self._epoch != epoch:
            # cleanup() ran while the subscription was being set up
            await subscription.close()
            return

        self._subscriptions[cache_key] = subscription
        logger.debug("enrollment_cache_subscribed", role=role.value, key=key)

    def _on_push(self, cache_key: CacheKey, documents: list[Document]) -> None:
        if cache_key not in self._subscriptions:
            return
        self._generations[cache_key] = self._generations.get(cache_key, 0) + 1
        self._store_entry(cache_key, [Enrollment.from_document(d) for d in documents])

    async def _on_enrollment_event(self, event: EventData) -> None:
        """Drop entries a local write made stale and no subscription refreshes."""
        targets = (
            (EnrollmentView.STUDENT, event.payload.get("student_id")),
            (EnrollmentView.TEACHER, event.payload.get("teacher_id")),
        )
        for role, key in targets:
            if key is None:
                continue
            if self._subscriptions.get((role, key)) is None:
                self.invalidate(key, role)
