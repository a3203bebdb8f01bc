# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the enrollment read-through cache."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.domains.records import new_enrollment_document
from src.infrastructure.cache import EnrollmentCache
from src.infrastructure.store import ENROLLMENTS, StoreError
from src.models.enrollment import EnrollmentSource, EnrollmentView

STUDENT = "student-1"
TEACHER = "teacher-1"


@pytest.fixture
def query_spy(store):
    """Count direct queries while keeping their results."""
    spy = AsyncMock(wraps=store.query)
    store.query = spy
    return spy


@pytest.fixture
async def cache(store, event_bus, monotonic):
    """Provide a cache with a 300 second TTL and a fake monotonic clock."""
    enrollment_cache = EnrollmentCache(
        store, ttl_seconds=300, event_bus=event_bus, clock=monotonic
    )
    yield enrollment_cache
    await enrollment_cache.cleanup()


async def enroll(manager, student_id=STUDENT, class_id="math", teacher_id=TEACHER):
    result = await manager.enroll(student_id, teacher_id, class_id, class_id.title())
    return result.enrollment


class TestEnrollmentCacheReads:
    """Tests for cold and warm reads."""

    async def test_cold_get_queries_active_enrollments(self, cache, manager):
        """Test a cold get returns the key's active enrollments."""
        kept = await enroll(manager, class_id="math")
        dropped = await enroll(manager, class_id="art")
        await manager.unenroll(dropped.id)
        await enroll(manager, student_id="someone-else")

        enrollments = await cache.get(STUDENT)

        assert [e.id for e in enrollments] == [kept.id]
        assert cache.has_subscription(STUDENT) is True

    async def test_warm_get_returns_same_list_without_query(self, cache, manager, query_spy):
        """Test a second get within the TTL is served from memory."""
        await enroll(manager)
        query_spy.reset_mock()

        first = await cache.get(STUDENT)
        second = await cache.get(STUDENT)

        assert second is first
        assert query_spy.await_count == 1

    async def test_invalidate_forces_fresh_read(self, cache, manager, query_spy):
        """Test the get after invalidate goes to the store."""
        await enroll(manager)
        await cache.get(STUDENT)
        query_spy.reset_mock()

        cache.invalidate(STUDENT, EnrollmentView.STUDENT)
        assert cache.peek(STUDENT) is None
        await cache.get(STUDENT)

        assert query_spy.await_count == 1
        assert cache.has_subscription(STUDENT) is True

    async def test_invalidate_without_role_drops_both_partitions(self, cache):
        """Test role=None clears the key from both partitions."""
        await cache.get("shared-id", EnrollmentView.STUDENT)
        await cache.get("shared-id", EnrollmentView.TEACHER)

        cache.invalidate("shared-id")

        assert cache.peek("shared-id", EnrollmentView.STUDENT) is None
        assert cache.peek("shared-id", EnrollmentView.TEACHER) is None

    async def test_ttl_expiry_triggers_query(self, cache, monotonic, query_spy):
        """Test an entry older than the TTL is fetched again."""
        await cache.get(STUDENT)
        monotonic.advance(301)

        await cache.get(STUDENT)

        assert query_spy.await_count == 2

    async def test_force_refresh_bypasses_warm_entry(self, cache, query_spy):
        """Test force_refresh always queries."""
        await cache.get(STUDENT)

        await cache.get(STUDENT, force_refresh=True)

        assert query_spy.await_count == 2

    async def test_teacher_partition(self, cache, manager):
        """Test teacher keys list enrollments across students."""
        a = await enroll(manager, student_id="s-a")
        b = await enroll(manager, student_id="s-b")

        enrollments = await cache.get(TEACHER, EnrollmentView.TEACHER)

        assert {e.id for e in enrollments} == {a.id, b.id}
        assert cache.peek(TEACHER) is None

    async def test_get_propagates_store_failure(self, cache, store):
        """Test a failed direct query raises."""
        store.query = AsyncMock(side_effect=StoreError("store offline"))

        with pytest.raises(StoreError):
            await cache.get(STUDENT)

    async def test_stats(self, cache):
        """Test hit and miss counters."""
        await cache.get(STUDENT)
        await cache.get(STUDENT)
        await cache.get(TEACHER, EnrollmentView.TEACHER)

        stats = cache.get_stats()

        assert stats["hits"] == 1
        assert stats["misses"] == 2
        assert stats["entries"] == 2
        assert stats["subscriptions"] == 2
        assert stats["pending_subscriptions"] == 0


class TestEnrollmentCacheLiveUpdates:
    """Tests for subscription pushes."""

    async def test_write_reaches_cache_without_get(self, cache, manager, query_spy):
        """Test a new enrollment shows up in the cached list on its own."""
        assert await cache.get(STUDENT) == []
        query_spy.reset_mock()

        created = await enroll(manager)

        cached = cache.peek(STUDENT)
        assert [e.id for e in cached] == [created.id]
        assert (await cache.get(STUDENT)) is cached
        # Only the manager's duplicate check touched the store
        assert query_spy.await_count == 1
        assert cache.get_stats()["hits"] == 1

    async def test_unenroll_removes_from_cache(self, cache, manager):
        """Test a status change pushes the shrunken list."""
        enrollment = await enroll(manager)
        await cache.get(STUDENT)

        await manager.unenroll(enrollment.id)

        assert cache.peek(STUDENT) == []

    async def test_push_keeps_entry_warm_past_ttl(self, cache, store, manager, monotonic, query_spy):
        """Test a push resets the entry age."""
        enrollment = await enroll(manager)
        await cache.get(STUDENT)
        query_spy.reset_mock()

        monotonic.advance(200)
        await store.update(ENROLLMENTS, enrollment.id, {"className": "Algebra"})
        monotonic.advance(200)
        cached = await cache.get(STUDENT)

        assert query_spy.await_count == 0
        assert cached[0].class_name == "Algebra"

    async def test_unchanged_push_keeps_list_object(self, cache, store, manager, monotonic):
        """Test a push with identical content only refreshes the timestamp."""
        enrollment = await enroll(manager)
        first = await cache.get(STUDENT)

        monotonic.advance(200)
        await store.update(ENROLLMENTS, enrollment.id, {"className": enrollment.class_name})
        monotonic.advance(200)

        assert await cache.get(STUDENT) is first

    async def test_stale_query_does_not_overwrite_push(self, cache, store):
        """Test a direct query that raced a push keeps the pushed data."""
        await cache.get(STUDENT)
        original_query = store.query

        async def query_then_write(*args, **kwargs):
            documents = await original_query(*args, **kwargs)
            await store.create(
                ENROLLMENTS,
                new_enrollment_document(
                    student_id=STUDENT,
                    teacher_id=TEACHER,
                    class_id="late",
                    class_name="Late",
                    source=EnrollmentSource.MANUAL,
                ),
            )
            return documents

        store.query = query_then_write

        result = await cache.get(STUDENT, force_refresh=True)

        assert [e.class_id for e in result] == ["late"]
        assert [e.class_id for e in cache.peek(STUDENT)] == ["late"]


class TestEnrollmentCacheSubscriptions:
    """Tests for the subscription registry."""

    async def test_concurrent_first_gets_share_one_subscription(self, cache, store):
        """Test racing cold gets for one key open a single subscription."""
        results = await asyncio.gather(*(cache.get(STUDENT) for _ in range(5)))

        assert all(r == [] for r in results)
        assert store.subscription_count(ENROLLMENTS) == 1

    async def test_separate_keys_get_separate_subscriptions(self, cache, store):
        """Test each (role, key) pair has its own subscription."""
        await cache.get(STUDENT)
        await cache.get(TEACHER, EnrollmentView.TEACHER)
        await cache.get(STUDENT)

        assert store.subscription_count(ENROLLMENTS) == 2

    async def test_invalidate_keeps_subscription(self, cache, store):
        """Test invalidation leaves the subscription open."""
        await cache.get(STUDENT)

        cache.invalidate(STUDENT)

        assert store.subscription_count(ENROLLMENTS) == 1
        assert cache.has_subscription(STUDENT) is True

    async def test_subscribe_failure_is_retried_later(self, cache, store):
        """Test a failed subscription setup is retried by the next get."""
        original_subscribe = store.subscribe
        store.subscribe = AsyncMock(side_effect=StoreError("listener down"))

        assert await cache.get(STUDENT) == []
        assert cache.has_subscription(STUDENT) is False

        store.subscribe = original_subscribe
        await cache.get(STUDENT)

        assert cache.has_subscription(STUDENT) is True
        assert store.subscription_count(ENROLLMENTS) == 1

    async def test_event_invalidates_unsubscribed_entry(self, cache, store, manager):
        """Test enrollment events drop entries no subscription keeps fresh."""
        store.subscribe = AsyncMock(side_effect=StoreError("listener down"))
        await cache.get(STUDENT)
        assert cache.peek(STUDENT) == []

        await enroll(manager)

        assert cache.peek(STUDENT) is None


class TestEnrollmentCacheCleanup:
    """Tests for session teardown."""

    async def test_cleanup_closes_everything(self, cache, store, manager, event_bus):
        """Test cleanup closes subscriptions and forgets all entries."""
        await cache.get(STUDENT)
        await cache.get(TEACHER, EnrollmentView.TEACHER)

        await cache.cleanup()

        assert store.subscription_count() == 0
        assert cache.get_stats()["entries"] == 0
        assert cache.get_stats()["subscriptions"] == 0
        assert event_bus.get_stats()["total_handlers"] == 0

        await enroll(manager)
        assert cache.peek(STUDENT) is None

    async def test_async_context_manager(self, store, monotonic):
        """Test leaving the block cleans up."""
        async with EnrollmentCache(store, clock=monotonic) as cache:
            await cache.get(STUDENT)
            assert store.subscription_count() == 1

        assert store.subscription_count() == 0

    async def test_cleanup_during_subscription_setup(self, cache, store):
        """Test a subscription finishing after cleanup is closed at once."""
        setup_started = asyncio.Event()
        release = asyncio.Event()
        original_subscribe = store.subscribe

        async def slow_subscribe(*args, **kwargs):
            setup_started.set()
            await release.wait()
            return await original_subscribe(*args, **kwargs)

        store.subscribe = slow_subscribe

        pending = asyncio.create_task(cache.get(STUDENT))
        await setup_started.wait()
        assert cache.get_stats()["pending_subscriptions"] == 1

        await cache.cleanup()
        release.set()
        await pending

        assert store.subscription_count() == 0
        assert cache.has_subscription(STUDENT) is False

    async def test_cleanup_during_initial_query(self, cache, store):
        """Test a query finishing after cleanup is neither cached nor subscribed."""
        query_started = asyncio.Event()
        release = asyncio.Event()
        original_query = store.query

        async def slow_query(*args, **kwargs):
            query_started.set()
            await release.wait()
            return await original_query(*args, **kwargs)

        store.query = slow_query

        pending = asyncio.create_task(cache.get(STUDENT))
        await query_started.wait()

        await cache.cleanup()
        release.set()

        assert await pending == []
        assert store.subscription_count() == 0
        assert cache.has_subscription(STUDENT) is False
        assert cache.peek(STUDENT) is None
