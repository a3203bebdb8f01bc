# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the enrollment manager."""

import logging
from unittest.mock import AsyncMock

import pytest

from src.core.errors import ConflictError, NotFoundError
from src.domains.enrollment import (
    AlreadyEnrolledError,
    EnrollmentManager,
    EnrollmentNotFoundError,
    InvalidStatusTransitionError,
    count_by_status,
)
from src.infrastructure.events import EventPatterns, EventTypes
from src.infrastructure.store import ENROLLMENTS, StoreError
from src.models.common import FailureReason
from src.models.enrollment import Enrollment, EnrollmentSource, EnrollmentStatus


@pytest.fixture
async def invite(registry, sample_class):
    """Create an unlimited invite code for the sample class."""
    return await registry.generate(**sample_class)


@pytest.fixture
async def enrollment(manager, invite, sample_student_id):
    """Redeem the sample code for the sample student."""
    result = await manager.redeem(invite.code, sample_student_id)
    return result.enrollment


def make_enrollment(status: EnrollmentStatus, student_id: str = "s1") -> Enrollment:
    return Enrollment(
        id=f"{student_id}-{status.value}",
        student_id=student_id,
        teacher_id="t1",
        class_id="c1",
        class_name="Class",
        status=status,
    )


class TestEnrollmentManagerCreate:
    """Tests for redemption and manual enrollment."""

    async def test_redeem_publishes_created(self, manager, event_bus, invite, sample_student_id):
        """Test a successful redemption is announced."""
        handler = AsyncMock()
        event_bus.subscribe(EventTypes.Enrollment.CREATED, handler)

        result = await manager.redeem(invite.code, sample_student_id)

        assert result.success is True
        handler.assert_awaited_once()
        payload = handler.await_args.args[0].payload
        assert payload["enrollment_id"] == result.enrollment.id
        assert payload["student_id"] == sample_student_id
        assert payload["teacher_id"] == invite.teacher_id
        assert payload["class_id"] == invite.class_id

    async def test_failed_redeem_publishes_nothing(self, manager, event_bus, sample_student_id):
        """Test failures are not announced."""
        handler = AsyncMock()
        event_bus.subscribe(EventPatterns.ALL_ENROLLMENT, handler)

        result = await manager.redeem("UNKNOWN1", sample_student_id)

        assert result.success is False
        handler.assert_not_awaited()

    async def test_manager_builds_registry_when_omitted(self, store, sample_class, sample_student_id):
        """Test a bare manager can still redeem."""
        manager = EnrollmentManager(store)
        invite = await manager.registry.generate(**sample_class)

        result = await manager.redeem(invite.code, sample_student_id)

        assert result.success is True

    async def test_manual_enroll(self, manager, sample_class, sample_student_id):
        """Test a teacher-added enrollment has no code and a manual source."""
        result = await manager.enroll(
            sample_student_id,
            sample_class["teacher_id"],
            sample_class["class_id"],
            sample_class["class_name"],
            student_name="Ana",
        )

        assert result.success is True
        assert result.enrollment.invite_code is None
        assert result.enrollment.metadata.source is EnrollmentSource.MANUAL
        assert result.enrollment.student_name == "Ana"
        assert result.enrollment.status is EnrollmentStatus.ACTIVE

    async def test_manual_enroll_when_already_enrolled(
        self, manager, enrollment, sample_class, sample_student_id
    ):
        """Test manual enrollment respects the single active enrollment rule."""
        result = await manager.enroll(
            sample_student_id,
            sample_class["teacher_id"],
            sample_class["class_id"],
            sample_class["class_name"],
        )

        assert result.success is False
        assert result.reason is FailureReason.ALREADY_ENROLLED


class TestEnrollmentManagerStatus:
    """Tests for status transitions."""

    async def test_unenroll(self, manager, enrollment, clock):
        """Test unenroll marks inactive and stamps unenrolledAt."""
        clock.advance(days=3)

        updated = await manager.unenroll(enrollment.id)

        assert updated.status is EnrollmentStatus.INACTIVE
        assert updated.unenrolled_at == clock.now

    async def test_complete(self, manager, enrollment, clock):
        """Test complete stamps completedAt."""
        clock.advance(days=90)

        updated = await manager.complete(enrollment.id)

        assert updated.status is EnrollmentStatus.COMPLETED
        assert updated.completed_at == clock.now

    async def test_same_status_is_noop(self, manager, event_bus, enrollment):
        """Test setting the current status changes and announces nothing."""
        handler = AsyncMock()
        event_bus.subscribe(EventTypes.Enrollment.STATUS_CHANGED, handler)

        updated = await manager.set_status(enrollment.id, EnrollmentStatus.ACTIVE)

        assert updated.status is EnrollmentStatus.ACTIVE
        handler.assert_not_awaited()

    async def test_completed_is_terminal(self, manager, enrollment):
        """Test nothing leaves the completed status."""
        await manager.complete(enrollment.id)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            await manager.set_status(enrollment.id, EnrollmentStatus.ACTIVE)

        assert exc_info.value.current is EnrollmentStatus.COMPLETED
        assert exc_info.value.target is EnrollmentStatus.ACTIVE

    async def test_inactive_cannot_complete(self, manager, enrollment):
        """Test completion requires an active enrollment."""
        await manager.unenroll(enrollment.id)

        with pytest.raises(InvalidStatusTransitionError):
            await manager.complete(enrollment.id)

    async def test_cannot_move_to_pending(self, manager, enrollment):
        """Test pending is never a transition target."""
        with pytest.raises(InvalidStatusTransitionError):
            await manager.set_status(enrollment.id, EnrollmentStatus.PENDING)

    async def test_reactivate_clears_unenrolled_at(self, manager, store, enrollment):
        """Test re-activation removes the unenroll stamp."""
        await manager.unenroll(enrollment.id)

        updated = await manager.set_status(enrollment.id, EnrollmentStatus.ACTIVE)

        assert updated.status is EnrollmentStatus.ACTIVE
        assert updated.unenrolled_at is None
        stored = await store.get(ENROLLMENTS, enrollment.id)
        assert "unenrolledAt" not in stored.data

    async def test_reactivate_conflicts_with_newer_enrollment(
        self, manager, invite, enrollment, sample_student_id
    ):
        """Test re-activation is refused while another enrollment is active."""
        await manager.unenroll(enrollment.id)
        again = await manager.redeem(invite.code, sample_student_id)
        assert again.success is True

        with pytest.raises(AlreadyEnrolledError) as exc_info:
            await manager.set_status(enrollment.id, EnrollmentStatus.ACTIVE)

        assert isinstance(exc_info.value, ConflictError)

    async def test_unenroll_then_redeem_again(
        self, manager, store, invite, enrollment, sample_student_id
    ):
        """Test a student who unenrolled can redeem the same code again."""
        await manager.unenroll(enrollment.id)

        result = await manager.redeem(invite.code, sample_student_id)

        assert result.success is True
        assert result.enrollment.id != enrollment.id
        assert result.enrollment.status is EnrollmentStatus.ACTIVE
        old = await manager.get(enrollment.id)
        assert old.status is EnrollmentStatus.INACTIVE
        assert len(await store.query(ENROLLMENTS)) == 2

    async def test_set_status_unknown_id(self, manager):
        """Test a missing enrollment raises not found."""
        with pytest.raises(EnrollmentNotFoundError) as exc_info:
            await manager.set_status("missing", EnrollmentStatus.INACTIVE)

        assert isinstance(exc_info.value, NotFoundError)

    async def test_status_change_event(self, manager, event_bus, enrollment):
        """Test status changes carry the previous status."""
        handler = AsyncMock()
        event_bus.subscribe(EventTypes.Enrollment.STATUS_CHANGED, handler)

        await manager.unenroll(enrollment.id)

        payload = handler.await_args.args[0].payload
        assert payload["status"] == "inactive"
        assert payload["previous_status"] == "active"

    async def test_set_status_propagates_store_failure(self, manager, store, enrollment):
        """Test mutation paths raise store failures."""
        store.update = AsyncMock(side_effect=StoreError("store offline"))

        with pytest.raises(StoreError):
            await manager.unenroll(enrollment.id)


class TestEnrollmentManagerRemove:
    """Tests for hard removal."""

    async def test_remove(self, manager, event_bus, enrollment):
        """Test remove deletes the record and announces it."""
        handler = AsyncMock()
        event_bus.subscribe(EventTypes.Enrollment.REMOVED, handler)

        await manager.remove(enrollment.id)

        assert await manager.get(enrollment.id) is None
        handler.assert_awaited_once()

    async def test_remove_inactive(self, manager, enrollment):
        """Test remove works regardless of status."""
        await manager.unenroll(enrollment.id)

        await manager.remove(enrollment.id)

        assert await manager.get(enrollment.id) is None

    async def test_remove_unknown_id(self, manager):
        """Test removing a missing enrollment raises not found."""
        with pytest.raises(EnrollmentNotFoundError):
            await manager.remove("missing")


class TestEnrollmentManagerAccess:
    """Tests for last-access tracking."""

    async def test_touch_access(self, manager, enrollment, clock):
        """Test lastAccessedAt is stamped."""
        clock.advance(hours=2)

        assert await manager.touch_access(enrollment.id) is True

        updated = await manager.get(enrollment.id)
        assert updated.last_accessed_at == clock.now

    async def test_touch_access_unknown_id(self, manager):
        """Test a missing enrollment is swallowed."""
        assert await manager.touch_access("missing") is False

    async def test_touch_access_store_failure(self, manager, store, enrollment, caplog):
        """Test a store failure is logged and swallowed."""
        store.update = AsyncMock(side_effect=StoreError("store offline"))

        with caplog.at_level(logging.WARNING):
            assert await manager.touch_access(enrollment.id) is False

        assert "Failed to update last access" in caplog.text


class TestEnrollmentManagerQueries:
    """Tests for listings and aggregates."""

    async def test_list_for_student_defaults_to_active(self, manager, registry, sample_class, clock):
        """Test student listings hold active enrollments, newest first."""
        math = await registry.generate(**sample_class)
        art = await registry.generate(teacher_id="t2", class_id="art", class_name="Art")
        music = await registry.generate(teacher_id="t3", class_id="music", class_name="Music")

        first = (await manager.redeem(math.code, "s1")).enrollment
        clock.advance(minutes=1)
        second = (await manager.redeem(art.code, "s1")).enrollment
        clock.advance(minutes=1)
        third = (await manager.redeem(music.code, "s1")).enrollment
        await manager.unenroll(second.id)

        active = await manager.list_for_student("s1")
        everything = await manager.list_for_student("s1", status=None)
        inactive = await manager.list_for_student("s1", status=EnrollmentStatus.INACTIVE)

        assert active.ok is True
        assert [e.id for e in active.enrollments] == [third.id, first.id]
        assert [e.id for e in everything.enrollments] == [third.id, second.id, first.id]
        assert [e.id for e in inactive.enrollments] == [second.id]

    async def test_list_for_teacher_and_class(self, manager, registry, sample_class, clock):
        """Test teacher and class listings are scoped correctly."""
        invite = await registry.generate(**sample_class)
        other = await registry.generate(
            teacher_id=sample_class["teacher_id"], class_id="class-2", class_name="Physics"
        )
        a = (await manager.redeem(invite.code, "s1")).enrollment
        clock.advance(minutes=1)
        b = (await manager.redeem(other.code, "s2")).enrollment

        by_teacher = await manager.list_for_teacher(sample_class["teacher_id"])
        by_class = await manager.list_for_class(sample_class["teacher_id"], sample_class["class_id"])

        assert [e.id for e in by_teacher.enrollments] == [b.id, a.id]
        assert [e.id for e in by_class.enrollments] == [a.id]

    async def test_list_store_failure_is_returned(self, manager, store):
        """Test listings report store failures instead of raising."""
        store.query = AsyncMock(side_effect=StoreError("store offline"))

        result = await manager.list_for_teacher("t1")

        assert result.ok is False
        assert result.enrollments == []
        assert result.reason is FailureReason.STORE_ERROR

    async def test_is_enrolled(self, manager, enrollment, sample_student_id, sample_class_id):
        """Test is_enrolled follows the active status."""
        assert await manager.is_enrolled(sample_student_id, sample_class_id) is True

        await manager.unenroll(enrollment.id)

        assert await manager.is_enrolled(sample_student_id, sample_class_id) is False

    async def test_is_enrolled_store_failure(self, manager, store):
        """Test is_enrolled answers False when the store fails."""
        store.query = AsyncMock(side_effect=StoreError("store offline"))

        assert await manager.is_enrolled("s1", "c1") is False

    async def test_teacher_stats(self, manager, registry, sample_class):
        """Test teacher stats count unique and active students."""
        tid = sample_class["teacher_id"]
        math = await registry.generate(**sample_class)
        physics = await registry.generate(teacher_id=tid, class_id="physics", class_name="Physics")

        await manager.redeem(math.code, "s1")
        await manager.redeem(physics.code, "s1")
        done = (await manager.redeem(math.code, "s2")).enrollment
        left = (await manager.redeem(physics.code, "s3")).enrollment
        await manager.complete(done.id)
        await manager.unenroll(left.id)

        stats = await manager.teacher_stats(tid)

        assert stats.total_students == 3
        assert stats.active_students == 1
        assert stats.completed_enrollments == 1
        assert stats.active_by_class == {sample_class["class_id"]: 1, "physics": 1}

    def test_count_by_status(self):
        """Test every status is counted, including empty ones."""
        enrollments = [
            make_enrollment(EnrollmentStatus.ACTIVE, "s1"),
            make_enrollment(EnrollmentStatus.ACTIVE, "s2"),
            make_enrollment(EnrollmentStatus.COMPLETED, "s3"),
        ]

        counts = count_by_status(enrollments)

        assert counts == {
            EnrollmentStatus.PENDING: 0,
            EnrollmentStatus.ACTIVE: 2,
            EnrollmentStatus.INACTIVE: 0,
            EnrollmentStatus.COMPLETED: 1,
        }
        assert EnrollmentManager.count_by_status([]) == {s: 0 for s in EnrollmentStatus}
