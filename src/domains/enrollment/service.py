# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Enrollment manager for student class enrollments.

This module provides the EnrollmentManager class for:
- Enrollment through invite code redemption
- Manual enrollment by a teacher
- Listing enrollments by student, teacher or class
- Status transitions (unenroll, re-activate, complete)
- Hard removal and last-access tracking
- Per-status and per-teacher summary counts

Read paths report store failures in their results. Mutation paths raise.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from src.core.errors import ClassroomError, ConflictError, NotFoundError
from src.domains.invite_code.service import InviteCodeRegistry
from src.domains.records import (
    enrollment_lock_scope,
    find_active_enrollment,
    new_enrollment_document,
)
from src.infrastructure.events import EventBus, EventTypes
from src.infrastructure.store import (
    ENROLLMENTS,
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
    FieldFilter,
    StoreError,
    where,
)
from src.models.common import FailureReason
from src.models.enrollment import (
    Enrollment,
    EnrollmentListResult,
    EnrollmentResult,
    EnrollmentSource,
    EnrollmentStatus,
    TeacherEnrollmentStats,
)
from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class EnrollmentServiceError(ClassroomError):
    """Base exception for enrollment manager errors."""

    pass


class EnrollmentNotFoundError(NotFoundError, EnrollmentServiceError):
    """Raised when an enrollment id does not exist."""

    def __init__(self, enrollment_id: str) -> None:
        super().__init__("Enrollment", enrollment_id)


class AlreadyEnrolledError(ConflictError, EnrollmentServiceError):
    """Raised when re-activation would give a student two active enrollments."""

    def __init__(self, student_id: str, class_id: str) -> None:
        self.student_id = student_id
        self.class_id = class_id
        super().__init__(f"Student '{student_id}' is already enrolled in class '{class_id}'")


class InvalidStatusTransitionError(EnrollmentServiceError):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current: EnrollmentStatus, target: EnrollmentStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot change enrollment status from '{current.value}' to '{target.value}'"
        )


def count_by_status(enrollments: Iterable[Enrollment]) -> dict[EnrollmentStatus, int]:
    """Count enrollments per status.

    Every status is present in the result, with 0 where nothing matched.
    """
    counts = {status: 0 for status in EnrollmentStatus}
    for enrollment in enrollments:
        counts[enrollment.status] += 1
    return counts


class EnrollmentManager:
    """Service for managing student enrollments.

    Attributes:
        store: Document store holding enrollments.
        registry: Invite code registry used for redemption.
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: InviteCodeRegistry | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the enrollment manager.

        Args:
            store: Document store.
            registry: Invite code registry. One over the same store is
                created when omitted.
            event_bus: Optional bus for enrollment lifecycle events.
            clock: Source of "now", passed to a registry created here.
        """
        self.store = store
        self.registry = registry or InviteCodeRegistry(store, event_bus=event_bus, clock=clock)
        self._event_bus = event_bus

    # ========== Creation ==========

    async def redeem(
        self,
        code: str,
        student_id: str,
        student_email: str | None = None,
        student_name: str | None = None,
    ) -> EnrollmentResult:
        """Enroll a student by redeeming an invite code.

        Args:
            code: Invite code as entered by the student.
            student_id: Student identifier.
            student_email: Optional denormalized email.
            student_name: Optional denormalized display name.

        Returns:
            EnrollmentResult with the new enrollment or the failure reason.

        Raises:
            StoreError: If the store fails.
        """
        result = await self.registry.redeem(code, student_id, student_email, student_name)
        if result.success and result.enrollment is not None:
            await self._publish(EventTypes.Enrollment.CREATED, result.enrollment)
        return result

    async def enroll(
        self,
        student_id: str,
        teacher_id: str,
        class_id: str,
        class_name: str,
        student_email: str | None = None,
        student_name: str | None = None,
    ) -> EnrollmentResult:
        """Enroll a student directly, without an invite code.

        Returns:
            EnrollmentResult; fails with ALREADY_ENROLLED when the student
            already has an active enrollment in the class.

        Raises:
            StoreError: If the store fails.
        """
        async with self.store.lock(enrollment_lock_scope(student_id, class_id)):
            if await find_active_enrollment(self.store, student_id, class_id) is not None:
                return EnrollmentResult.failed(FailureReason.ALREADY_ENROLLED)

            document = await self.store.create(
                ENROLLMENTS,
                new_enrollment_document(
                    student_id=student_id,
                    teacher_id=teacher_id,
                    class_id=class_id,
                    class_name=class_name,
                    source=EnrollmentSource.MANUAL,
                    student_email=student_email,
                    student_name=student_name,
                ),
            )

        enrollment = Enrollment.from_document(document)
        logger.info(
            "Enrolled student manually: student=%s, class=%s, teacher=%s",
            student_id,
            class_id,
            teacher_id,
        )
        await self._publish(EventTypes.Enrollment.CREATED, enrollment)
        return EnrollmentResult.succeeded(enrollment)

    # ========== Reads ==========

    async def get(self, enrollment_id: str) -> Enrollment | None:
        """Fetch an enrollment by id.

        Raises:
            StoreError: If the store fails.
        """
        document = await self.store.get(ENROLLMENTS, enrollment_id)
        if document is None:
            return None
        return Enrollment.from_document(document)

    async def list_for_student(
        self,
        student_id: str,
        status: EnrollmentStatus | None = EnrollmentStatus.ACTIVE,
    ) -> EnrollmentListResult:
        """List a student's enrollments, newest first.

        Args:
            student_id: Student identifier.
            status: Status to filter on. None returns every status.
        """
        return await self._list([where("studentId", "==", student_id)], status)

    async def list_for_teacher(
        self,
        teacher_id: str,
        status: EnrollmentStatus | None = EnrollmentStatus.ACTIVE,
    ) -> EnrollmentListResult:
        """List enrollments across all of a teacher's classes, newest first."""
        return await self._list([where("teacherId", "==", teacher_id)], status)

    async def list_for_class(
        self,
        teacher_id: str,
        class_id: str,
        status: EnrollmentStatus | None = EnrollmentStatus.ACTIVE,
    ) -> EnrollmentListResult:
        """List the enrollments of one of a teacher's classes, newest first."""
        return await self._list(
            [where("teacherId", "==", teacher_id), where("classId", "==", class_id)],
            status,
        )

    async def is_enrolled(self, student_id: str, class_id: str) -> bool:
        """Check whether the student is actively enrolled in the class.

        Returns False when the store fails.
        """
        try:
            return await find_active_enrollment(self.store, student_id, class_id) is not None
        except StoreError as e:
            logger.error(
                "Failed to check enrollment: student=%s, class=%s: %s",
                student_id,
                class_id,
                str(e),
            )
            return False

    async def teacher_stats(self, teacher_id: str) -> TeacherEnrollmentStats:
        """Summary counts over every enrollment the teacher owns.

        Raises:
            StoreError: If the store fails.
        """
        documents = await self.store.query(ENROLLMENTS, [where("teacherId", "==", teacher_id)])
        enrollments = [Enrollment.from_document(d) for d in documents]

        students = {e.student_id for e in enrollments}
        active = [e for e in enrollments if e.is_active]

        active_by_class: dict[str, int] = {}
        for enrollment in active:
            active_by_class[enrollment.class_id] = active_by_class.get(enrollment.class_id, 0) + 1

        return TeacherEnrollmentStats(
            total_students=len(students),
            active_students=len({e.student_id for e in active}),
            completed_enrollments=count_by_status(enrollments)[EnrollmentStatus.COMPLETED],
            active_by_class=active_by_class,
        )

    count_by_status = staticmethod(count_by_status)

    # ========== Status changes ==========

    async def set_status(self, enrollment_id: str, new_status: EnrollmentStatus) -> Enrollment:
        """Move an enrollment to a new status.

        Setting the current status again is a no-op.

        Args:
            enrollment_id: Enrollment identifier.
            new_status: Target status.

        Returns:
            The enrollment after the change.

        Raises:
            EnrollmentNotFoundError: If the enrollment does not exist.
            InvalidStatusTransitionError: If the transition is not allowed.
            AlreadyEnrolledError: If re-activating while another enrollment
                for the same student and class is active.
            StoreError: If the store fails.
        """
        enrollment = await self._require(enrollment_id)
        if enrollment.status is new_status:
            return enrollment
        if not enrollment.status.can_transition_to(new_status):
            raise InvalidStatusTransitionError(enrollment.status, new_status)

        changes: dict[str, object] = {"status": new_status.value}
        match new_status:
            case EnrollmentStatus.INACTIVE:
                changes["unenrolledAt"] = SERVER_TIMESTAMP
            case EnrollmentStatus.COMPLETED:
                changes["completedAt"] = SERVER_TIMESTAMP
            case EnrollmentStatus.ACTIVE:
                changes["unenrolledAt"] = None
            case EnrollmentStatus.PENDING:
                pass

        if new_status is EnrollmentStatus.ACTIVE:
            scope = enrollment_lock_scope(enrollment.student_id, enrollment.class_id)
            async with self.store.lock(scope):
                other = await find_active_enrollment(
                    self.store,
                    enrollment.student_id,
                    enrollment.class_id,
                    exclude_id=enrollment_id,
                )
                if other is not None:
                    raise AlreadyEnrolledError(enrollment.student_id, enrollment.class_id)
                updated = await self._update(enrollment_id, changes)
        else:
            updated = await self._update(enrollment_id, changes)

        logger.info(
            "Changed enrollment status: id=%s, %s -> %s",
            enrollment_id,
            enrollment.status.value,
            new_status.value,
        )
        await self._publish(
            EventTypes.Enrollment.STATUS_CHANGED,
            updated,
            previous_status=enrollment.status.value,
        )
        return updated

    async def unenroll(self, enrollment_id: str) -> Enrollment:
        """Soft unenroll: mark inactive and keep the record."""
        return await self.set_status(enrollment_id, EnrollmentStatus.INACTIVE)

    async def complete(self, enrollment_id: str) -> Enrollment:
        """Mark an active enrollment as completed."""
        return await self.set_status(enrollment_id, EnrollmentStatus.COMPLETED)

    async def remove(self, enrollment_id: str) -> None:
        """Hard delete an enrollment regardless of status.

        Raises:
            EnrollmentNotFoundError: If the enrollment does not exist.
            StoreError: If the store fails.
        """
        enrollment = await self._require(enrollment_id)
        if not await self.store.delete(ENROLLMENTS, enrollment_id):
            raise EnrollmentNotFoundError(enrollment_id)

        logger.info(
            "Removed enrollment: id=%s, student=%s, class=%s",
            enrollment_id,
            enrollment.student_id,
            enrollment.class_id,
        )
        await self._publish(EventTypes.Enrollment.REMOVED, enrollment)

    async def touch_access(self, enrollment_id: str) -> bool:
        """Record that the student opened the class. Best effort.

        Returns:
            True if lastAccessedAt was updated.
        """
        try:
            await self.store.update(ENROLLMENTS, enrollment_id, {"lastAccessedAt": SERVER_TIMESTAMP})
            return True
        except (StoreError, DocumentNotFoundError) as e:
            logger.warning("Failed to update last access for enrollment %s: %s", enrollment_id, e)
            return False

    # ========== Internals ==========

    async def _list(
        self,
        filters: list[FieldFilter],
        status: EnrollmentStatus | None,
    ) -> EnrollmentListResult:
        if status is not None:
            filters.append(where("status", "==", status.value))
        try:
            documents = await self.store.query(
                ENROLLMENTS, filters, order_by="enrolledAt", descending=True
            )
        except StoreError as e:
            logger.error("Failed to list enrollments: %s", str(e))
            return EnrollmentListResult(
                reason=FailureReason.STORE_ERROR,
                error=FailureReason.STORE_ERROR.message,
            )
        return EnrollmentListResult(enrollments=[Enrollment.from_document(d) for d in documents])

    async def _require(self, enrollment_id: str) -> Enrollment:
        enrollment = await self.get(enrollment_id)
        if enrollment is None:
            raise EnrollmentNotFoundError(enrollment_id)
        return enrollment

    async def _update(self, enrollment_id: str, changes: dict[str, object]) -> Enrollment:
        try:
            document = await self.store.update(ENROLLMENTS, enrollment_id, changes)
        except DocumentNotFoundError as e:
            raise EnrollmentNotFoundError(enrollment_id) from e
        return Enrollment.from_document(document)

    async def _publish(self, event_type: str, enrollment: Enrollment, **extra: object) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            event_type,
            {
                "enrollment_id": enrollment.id,
                "student_id": enrollment.student_id,
                "teacher_id": enrollment.teacher_id,
                "class_id": enrollment.class_id,
                "status": enrollment.status.value,
                **extra,
            },
        )
