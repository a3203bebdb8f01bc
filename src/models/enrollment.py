# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Enrollment models.

Persisted shape (``enrollments/{id}``)::

    {studentId, studentEmail?, studentName?, teacherId, classId, className,
     enrolledAt, status, lastAccessedAt?, completedAt?, unenrolledAt?,
     inviteCode?, metadata?}

At most one enrollment per (studentId, classId) may be ``active``.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.common import DocumentModel, FailureReason


class EnrollmentStatus(str, Enum):
    """Lifecycle states of an enrollment.

    - PENDING: Reserved for an approval flow; nothing creates it today
    - ACTIVE: Student is enrolled
    - INACTIVE: Student unenrolled or was deactivated by the teacher
    - COMPLETED: Student finished the course (terminal)
    """

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"

    def can_transition_to(self, target: "EnrollmentStatus") -> bool:
        """Check whether moving from this status to ``target`` is allowed.

        Staying in the same status is not a transition and returns False;
        callers treat it as a no-op before asking.
        """
        match self:
            case EnrollmentStatus.PENDING:
                return target in (EnrollmentStatus.ACTIVE, EnrollmentStatus.INACTIVE)
            case EnrollmentStatus.ACTIVE:
                return target in (EnrollmentStatus.INACTIVE, EnrollmentStatus.COMPLETED)
            case EnrollmentStatus.INACTIVE:
                return target is EnrollmentStatus.ACTIVE
            case EnrollmentStatus.COMPLETED:
                return False


class EnrollmentSource(str, Enum):
    """How an enrollment came to exist."""

    INVITE_LINK = "invite_link"
    MANUAL = "manual"


class EnrollmentView(str, Enum):
    """Which side of the relationship a list of enrollments is keyed by."""

    STUDENT = "student"
    TEACHER = "teacher"

    @property
    def field(self) -> str:
        """Document field holding the key for this view."""
        return "studentId" if self is EnrollmentView.STUDENT else "teacherId"


class EnrollmentMetadata(BaseModel):
    """Provenance details stored alongside an enrollment."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source: EnrollmentSource = EnrollmentSource.INVITE_LINK


class Enrollment(DocumentModel):
    """The durable record of a student's relationship to a class."""

    student_id: str
    student_email: str | None = None
    student_name: str | None = None
    teacher_id: str
    class_id: str
    class_name: str
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    enrolled_at: datetime | None = None
    last_accessed_at: datetime | None = None
    completed_at: datetime | None = None
    unenrolled_at: datetime | None = None
    invite_code: str | None = None
    metadata: EnrollmentMetadata | None = None

    @property
    def is_active(self) -> bool:
        return self.status is EnrollmentStatus.ACTIVE


class EnrollmentResult(BaseModel):
    """Outcome of creating an enrollment (redemption or manual add).

    Expected failures (invalid code, already enrolled) are reported here;
    store failures are raised instead.
    """

    success: bool
    enrollment: Enrollment | None = None
    reason: FailureReason | None = None
    error: str | None = None

    @classmethod
    def succeeded(cls, enrollment: Enrollment) -> "EnrollmentResult":
        return cls(success=True, enrollment=enrollment)

    @classmethod
    def failed(cls, reason: FailureReason, error: str | None = None) -> "EnrollmentResult":
        return cls(success=False, reason=reason, error=error or reason.message)


class EnrollmentListResult(BaseModel):
    """Outcome of an enrollment query.

    On a store failure ``enrollments`` is empty and ``error`` is set.
    """

    enrollments: list[Enrollment] = Field(default_factory=list)
    reason: FailureReason | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TeacherEnrollmentStats(BaseModel):
    """Summary counts over every enrollment a teacher owns."""

    total_students: int = 0
    active_students: int = 0
    completed_enrollments: int = 0
    active_by_class: dict[str, int] = Field(default_factory=dict)
