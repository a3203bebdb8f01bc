# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pydantic models for invite codes and enrollments."""

from src.models.common import DocumentModel, FailureReason
from src.models.enrollment import (
    Enrollment,
    EnrollmentListResult,
    EnrollmentMetadata,
    EnrollmentResult,
    EnrollmentSource,
    EnrollmentStatus,
    EnrollmentView,
    TeacherEnrollmentStats,
)
from src.models.invite_code import (
    InviteCode,
    InviteCodeMetadata,
    InviteCodeOptions,
    InviteCodeValidation,
)

__all__ = [
    "DocumentModel",
    "FailureReason",
    # Enrollment
    "Enrollment",
    "EnrollmentListResult",
    "EnrollmentMetadata",
    "EnrollmentResult",
    "EnrollmentSource",
    "EnrollmentStatus",
    "EnrollmentView",
    "TeacherEnrollmentStats",
    # Invite code
    "InviteCode",
    "InviteCodeMetadata",
    "InviteCodeOptions",
    "InviteCodeValidation",
]
