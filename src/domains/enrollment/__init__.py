# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Enrollment domain package.

This package provides student enrollment management functionality including:
- Enrollment by invite code and by teacher
- Unenroll, re-activate, complete and remove
- Session-scoped bundle of registry, manager and cache
"""

from src.domains.enrollment.service import (
    AlreadyEnrolledError,
    EnrollmentManager,
    EnrollmentNotFoundError,
    EnrollmentServiceError,
    InvalidStatusTransitionError,
    count_by_status,
)
from src.domains.enrollment.session import EnrollmentSession

__all__ = [
    "EnrollmentManager",
    "EnrollmentSession",
    "EnrollmentServiceError",
    "EnrollmentNotFoundError",
    "AlreadyEnrolledError",
    "InvalidStatusTransitionError",
    "count_by_status",
]
