# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Event type constants for the enrollment subsystem.

Every enrollment event payload carries ``enrollment_id``, ``student_id``,
``teacher_id`` and ``class_id``. Invite code events carry ``invite_code_id``
and ``code``.
"""


class EventTypes:
    """All event types, grouped by domain."""

    class InviteCode:
        """Invite code lifecycle events."""

        CREATED = "invite_code.created"
        DEACTIVATED = "invite_code.deactivated"
        DELETED = "invite_code.deleted"

    class Enrollment:
        """Enrollment lifecycle events."""

        CREATED = "enrollment.created"
        STATUS_CHANGED = "enrollment.status_changed"
        REMOVED = "enrollment.removed"


class EventPatterns:
    """Wildcard patterns for subscribing to groups of events."""

    ALL_INVITE_CODE = "invite_code.*"
    ALL_ENROLLMENT = "enrollment.*"
    ALL = "*"
