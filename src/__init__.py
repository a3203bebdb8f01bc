"""Classroom Enrollment.

Invitation-code based class enrollment for an education platform: code
issuance and validation, enrollment records and status transitions, and a
per-session read-through cache kept fresh by live store subscriptions.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
