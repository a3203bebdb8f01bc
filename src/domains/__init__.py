# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Domain services layer.

This package contains domain services that encapsulate business logic
over the document store.

Domains:
    invite_code: Invite code issuance, validation and redemption.
    enrollment: Enrollment lifecycle, listings and per-session wiring.
"""
