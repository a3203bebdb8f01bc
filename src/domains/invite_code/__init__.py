# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Invite code domain package.

This package provides:
- Invite code issuance, validation and redemption
- Code deactivation and deletion
- Join link building and parsing
"""

from src.domains.invite_code.links import (
    build_invite_link,
    extract_invite_code,
    normalize_code,
)
from src.domains.invite_code.service import (
    InviteCodeNotFoundError,
    InviteCodeRegistry,
)

__all__ = [
    "InviteCodeRegistry",
    "InviteCodeNotFoundError",
    "build_invite_link",
    "extract_invite_code",
    "normalize_code",
]
