# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shareable invitation links.

Links have the form ``https://<host>/join/<CODE>``. The join page accepts
either such a link or the bare code typed by hand.
"""

import re

JOIN_PATH = "/join/"

_JOIN_URL_RE = re.compile(r"^https?://[^/\s]+/join/(?P<code>[A-Za-z0-9]+)/?(?:[?#].*)?$")


def normalize_code(code: str) -> str:
    """Canonical form of a user-entered code: trimmed and upper-cased."""
    return code.strip().upper()


def build_invite_link(code: str, base_url: str) -> str:
    """Build the join link for ``code`` on ``base_url`` (scheme + host)."""
    return f"{base_url.rstrip('/')}{JOIN_PATH}{normalize_code(code)}"


def extract_invite_code(text: str, length: int = 8) -> str | None:
    """Pull a code out of a bare code or a join link.

    Args:
        text: What the user pasted or typed.
        length: Expected code length.

    Returns:
        The normalized code, or None if ``text`` is neither form.
    """
    candidate = text.strip()
    match = _JOIN_URL_RE.match(candidate)
    if match:
        candidate = match.group("code")

    candidate = normalize_code(candidate)
    if len(candidate) != length or not candidate.isalnum() or not candidate.isascii():
        return None
    return candidate
