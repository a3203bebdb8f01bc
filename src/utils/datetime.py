# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime helpers shared by the enrollment subsystem.

Every datetime handled in Python is timezone-aware UTC. The document store
holds ISO 8601 strings written by format_iso(); pydantic parses them back
when documents are loaded into models.

Usage:
------
    from src.utils.datetime import has_passed, utc_now

    if has_passed(invite.expires_at, utc_now()):
        ...
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    Naive values are taken to already be UTC. None passes through.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def has_passed(moment: datetime | None, reference: datetime | None = None) -> bool:
    """Check whether ``moment`` lies strictly before ``reference``.

    Args:
        moment: The instant to test. None never passes.
        reference: Point of comparison, defaults to now.

    Returns:
        True if ``moment`` is set and already behind ``reference``.
    """
    if moment is None:
        return False

    reference = ensure_utc(reference) if reference is not None else utc_now()
    return reference > ensure_utc(moment)


def format_iso(dt: datetime | None) -> str | None:
    """Serialize a datetime to an ISO 8601 UTC string (None passes through)."""
    if dt is None:
        return None

    return ensure_utc(dt).isoformat()

