# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Session-scoped caching.

Example:
    from src.infrastructure.cache import EnrollmentCache

    cache = EnrollmentCache(store, ttl_seconds=settings.enrollment_cache.ttl_seconds)
    enrollments = await cache.get(student_id)
    await cache.cleanup()
"""

from src.infrastructure.cache.enrollment_cache import (
    DEFAULT_TTL_SECONDS,
    CacheKey,
    EnrollmentCache,
)

__all__ = [
    "CacheKey",
    "DEFAULT_TTL_SECONDS",
    "EnrollmentCache",
]
