# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Per-identity bundle of the enrollment services.

A session is opened at login and closed at logout. Everything that
holds state for one user (the cache and its subscriptions, the bus
handlers) lives in it, so switching users never shares state.

Example:
    async with EnrollmentSession.create(store, settings) as session:
        result = await session.manager.redeem(code, student_id)
        classes = await session.cache.get(student_id)
"""

from collections.abc import Callable
from datetime import datetime

from src.core.config.settings import Settings, get_settings
from src.domains.enrollment.service import EnrollmentManager
from src.domains.invite_code.service import InviteCodeRegistry
from src.infrastructure.cache import EnrollmentCache
from src.infrastructure.events import EventBus
from src.infrastructure.store import DocumentStore
from src.utils.datetime import utc_now


class EnrollmentSession:
    """Registry, manager and cache sharing one store and one event bus."""

    def __init__(
        self,
        registry: InviteCodeRegistry,
        manager: EnrollmentManager,
        cache: EnrollmentCache,
        event_bus: EventBus,
    ) -> None:
        self.registry = registry
        self.manager = manager
        self.cache = cache
        self.event_bus = event_bus
        self._closed = False

    @classmethod
    def create(
        cls,
        store: DocumentStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "EnrollmentSession":
        """Wire up a session over an already connected store.

        Args:
            store: Document store shared with other sessions.
            settings: Application settings. Defaults to get_settings().
            clock: Source of "now" for expiry checks.

        Returns:
            A new session with its own event bus and cache.
        """
        settings = settings or get_settings()
        event_bus = EventBus()
        registry = InviteCodeRegistry(
            store, settings.invite_code, event_bus=event_bus, clock=clock
        )
        manager = EnrollmentManager(store, registry=registry, event_bus=event_bus)
        cache = EnrollmentCache(
            store,
            ttl_seconds=settings.enrollment_cache.ttl_seconds,
            event_bus=event_bus,
        )
        return cls(registry, manager, cache, event_bus)

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Tear down the cache and drop bus handlers. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        await self.cache.cleanup()
        self.event_bus.clear()

    async def __aenter__(self) -> "EnrollmentSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
