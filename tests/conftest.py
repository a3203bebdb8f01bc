# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides fixtures used across all test types:
- Unit tests (in-memory document store)
- Integration tests (Redis document store)
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.core.config.settings import InviteCodeSettings
from src.domains.enrollment import EnrollmentManager
from src.domains.invite_code import InviteCodeRegistry
from src.infrastructure.events import EventBus
from src.infrastructure.store import InMemoryDocumentStore


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (requires services)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Clock Fixtures
# =============================================================================


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic seconds source."""

    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Provide a UTC clock starting at a fixed instant."""
    return FakeClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def monotonic() -> FakeMonotonic:
    """Provide a monotonic clock for TTL tests."""
    return FakeMonotonic()


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
async def store(clock: FakeClock) -> AsyncGenerator[InMemoryDocumentStore, None]:
    """Provide an in-memory document store sharing the test clock."""
    memory_store = InMemoryDocumentStore(clock=clock)
    yield memory_store
    await memory_store.close()


@pytest.fixture
def event_bus() -> EventBus:
    """Provide a fresh event bus."""
    return EventBus()


@pytest.fixture
def invite_settings() -> InviteCodeSettings:
    """Provide default invite code settings."""
    return InviteCodeSettings()


@pytest.fixture
def registry(
    store: InMemoryDocumentStore,
    invite_settings: InviteCodeSettings,
    event_bus: EventBus,
    clock: FakeClock,
) -> InviteCodeRegistry:
    """Provide an invite code registry over the in-memory store."""
    return InviteCodeRegistry(store, invite_settings, event_bus=event_bus, clock=clock)


@pytest.fixture
def manager(
    store: InMemoryDocumentStore,
    registry: InviteCodeRegistry,
    event_bus: EventBus,
) -> EnrollmentManager:
    """Provide an enrollment manager sharing the registry and bus."""
    return EnrollmentManager(store, registry=registry, event_bus=event_bus)


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def sample_teacher_id() -> str:
    """Provide a sample teacher ID for testing."""
    return "teacher-550e8400"


@pytest.fixture
def sample_class_id() -> str:
    """Provide a sample class ID for testing."""
    return "class-math-1a"


@pytest.fixture
def sample_student_id() -> str:
    """Provide a sample student ID for testing."""
    return "student-550e8401"


@pytest.fixture
def sample_class(sample_teacher_id: str, sample_class_id: str) -> dict[str, Any]:
    """Provide the teacher/class triple codes are generated for."""
    return {
        "teacher_id": sample_teacher_id,
        "class_id": sample_class_id,
        "class_name": "Mathematics 1A",
    }
