# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process domain events.

Components:
- EventBus: async pub/sub with pattern matching
- EventTypes / EventPatterns: event name constants

The bus is an explicit object: each session (or test) owns its own, so
nothing leaks between identities.
"""

from src.infrastructure.events.bus import EventBus, EventData, EventHandler
from src.infrastructure.events.types import EventPatterns, EventTypes

__all__ = [
    "EventBus",
    "EventData",
    "EventHandler",
    "EventTypes",
    "EventPatterns",
]
