# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Infrastructure layer for external service integrations.

This package contains:
- Document store interface with in-memory and Redis adapters
- Session-scoped enrollment cache
- In-process event bus
"""
