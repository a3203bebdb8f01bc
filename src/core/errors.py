# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Exception taxonomy shared by the enrollment domain services.

Only mutation paths raise these. Read and validation paths report
failures in their result objects instead, and store transport failures
(src.infrastructure.store.StoreError) propagate without being wrapped.
"""


class ClassroomError(Exception):
    """Base exception for enrollment subsystem errors."""

    pass


class NotFoundError(ClassroomError):
    """Raised when a mutation targets a document id that does not exist."""

    def __init__(self, kind: str, doc_id: str) -> None:
        """Initialize the exception.

        Args:
            kind: Human-readable document kind (e.g. "Enrollment").
            doc_id: The id that was not found.
        """
        self.kind = kind
        self.doc_id = doc_id
        super().__init__(f"{kind} '{doc_id}' not found")


class ConflictError(ClassroomError):
    """Raised when a mutation would break a uniqueness invariant."""

    pass


class CodeSpaceExhaustedError(ClassroomError):
    """Raised when no unused invite code was drawn within the attempt cap."""

    def __init__(self, attempts: int) -> None:
        """Initialize the exception.

        Args:
            attempts: How many codes were drawn before giving up.
        """
        self.attempts = attempts
        super().__init__(f"Could not generate a unique invite code after {attempts} attempts")
