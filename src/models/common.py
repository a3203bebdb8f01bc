# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared model base and result vocabulary.

Persisted documents use camelCase field names while Python code uses
snake_case attributes. DocumentModel bridges the two with an alias
generator, so ``Model.from_document(doc)`` reads store data and
``model.to_document()`` produces it.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from src.infrastructure.store.base import Document


class DocumentModel(BaseModel):
    """Base for models persisted as store documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str

    @classmethod
    def from_document(cls, document: "Document") -> Self:
        """Build the model from a store document."""
        return cls.model_validate({**document.data, "id": document.id})

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase, JSON-compatible document shape (no id)."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"id"},
            exclude_none=True,
        )


class FailureReason(str, Enum):
    """Why a validation, redemption or read did not succeed.

    Callers branch on the reason; ``message`` is the display text.
    """

    NOT_FOUND_OR_INACTIVE = "not_found_or_inactive"
    EXPIRED = "expired"
    LIMIT_REACHED = "limit_reached"
    ALREADY_ENROLLED = "already_enrolled"
    STORE_ERROR = "store_error"

    @property
    def message(self) -> str:
        """Short human-readable message for this reason."""
        return _FAILURE_MESSAGES[self]


_FAILURE_MESSAGES: dict[FailureReason, str] = {
    FailureReason.NOT_FOUND_OR_INACTIVE: "not found or inactive",
    FailureReason.EXPIRED: "expired",
    FailureReason.LIMIT_REACHED: "limit reached",
    FailureReason.ALREADY_ENROLLED: "already enrolled",
    FailureReason.STORE_ERROR: "store unavailable",
}
