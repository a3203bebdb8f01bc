# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Invite code models.

Persisted shape (``inviteCodes/{id}``)::

    {code, teacherId, classId, className, createdAt, expiresAt?, maxUses?,
     currentUses, isActive, metadata?}
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.models.common import DocumentModel, FailureReason
from src.utils.datetime import has_passed


class InviteCodeMetadata(BaseModel):
    """Free-form text a teacher attaches to a code."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str | None = None
    welcome_message: str | None = None


class InviteCodeOptions(BaseModel):
    """Optional constraints for a new code. Absent keys mean no constraint.

    Unknown keys are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    expires_in_days: int | None = Field(default=None, gt=0)
    max_uses: int | None = Field(default=None, gt=0)
    description: str | None = None
    welcome_message: str | None = None


class InviteCode(DocumentModel):
    """An invitation code granting enrollment eligibility into one class."""

    code: str
    teacher_id: str
    class_id: str
    class_name: str
    created_at: datetime | None = None
    expires_at: datetime | None = None
    max_uses: int | None = Field(default=None, gt=0)
    current_uses: int = Field(default=0, ge=0)
    is_active: bool = True
    metadata: InviteCodeMetadata | None = None

    def check_redeemable(self, now: datetime | None = None) -> FailureReason | None:
        """Return why this code cannot be redeemed, or None if it can.

        Expiry is reported ahead of deactivation.
        """
        if has_passed(self.expires_at, now):
            return FailureReason.EXPIRED
        if not self.is_active:
            return FailureReason.NOT_FOUND_OR_INACTIVE
        if self.max_uses is not None and self.current_uses >= self.max_uses:
            return FailureReason.LIMIT_REACHED
        return None

    @property
    def remaining_uses(self) -> int | None:
        """Uses left before the cap, or None when unlimited."""
        if self.max_uses is None:
            return None
        return max(self.max_uses - self.current_uses, 0)


class InviteCodeValidation(BaseModel):
    """Outcome of validating a code. Never raised, always returned."""

    is_valid: bool
    invite_code: InviteCode | None = None
    reason: FailureReason | None = None
    error: str | None = None

    @classmethod
    def valid(cls, invite_code: InviteCode) -> "InviteCodeValidation":
        return cls(is_valid=True, invite_code=invite_code)

    @classmethod
    def invalid(
        cls,
        reason: FailureReason,
        invite_code: InviteCode | None = None,
    ) -> "InviteCodeValidation":
        return cls(
            is_valid=False,
            invite_code=invite_code,
            reason=reason,
            error=reason.message,
        )
