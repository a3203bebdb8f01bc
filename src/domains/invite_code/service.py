# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Invite code registry.

This module provides the InviteCodeRegistry class for:
- Issuing unique 8-character codes for a class
- Validating codes (pure read)
- Redeeming a code into an enrollment
- Deactivating and deleting codes

Redemption keeps two invariants under concurrency. The use counter is
taken with a bounded atomic increment before the enrollment is written,
so a code never exceeds maxUses. The active-enrollment check and the
write run under a store lock for the student/class pair, so one student
never ends up with two active enrollments in the same class.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any

from src.core.config.settings import InviteCodeSettings
from src.core.errors import CodeSpaceExhaustedError, NotFoundError
from src.domains.invite_code.links import build_invite_link, normalize_code
from src.domains.records import (
    enrollment_lock_scope,
    find_active_enrollment,
    new_enrollment_document,
)
from src.infrastructure.events import EventBus, EventTypes
from src.infrastructure.store import (
    ENROLLMENTS,
    INVITE_CODES,
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
    IncrementLimitError,
    StoreError,
    where,
)
from src.models.common import FailureReason
from src.models.enrollment import Enrollment, EnrollmentResult, EnrollmentSource
from src.models.invite_code import (
    InviteCode,
    InviteCodeMetadata,
    InviteCodeOptions,
    InviteCodeValidation,
)
from src.utils.datetime import format_iso, utc_now

logger = logging.getLogger(__name__)


class InviteCodeNotFoundError(NotFoundError):
    """Raised when a code id does not exist."""

    def __init__(self, code_id: str) -> None:
        super().__init__("Invite code", code_id)


class InviteCodeRegistry:
    """Issues, validates and redeems class invitation codes.

    Attributes:
        store: Document store holding inviteCodes and enrollments.
        settings: Code length, alphabet and generation attempt cap.
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: InviteCodeSettings | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the registry.

        Args:
            store: Document store.
            settings: Invite code settings, defaults when omitted.
            event_bus: Optional bus for invite code lifecycle events.
            clock: Source of "now" for expiry checks.
        """
        self.store = store
        self.settings = settings or InviteCodeSettings()
        self._event_bus = event_bus
        self._clock = clock

    async def generate(
        self,
        teacher_id: str,
        class_id: str,
        class_name: str,
        options: InviteCodeOptions | Mapping[str, Any] | None = None,
    ) -> InviteCode:
        """Issue a new code for a class.

        Args:
            teacher_id: Issuing teacher.
            class_id: Class the code enrolls into.
            class_name: Display name copied onto the code.
            options: expires_in_days, max_uses, description and
                welcome_message. Unknown keys are rejected.

        Returns:
            The stored InviteCode.

        Raises:
            pydantic.ValidationError: If options are malformed.
            CodeSpaceExhaustedError: If no unused code was drawn in time.
            StoreError: If the store fails.
        """
        if not isinstance(options, InviteCodeOptions):
            options = InviteCodeOptions.model_validate(dict(options or {}))

        code = await self._draw_unique_code()

        data: dict[str, Any] = {
            "code": code,
            "teacherId": teacher_id,
            "classId": class_id,
            "className": class_name,
            "createdAt": SERVER_TIMESTAMP,
            "currentUses": 0,
            "isActive": True,
        }
        if options.expires_in_days:
            data["expiresAt"] = format_iso(
                self._clock() + timedelta(days=options.expires_in_days)
            )
        if options.max_uses:
            data["maxUses"] = options.max_uses
        if options.description or options.welcome_message:
            data["metadata"] = InviteCodeMetadata(
                description=options.description,
                welcome_message=options.welcome_message,
            ).model_dump(mode="json", by_alias=True, exclude_none=True)

        document = await self.store.create(INVITE_CODES, data)
        invite = InviteCode.from_document(document)

        logger.info(
            "Created invite code: code=%s, class=%s, teacher=%s, max_uses=%s",
            invite.code,
            class_id,
            teacher_id,
            invite.max_uses,
        )
        await self._publish(EventTypes.InviteCode.CREATED, invite)
        return invite

    async def validate(self, code: str) -> InviteCodeValidation:
        """Check whether a code can currently be redeemed.

        Pure read; never raises. A store failure is reported with reason
        STORE_ERROR.

        Args:
            code: Code as entered (case and surrounding spaces ignored).

        Returns:
            Validation result carrying the code record when valid.
        """
        try:
            return await self._validate(code)
        except StoreError as e:
            logger.error("Failed to validate invite code %s: %s", code, str(e))
            return InviteCodeValidation.invalid(FailureReason.STORE_ERROR)

    async def redeem(
        self,
        code: str,
        student_id: str,
        student_email: str | None = None,
        student_name: str | None = None,
    ) -> EnrollmentResult:
        """Enroll a student into the code's class.

        Args:
            code: Invite code as entered.
            student_id: Student being enrolled.
            student_email: Optional denormalized email.
            student_name: Optional denormalized display name.

        Returns:
            Success with the new Enrollment, or failure with the validation
            or conflict reason.

        Raises:
            StoreError: If the store fails. When the enrollment write fails
                after the use counter was taken, the counter is released
                before the error propagates.
        """
        validation = await self._validate(code)
        if not validation.is_valid or validation.invite_code is None:
            return EnrollmentResult.failed(validation.reason or FailureReason.NOT_FOUND_OR_INACTIVE)

        invite = validation.invite_code

        async with self.store.lock(enrollment_lock_scope(student_id, invite.class_id)):
            existing = await find_active_enrollment(self.store, student_id, invite.class_id)
            if existing is not None:
                logger.info(
                    "Redeem rejected, already enrolled: student=%s, class=%s",
                    student_id,
                    invite.class_id,
                )
                return EnrollmentResult.failed(FailureReason.ALREADY_ENROLLED)

            try:
                uses = await self.store.increment(
                    INVITE_CODES,
                    invite.id,
                    "currentUses",
                    1,
                    max_value=invite.max_uses,
                )
            except IncrementLimitError:
                return EnrollmentResult.failed(FailureReason.LIMIT_REACHED)
            except DocumentNotFoundError:
                # Deleted between validation and redemption
                return EnrollmentResult.failed(FailureReason.NOT_FOUND_OR_INACTIVE)

            data = new_enrollment_document(
                student_id=student_id,
                teacher_id=invite.teacher_id,
                class_id=invite.class_id,
                class_name=invite.class_name,
                source=EnrollmentSource.INVITE_LINK,
                student_email=student_email,
                student_name=student_name,
                invite_code=invite.code,
            )
            try:
                document = await self.store.create(ENROLLMENTS, data)
            except StoreError:
                await self._release_use(invite)
                raise

        enrollment = Enrollment.from_document(document)
        logger.info(
            "Redeemed invite code: code=%s, student=%s, class=%s, uses=%d/%s",
            invite.code,
            student_id,
            invite.class_id,
            uses,
            invite.max_uses if invite.max_uses is not None else "unlimited",
        )
        return EnrollmentResult.succeeded(enrollment)

    async def deactivate(self, code_id: str) -> InviteCode:
        """Permanently deactivate a code. Repeated calls are no-ops.

        Raises:
            InviteCodeNotFoundError: If the code does not exist.
            StoreError: If the store fails.
        """
        invite = await self.get(code_id)
        if invite is None:
            raise InviteCodeNotFoundError(code_id)
        if not invite.is_active:
            return invite

        try:
            document = await self.store.update(INVITE_CODES, code_id, {"isActive": False})
        except DocumentNotFoundError as e:
            raise InviteCodeNotFoundError(code_id) from e

        invite = InviteCode.from_document(document)
        logger.info("Deactivated invite code: code=%s, id=%s", invite.code, code_id)
        await self._publish(EventTypes.InviteCode.DEACTIVATED, invite)
        return invite

    async def delete(self, code_id: str) -> bool:
        """Hard-delete a code. Returns False if it was already gone.

        Raises:
            StoreError: If the store fails.
        """
        invite = await self.get(code_id)
        deleted = await self.store.delete(INVITE_CODES, code_id)
        if deleted:
            logger.info("Deleted invite code: id=%s", code_id)
            if invite is not None:
                await self._publish(EventTypes.InviteCode.DELETED, invite)
        return deleted

    async def get(self, code_id: str) -> InviteCode | None:
        """Fetch a code by document id."""
        document = await self.store.get(INVITE_CODES, code_id)
        if document is None:
            return None
        return InviteCode.from_document(document)

    async def list_for_teacher(self, teacher_id: str) -> list[InviteCode]:
        """All codes a teacher issued, active or not, newest first."""
        documents = await self.store.query(
            INVITE_CODES,
            [where("teacherId", "==", teacher_id)],
            order_by="createdAt",
            descending=True,
        )
        return [InviteCode.from_document(d) for d in documents]

    async def list_for_class(self, class_id: str) -> list[InviteCode]:
        """Active codes for a class, newest first."""
        documents = await self.store.query(
            INVITE_CODES,
            [where("classId", "==", class_id), where("isActive", "==", True)],
            order_by="createdAt",
            descending=True,
        )
        return [InviteCode.from_document(d) for d in documents]

    def invite_link(self, invite: InviteCode | str) -> str:
        """Shareable join link for a code."""
        code = invite.code if isinstance(invite, InviteCode) else invite
        return build_invite_link(code, self.settings.link_base_url)

    async def _validate(self, code: str) -> InviteCodeValidation:
        """Validation that lets StoreError propagate (used by redeem)."""
        normalized = normalize_code(code)
        if not normalized:
            return InviteCodeValidation.invalid(FailureReason.NOT_FOUND_OR_INACTIVE)

        documents = await self.store.query(INVITE_CODES, [where("code", "==", normalized)])
        if not documents:
            return InviteCodeValidation.invalid(FailureReason.NOT_FOUND_OR_INACTIVE)

        candidates = [InviteCode.from_document(d) for d in documents]
        invite = next((c for c in candidates if c.is_active), candidates[0])

        reason = invite.check_redeemable(self._clock())
        if reason is not None:
            return InviteCodeValidation.invalid(reason)
        return InviteCodeValidation.valid(invite)

    def _new_code(self) -> str:
        alphabet = self.settings.alphabet
        return "".join(secrets.choice(alphabet) for _ in range(self.settings.length))

    async def _draw_unique_code(self) -> str:
        """Draw codes until one is unused by any code, active or not.

        Raises:
            CodeSpaceExhaustedError: After max_generation_attempts draws.
        """
        attempts = self.settings.max_generation_attempts
        for attempt in range(1, attempts + 1):
            candidate = self._new_code()
            existing = await self.store.query(
                INVITE_CODES, [where("code", "==", candidate)], limit=1
            )
            if not existing:
                return candidate
            logger.warning("Invite code collision on attempt %d/%d", attempt, attempts)

        raise CodeSpaceExhaustedError(attempts)

    async def _release_use(self, invite: InviteCode) -> None:
        """Give back a use taken by a redemption whose enrollment write failed."""
        try:
            await self.store.increment(INVITE_CODES, invite.id, "currentUses", -1)
        except (StoreError, DocumentNotFoundError) as e:
            logger.error(
                "Failed to release use of invite code %s after failed enrollment: %s",
                invite.code,
                str(e),
                exc_info=True,
            )

    async def _publish(self, event_type: str, invite: InviteCode) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(
            event_type,
            {
                "invite_code_id": invite.id,
                "code": invite.code,
                "teacher_id": invite.teacher_id,
                "class_id": invite.class_id,
            },
        )
