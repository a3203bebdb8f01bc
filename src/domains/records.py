# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Enrollment document shape and lookups shared by the domain services.

Both code redemption and manual enrollment write ``enrollments``
documents and both must hold the at-most-one-active invariant, so the
document builder, the lookup and the lock scope live here rather than in
either service.
"""

from typing import Any

from src.infrastructure.store import (
    ENROLLMENTS,
    SERVER_TIMESTAMP,
    DocumentStore,
    FieldFilter,
    where,
)
from src.models.enrollment import (
    Enrollment,
    EnrollmentMetadata,
    EnrollmentSource,
    EnrollmentStatus,
)


def active_enrollment_filters(student_id: str, class_id: str) -> list[FieldFilter]:
    return [
        where("studentId", "==", student_id),
        where("classId", "==", class_id),
        where("status", "==", EnrollmentStatus.ACTIVE.value),
    ]


def enrollment_lock_scope(student_id: str, class_id: str) -> str:
    """Lock scope serializing enrollment writes for one student/class pair."""
    return f"enrollment:{class_id}:{student_id}"


async def find_active_enrollment(
    store: DocumentStore,
    student_id: str,
    class_id: str,
    exclude_id: str | None = None,
) -> Enrollment | None:
    """Return the student's active enrollment in the class, if any.

    Args:
        store: Document store.
        student_id: Student identifier.
        class_id: Class identifier.
        exclude_id: Enrollment id to ignore (the one being re-activated).
    """
    documents = await store.query(ENROLLMENTS, active_enrollment_filters(student_id, class_id))
    for document in documents:
        if document.id != exclude_id:
            return Enrollment.from_document(document)
    return None


def new_enrollment_document(
    *,
    student_id: str,
    teacher_id: str,
    class_id: str,
    class_name: str,
    source: EnrollmentSource,
    student_email: str | None = None,
    student_name: str | None = None,
    invite_code: str | None = None,
) -> dict[str, Any]:
    """Build the body of a freshly created, active enrollment."""
    data: dict[str, Any] = {
        "studentId": student_id,
        "teacherId": teacher_id,
        "classId": class_id,
        "className": class_name,
        "status": EnrollmentStatus.ACTIVE.value,
        "enrolledAt": SERVER_TIMESTAMP,
        "metadata": EnrollmentMetadata(source=source).model_dump(mode="json", by_alias=True),
    }
    if student_email:
        data["studentEmail"] = student_email
    if student_name:
        data["studentName"] = student_name
    if invite_code:
        data["inviteCode"] = invite_code
    return data
