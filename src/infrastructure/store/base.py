# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Document store interface.

The enrollment subsystem persists to a managed document store that it
does not own. This module defines the slice of that store it relies on:

- create/read/update/delete of single documents by id
- equality and range filtered queries over a named collection
- atomic, optionally bounded, per-field increments
- named scope locks
- change subscriptions that deliver the full matching document set

Documents are JSON-compatible dicts. Field values equal to
SERVER_TIMESTAMP are replaced by the adapter's clock at write time.

Example:
    store = create_document_store(settings)
    await store.connect()

    doc = await store.create("enrollments", {"studentId": "s1", "status": "active"})
    active = await store.query("enrollments", [where("status", "==", "active")])

    subscription = await store.subscribe(
        "enrollments", [where("studentId", "==", "s1")], on_change
    )
    await subscription.close()
"""

import logging
import operator
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Literal

logger = logging.getLogger(__name__)

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "in"]

# Receives the full current matching set after every relevant change
SubscriptionCallback = Callable[[list["Document"]], None]

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda value, options: value in options,
}


class _ServerTimestamp:
    """Sentinel type for store-assigned timestamps."""

    _instance: "_ServerTimestamp | None" = None

    def __new__(cls) -> "_ServerTimestamp":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class StoreError(Exception):
    """Transport or permission failure talking to the document store.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying client error, if any.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """Initialize the store error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class DocumentNotFoundError(LookupError):
    """Raised when an update or increment targets a missing document."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} does not exist")


class IncrementLimitError(Exception):
    """Raised when a bounded increment would push a field past its limit."""

    def __init__(self, collection: str, doc_id: str, field_name: str, limit: int) -> None:
        self.collection = collection
        self.doc_id = doc_id
        self.field_name = field_name
        self.limit = limit
        super().__init__(f"{collection}/{doc_id}.{field_name} would exceed {limit}")


@dataclass(frozen=True)
class FieldFilter:
    """A single ``field <op> value`` query condition."""

    field_name: str
    op: FilterOp
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _COMPARATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, data: dict[str, Any]) -> bool:
        """Check a document body against this condition.

        A missing field only satisfies ``!=``. Comparisons between
        incompatible types are treated as non-matching.
        """
        if self.field_name not in data:
            return self.op == "!="
        try:
            return _COMPARATORS[self.op](data[self.field_name], self.value)
        except TypeError:
            return False


def where(field_name: str, op: FilterOp, value: Any) -> FieldFilter:
    """Shorthand constructor for FieldFilter."""
    return FieldFilter(field_name, op, value)


def matches_all(data: dict[str, Any], filters: Iterable[FieldFilter]) -> bool:
    """Check a document body against every filter."""
    return all(f.matches(data) for f in filters)


def order_documents(
    documents: list["Document"],
    order_by: str | None,
    descending: bool,
) -> list["Document"]:
    """Sort documents by one field; documents missing the field sort last."""
    if order_by is None:
        return documents

    present = [d for d in documents if d.data.get(order_by) is not None]
    missing = [d for d in documents if d.data.get(order_by) is None]
    present.sort(key=lambda d: d.data[order_by], reverse=descending)
    return present + missing


@dataclass(frozen=True)
class Document:
    """A stored document: its id and its body."""

    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class Subscription:
    """Handle for a live query subscription.

    Adapters create these and pass a close hook; callers only ever call
    close(), which is idempotent.
    """

    def __init__(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        callback: SubscriptionCallback,
        on_close: Callable[["Subscription"], Awaitable[None]],
        order_by: str | None = None,
        descending: bool = False,
    ) -> None:
        self.collection = collection
        self.filters = tuple(filters)
        self.callback = callback
        self.order_by = order_by
        self.descending = descending
        self._on_close = on_close
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, documents: list[Document]) -> None:
        """Hand a result set to the callback; callback errors are logged."""
        if not self._active:
            return
        try:
            self.callback(documents)
        except Exception as e:
            logger.error(
                "Subscription callback failed for %s: %s",
                self.collection,
                str(e),
                exc_info=True,
            )

    async def close(self) -> None:
        """Stop deliveries and release adapter resources."""
        if not self._active:
            return
        self._active = False
        await self._on_close(self)


class DocumentStore(ABC):
    """Async document store used by the enrollment subsystem."""

    async def connect(self) -> None:
        """Open connections. No-op for adapters without any."""

    async def close(self) -> None:
        """Close connections and every open subscription."""

    @abstractmethod
    async def create(self, collection: str, data: dict[str, Any]) -> Document:
        """Insert a document under a new id and return it as stored."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Document | None:
        """Fetch a document by id, or None if it does not exist."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict[str, Any],
    ) -> Document:
        """Merge ``changes`` into a document and return the result.

        A value of None removes the field.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """Delete a document. Returns False if it did not exist."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Sequence[FieldFilter] = (),
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Document]:
        """Return documents matching every filter."""

    @abstractmethod
    async def increment(
        self,
        collection: str,
        doc_id: str,
        field_name: str,
        amount: int = 1,
        max_value: int | None = None,
    ) -> int:
        """Atomically add ``amount`` to an integer field and return the new value.

        A missing field counts as 0.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            IncrementLimitError: If the new value would exceed ``max_value``.
        """

    @abstractmethod
    async def subscribe(
        self,
        collection: str,
        filters: Sequence[FieldFilter],
        callback: SubscriptionCallback,
        order_by: str | None = None,
        descending: bool = False,
    ) -> Subscription:
        """Start a live query.

        ``callback`` receives the current matching set once the
        subscription is established, then the full matching set again after
        every change that adds, alters or removes a matching document.
        """

    @abstractmethod
    def lock(self, scope: str) -> AbstractAsyncContextManager[None]:
        """Mutual exclusion for a named scope across all store clients."""
