"""Document store abstraction shared by the tracker services.

Documents are addressed by slash-separated paths with an even number of
segments (``communities/{guild}/settings/vipLiveChannel``); the parent path
is the collection. Data is a JSON-compatible ``dict``.

Merge-set semantics are top-level only: a map-valued field given to
``set(..., merge=True)`` replaces the stored map as a whole.
"""

from __future__ import annotations

import abc
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

T = TypeVar("T")


class _DeleteField:
    """Sentinel removing a field on merge-set or transactional update."""

    _instance: _DeleteField | None = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD: Any = _DeleteField()


class DocumentStoreError(Exception):
    """Raised when the backing store fails a read or write."""


class TransactionConflict(DocumentStoreError):
    """Raised when a transaction lost a race and should be retried."""


@dataclass
class Document:
    """A snapshot of one stored document."""

    path: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def collection(self) -> str:
        return collection_of(self.path)


ChangeHandler = Callable[[list[Document], list[Document]], Awaitable[None]]
Unsubscribe = Callable[[], None]


def collection_of(path: str) -> str:
    """Return the collection path a document path belongs to."""
    parts = path.strip("/").split("/")
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1])


def apply_fields(
    current: Mapping[str, Any] | None, fields: Mapping[str, Any], *, merge: bool
) -> dict[str, Any]:
    """Apply *fields* over *current* the way ``set`` does.

    ``DELETE_FIELD`` values remove the key. Without *merge* the result only
    holds *fields*.
    """
    result: dict[str, Any] = dict(current or {}) if merge else {}
    for key, value in fields.items():
        if value is DELETE_FIELD:
            result.pop(key, None)
        else:
            result[key] = value
    return result


class Transaction(abc.ABC):
    """Read-then-write unit of work handed to ``run_transaction`` callbacks.

    All reads must happen before the first write.
    """

    @abc.abstractmethod
    async def get(self, path: str) -> Document | None: ...

    @abc.abstractmethod
    def set(self, path: str, fields: Mapping[str, Any], *, merge: bool = False) -> None: ...

    @abc.abstractmethod
    def update(self, path: str, fields: Mapping[str, Any]) -> None: ...

    @abc.abstractmethod
    def delete(self, path: str) -> None: ...


class DocumentStore(abc.ABC):
    """Abstract key/document store with transactions and change feeds."""

    @abc.abstractmethod
    async def get(self, path: str) -> Document | None:
        """Return the document at *path* or ``None``."""

    @abc.abstractmethod
    async def set(self, path: str, fields: Mapping[str, Any], *, merge: bool = False) -> None:
        """Create or overwrite a document; with *merge* keep unspecified fields."""

    @abc.abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abc.abstractmethod
    async def query(
        self, collection: str, where: Mapping[str, Any] | None = None
    ) -> list[Document]:
        """List a collection, optionally filtered by top-level field equality."""

    @abc.abstractmethod
    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run *fn* atomically, retrying on conflict."""

    @abc.abstractmethod
    def subscribe(self, collection: str, on_change: ChangeHandler) -> Unsubscribe:
        """Deliver added/modified and removed documents of *collection*."""


def matches(data: Mapping[str, Any], where: Mapping[str, Any] | None) -> bool:
    """Top-level equality filter used by ``query`` implementations."""
    if not where:
        return True
    return all(data.get(key) == value for key, value in where.items())
