"""Optimistic read-modify-write against the document store."""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from chat_ledger.logging import get_logger
from chat_ledger.store.github import ConflictError, MalformedDocumentError, ReadResult, StoreError

logger = get_logger("persist")

DEFAULT_MAX_ATTEMPTS = 3

# Raised by the record codecs on documents of the wrong shape.
DECODE_ERRORS = (KeyError, TypeError, ValueError)


class DocumentStore(Protocol):
    def read(self, path: str) -> ReadResult: ...

    def write(self, path: str, document: Any, expected_revision: str | None) -> str: ...


class PersistStatus(str, Enum):
    WRITTEN = "written"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PersistOutcome:
    """Result of persisting one document."""

    path: str
    status: PersistStatus
    attempts: int = 0
    revision: str | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.status != PersistStatus.FAILED


@dataclass
class SyncState:
    """Last successfully read or written version of each document.

    Not persisted. Serves as the local cache of the store and lets the
    writer notice documents that changed behind its back.
    """

    revisions: dict[str, str | None] = field(default_factory=dict)
    documents: dict[str, Any] = field(default_factory=dict)

    def remember(self, path: str, document: Any, revision: str | None) -> None:
        self.revisions[path] = revision
        self.documents[path] = document

    def cached(self, path: str) -> Any:
        return self.documents.get(path)

    def forget(self, path: str) -> None:
        self.revisions.pop(path, None)
        self.documents.pop(path, None)


class OptimisticWriter:
    """Apply a delta to a document with conditional writes and bounded retry.

    Every attempt starts from a fresh read. A conflicting write discards
    that read and re-applies the same delta to the newer document, up to
    ``max_attempts`` times. Transport failures are not retried.
    """

    def __init__(
        self,
        store: DocumentStore,
        state: SyncState | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._store = store
        self._max_attempts = max_attempts
        self.state = state or SyncState()

    def read(self, path: str) -> ReadResult:
        """Read a document and refresh the cache.

        Raises:
            StoreError: If the store cannot be reached
        """
        result = self._store.read(path)
        known = self.state.revisions.get(path)
        if path in self.state.revisions and known != result.revision:
            logger.info(
                "Document changed externally: path=%s cached=%s current=%s",
                path,
                known,
                result.revision,
            )
        self.state.remember(path, result.document, result.revision)
        return result

    def persist(
        self, path: str, apply: Callable[[Any], Any | None]
    ) -> tuple[PersistOutcome, Any]:
        """Read, transform and conditionally write one document.

        Args:
            path: Document path in the store
            apply: Delta function. Receives the current document (``None``
                when absent) and returns the replacement, or ``None`` if
                nothing needs writing. Must be safe to call repeatedly.

        Returns:
            Tuple of (outcome, best-known document). On failure the
            document is the last merge that could not be stored, or the
            cached copy if no merge was made. A document that ``apply``
            cannot decode fails with ``MalformedDocumentError`` and is not
            retried.
        """
        last_error: Exception | None = None
        document = self.state.cached(path)

        for attempt in range(1, self._max_attempts + 1):
            try:
                current = self.read(path)
            except StoreError as e:
                logger.warning("Read failed: path=%s attempt=%d error=%s", path, attempt, e)
                return PersistOutcome(path, PersistStatus.FAILED, attempt, error=e), document

            try:
                updated = apply(current.document)
            except DECODE_ERRORS as e:
                # Keep the undecodable copy out of the cache.
                self.state.forget(path)
                logger.error("Malformed document, not writing: path=%s error=%r", path, e)
                error = MalformedDocumentError(f"Document {path} is malformed: {e!r}")
                return (
                    PersistOutcome(path, PersistStatus.FAILED, attempt, current.revision, error),
                    document,
                )
            if updated is None:
                return (
                    PersistOutcome(path, PersistStatus.UNCHANGED, attempt, current.revision),
                    current.document,
                )
            document = updated

            try:
                revision = self._store.write(path, updated, current.revision)
            except ConflictError as e:
                last_error = e
                logger.warning(
                    "Write conflict, retrying: path=%s attempt=%d/%d",
                    path,
                    attempt,
                    self._max_attempts,
                )
                continue
            except StoreError as e:
                logger.warning("Write failed: path=%s attempt=%d error=%s", path, attempt, e)
                return PersistOutcome(path, PersistStatus.FAILED, attempt, error=e), document

            self.state.remember(path, updated, revision)
            return PersistOutcome(path, PersistStatus.WRITTEN, attempt, revision), updated

        logger.error(
            "Giving up after %d conflicting writes: path=%s", self._max_attempts, path
        )
        return (
            PersistOutcome(path, PersistStatus.FAILED, self._max_attempts, error=last_error),
            document,
        )
