"""Ingestion engine: merges upstream events into the message log and roster."""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from chat_ledger.logging import get_logger
from chat_ledger.models import (
    MessageRecord,
    RosterEntry,
    SourceEvent,
    records_from_document,
    records_to_document,
    roster_from_document,
    roster_to_document,
    utc_now,
)
from chat_ledger.store.github import MalformedDocumentError
from chat_ledger.sync.merge import (
    DEFAULT_DEDUP_WINDOW,
    PendingMessage,
    append_messages,
    pending_from_events,
    reconcile_roster,
    remove_message,
    update_roster,
)
from chat_ledger.sync.persist import (
    DECODE_ERRORS,
    DEFAULT_MAX_ATTEMPTS,
    DocumentStore,
    OptimisticWriter,
    PersistOutcome,
    PersistStatus,
    SyncState,
)

logger = get_logger("engine")


class MessageSource(Protocol):
    def poll_new(self) -> list[SourceEvent]: ...

    def acknowledge(self) -> None: ...


@dataclass
class SyncResult:
    """Merged view of both documents plus how persisting them went.

    ``messages`` and ``roster`` always hold the best-known merged state,
    including records that could not be stored; check ``ok`` before
    assuming they are durable.
    """

    messages: list[MessageRecord]
    roster: list[RosterEntry]
    log_outcome: PersistOutcome
    roster_outcome: PersistOutcome
    appended: list[MessageRecord] = field(default_factory=list)
    removed: MessageRecord | None = None

    @property
    def ok(self) -> bool:
        return self.log_outcome.ok and self.roster_outcome.ok

    @property
    def errors(self) -> list[Exception]:
        return [o.error for o in (self.log_outcome, self.roster_outcome) if o.error is not None]


class IngestionEngine:
    """Owns the write discipline for the message log and roster documents.

    Polled events, outbound messages and deletions all funnel through
    ``commit``/``remove``, which persist each document with optimistic
    concurrency. The two documents are written one after the other with no
    joint transaction; the roster is reconciled against the log on every
    write so a missed roster update is repaired by the next one.
    """

    def __init__(
        self,
        store: DocumentStore,
        source: MessageSource | None = None,
        messages_path: str = "chats.json",
        roster_path: str = "users.json",
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._source = source
        self._writer = OptimisticWriter(store, SyncState(), max_attempts)
        self.messages_path = messages_path
        self.roster_path = roster_path
        self.dedup_window = dedup_window
        self.clock = clock

    @property
    def state(self) -> SyncState:
        return self._writer.state

    def read_messages(self) -> list[MessageRecord]:
        """Read the message log from the store (empty if absent).

        Raises:
            StoreError: If the store is unreachable or the log is malformed
        """
        return self._load(self.messages_path, records_from_document)

    def read_roster(self) -> list[RosterEntry]:
        """Read the roster from the store (empty if absent)."""
        return self._load(self.roster_path, roster_from_document)

    def _load(self, path: str, decode: Callable[[Any], list]) -> list:
        document = self._writer.read(path).document
        try:
            return decode(document)
        except DECODE_ERRORS as e:
            self.state.forget(path)
            raise MalformedDocumentError(f"Document {path} is malformed: {e!r}") from e

    def run_cycle(self, cancel: threading.Event | None = None) -> SyncResult | None:
        """Poll the source once and ingest whatever arrived.

        Returns ``None`` without writing anything if ``cancel`` was set
        while the poll was in flight. The polled batch is acknowledged to
        the source only once the log holds it.

        Raises:
            SourceError: If polling fails
        """
        if self._source is None:
            raise RuntimeError("Engine has no message source to poll")

        events = self._source.poll_new()
        if cancel is not None and cancel.is_set():
            logger.info("Cycle cancelled, discarding %d polled events", len(events))
            return None

        result = self.ingest(events)
        if result.log_outcome.ok:
            self._source.acknowledge()
        return result

    def ingest(self, events: list[SourceEvent]) -> SyncResult:
        """Merge raw upstream events as inbound messages."""
        pending = pending_from_events(events, self.clock())
        result = self.commit(pending, dedupe=True)
        if result.appended:
            logger.info(
                "Ingested messages: new=%d duplicates=%d",
                len(result.appended),
                len(pending) - len(result.appended),
            )
        else:
            logger.debug("No new messages: events=%d", len(events))
        return result

    def commit(self, pending: list[PendingMessage], dedupe: bool = True) -> SyncResult:
        """Append pending messages and fold them into the roster.

        Args:
            pending: Messages to append, in order
            dedupe: Apply the time-window duplicate check

        Returns:
            SyncResult with the merged documents and persist outcomes
        """
        window = self.dedup_window if dedupe else None
        appended: list[MessageRecord] = []

        def apply_log(document: Any) -> Any | None:
            nonlocal appended
            records, appended = append_messages(records_from_document(document), pending, window)
            if not appended:
                return None
            return records_to_document(records)

        log_outcome, log_document = self._writer.persist(self.messages_path, apply_log)
        messages = records_from_document(log_document)

        if not log_outcome.ok:
            return SyncResult(
                messages=messages,
                roster=self._cached_roster(),
                log_outcome=log_outcome,
                roster_outcome=PersistOutcome(self.roster_path, PersistStatus.SKIPPED),
                appended=appended,
            )

        roster_outcome, roster = self._persist_roster(appended, messages)
        return SyncResult(
            messages=messages,
            roster=roster,
            log_outcome=log_outcome,
            roster_outcome=roster_outcome,
            appended=appended,
        )

    def remove(self, message_id: int) -> SyncResult:
        """Delete one record from the log and rewrite the whole document.

        The roster is left untouched: an entry stays once its conversation
        has appeared.

        Raises:
            LookupError: If no record has ``message_id``
        """
        removed: MessageRecord | None = None

        def apply_log(document: Any) -> Any | None:
            nonlocal removed
            records, removed = remove_message(records_from_document(document), message_id)
            if removed is None:
                return None
            return records_to_document(records)

        log_outcome, log_document = self._writer.persist(self.messages_path, apply_log)
        if log_outcome.status == PersistStatus.UNCHANGED:
            raise LookupError(f"No message with id {message_id}")

        if log_outcome.ok:
            logger.info("Deleted message: id=%d", message_id)
        return SyncResult(
            messages=records_from_document(log_document),
            roster=self._cached_roster(),
            log_outcome=log_outcome,
            roster_outcome=PersistOutcome(self.roster_path, PersistStatus.SKIPPED),
            removed=removed,
        )

    def _persist_roster(
        self, appended: list[MessageRecord], messages: list[MessageRecord]
    ) -> tuple[PersistOutcome, list[RosterEntry]]:
        def apply_roster(document: Any) -> Any | None:
            entries, touched = update_roster(roster_from_document(document), appended)
            entries, repaired = reconcile_roster(entries, messages)
            if not (touched or repaired):
                return None
            return roster_to_document(entries)

        outcome, document = self._writer.persist(self.roster_path, apply_roster)
        if outcome.status == PersistStatus.FAILED:
            # Show the intended roster even though it is not stored yet.
            entries, _ = update_roster(roster_from_document(document), appended)
            entries, _ = reconcile_roster(entries, messages)
            return outcome, entries
        return outcome, roster_from_document(document)

    def _cached_roster(self) -> list[RosterEntry]:
        return roster_from_document(self.state.cached(self.roster_path))
