"""Pure merge rules for the message log and the roster.

Everything here works on in-memory lists and returns new lists, so the
same delta can be re-applied to a freshly read document after a write
conflict.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from chat_ledger.models import Direction, MessageRecord, RosterEntry, SourceEvent

DEFAULT_DEDUP_WINDOW = timedelta(seconds=5)


@dataclass(frozen=True)
class PendingMessage:
    """A message waiting to be appended; ``id`` is assigned at append time."""

    conversation_id: int | str
    sender_name: str
    sender_handle: str
    text: str
    direction: Direction
    observed_at: datetime
    upstream_message_id: int | None = None

    def to_record(self, record_id: int) -> MessageRecord:
        return MessageRecord(
            id=record_id,
            conversation_id=self.conversation_id,
            sender_name=self.sender_name,
            sender_handle=self.sender_handle,
            text=self.text,
            direction=self.direction,
            observed_at=self.observed_at,
            upstream_message_id=self.upstream_message_id,
        )


def pending_from_events(events: list[SourceEvent], observed_at: datetime) -> list[PendingMessage]:
    """Turn upstream events into inbound pending messages.

    Events with an empty text body are dropped. Every message of one batch
    shares the local ingestion timestamp.
    """
    return [
        PendingMessage(
            conversation_id=event.sender_id,
            sender_name=event.sender_display_name,
            sender_handle=event.sender_handle,
            text=event.text,
            direction=Direction.INBOUND,
            observed_at=observed_at,
            upstream_message_id=event.source_message_id,
        )
        for event in events
        if event.text
    ]


def is_duplicate(
    records: list[MessageRecord],
    pending: PendingMessage,
    window: timedelta = DEFAULT_DEDUP_WINDOW,
) -> bool:
    """Check whether ``pending`` was already ingested.

    A message counts as seen when a record of the same conversation has the
    identical text and was observed less than ``window`` apart. This is a
    heuristic: the same text sent twice within the window collapses into
    one record, and a replay arriving after the window is stored again.
    """
    for record in records:
        if (
            record.conversation_id == pending.conversation_id
            and record.text == pending.text
            and abs(record.observed_at - pending.observed_at) < window
        ):
            return True
    return False


def next_message_id(records: list[MessageRecord]) -> int:
    return max((record.id for record in records), default=0) + 1


def append_messages(
    records: list[MessageRecord],
    pending: list[PendingMessage],
    window: timedelta | None = DEFAULT_DEDUP_WINDOW,
) -> tuple[list[MessageRecord], list[MessageRecord]]:
    """Append pending messages to a log, skipping already-ingested ones.

    Duplicates are judged against the existing log only, so two identical
    messages within a single batch are both kept. Pass ``window=None`` to
    append without deduplication.

    Args:
        records: Current log in append order
        pending: Messages to add, in encounter order
        window: Deduplication tolerance, or None to disable

    Returns:
        Tuple of (merged log, newly appended records)
    """
    merged = list(records)
    appended = []
    record_id = next_message_id(records)
    for message in pending:
        if window is not None and is_duplicate(records, message, window):
            continue
        record = message.to_record(record_id)
        record_id += 1
        merged.append(record)
        appended.append(record)
    return merged, appended


def remove_message(
    records: list[MessageRecord], message_id: int
) -> tuple[list[MessageRecord], MessageRecord | None]:
    """Drop one record by id; returns the remaining log and the removed record."""
    removed = None
    remaining = []
    for record in records:
        if record.id == message_id and removed is None:
            removed = record
        else:
            remaining.append(record)
    return remaining, removed


def _touch_entry(entry: RosterEntry, record: MessageRecord) -> bool:
    changed = False
    # Names are captured once; only blanks are filled in later.
    if record.direction != Direction.OUTBOUND:
        if not entry.display_name and record.sender_name:
            entry.display_name = record.sender_name
            changed = True
        if not entry.handle and record.sender_handle:
            entry.handle = record.sender_handle
            changed = True
    if record.observed_at >= entry.last_message_at:
        if (entry.last_message_text, entry.last_message_at) != (record.text, record.observed_at):
            entry.last_message_text = record.text
            entry.last_message_at = record.observed_at
            changed = True
    return changed


def _new_entry(record: MessageRecord) -> RosterEntry:
    outbound = record.direction == Direction.OUTBOUND
    return RosterEntry(
        conversation_id=record.conversation_id,
        display_name="" if outbound else record.sender_name,
        handle="" if outbound else record.sender_handle,
        last_message_text=record.text,
        last_message_at=record.observed_at,
        first_contact_at=record.observed_at,
    )


def update_roster(
    roster: list[RosterEntry], records: list[MessageRecord]
) -> tuple[list[RosterEntry], bool]:
    """Fold records into the roster.

    Creates an entry for each unseen non-system conversation and advances
    the last-message fields of known ones. ``last_message_at`` never moves
    backwards and ``first_contact_at`` is never rewritten.

    Returns:
        Tuple of (new roster, whether anything changed)
    """
    entries = [replace(entry) for entry in roster]
    by_id = {entry.conversation_id: entry for entry in entries}
    changed = False
    for record in records:
        if record.is_system:
            continue
        entry = by_id.get(record.conversation_id)
        if entry is None:
            entry = _new_entry(record)
            by_id[record.conversation_id] = entry
            entries.append(entry)
            changed = True
        elif _touch_entry(entry, record):
            changed = True
    return entries, changed


def reconcile_roster(
    roster: list[RosterEntry], records: list[MessageRecord]
) -> tuple[list[RosterEntry], bool]:
    """Create entries for logged conversations the roster is missing."""
    known = {entry.conversation_id for entry in roster}
    missing = [r for r in records if not r.is_system and r.conversation_id not in known]
    if not missing:
        return list(roster), False
    return update_roster(roster, missing)
