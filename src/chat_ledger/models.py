"""Canonical data models for the message log and the roster."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# Conversation id reserved for system/control records; never part of a roster.
SYSTEM_CONVERSATION_ID = 0


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    SYSTEM = "system"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    """Serialize a timestamp as ISO-8601 UTC with millisecond precision."""
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class MessageRecord:
    """One entry of the persisted message log.

    Records are immutable once appended; the only permitted change to the
    log is wholesale removal of a record.
    """

    id: int
    conversation_id: int | str
    sender_name: str
    sender_handle: str
    text: str
    direction: Direction
    observed_at: datetime
    upstream_message_id: int | None = None

    @property
    def is_system(self) -> bool:
        return self.conversation_id == SYSTEM_CONVERSATION_ID

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_name": self.sender_name,
            "sender_handle": self.sender_handle,
            "text": self.text,
            "direction": self.direction.value,
            "observed_at": format_timestamp(self.observed_at),
            "upstream_message_id": self.upstream_message_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageRecord":
        return cls(
            id=int(data["id"]),
            conversation_id=data["conversation_id"],
            sender_name=data.get("sender_name", ""),
            sender_handle=data.get("sender_handle", ""),
            text=data.get("text", ""),
            direction=Direction(data.get("direction", Direction.INBOUND.value)),
            observed_at=parse_timestamp(data["observed_at"]),
            upstream_message_id=data.get("upstream_message_id"),
        )


@dataclass
class RosterEntry:
    """Summary state for one conversation counterparty."""

    conversation_id: int | str
    display_name: str
    handle: str
    last_message_text: str
    last_message_at: datetime
    first_contact_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "display_name": self.display_name,
            "handle": self.handle,
            "last_message_text": self.last_message_text,
            "last_message_at": format_timestamp(self.last_message_at),
            "first_contact_at": format_timestamp(self.first_contact_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RosterEntry":
        first_contact_at = parse_timestamp(data["first_contact_at"])
        return cls(
            conversation_id=data["conversation_id"],
            display_name=data.get("display_name", ""),
            handle=data.get("handle", ""),
            last_message_text=data.get("last_message_text", ""),
            last_message_at=parse_timestamp(data.get("last_message_at") or data["first_contact_at"]),
            first_contact_at=first_contact_at,
        )


@dataclass(frozen=True)
class SourceEvent:
    """A raw message event as delivered by the upstream message source."""

    sender_id: int | str  # chat to reply into
    sender_display_name: str
    sender_handle: str
    text: str
    source_message_id: int | None = None
    update_id: int | None = None


@dataclass(frozen=True)
class ChatInfo:
    """Resolved identity of an upstream chat."""

    chat_id: int | str
    display_name: str
    handle: str


def records_from_document(document: Any) -> list[MessageRecord]:
    """Decode a message log document (``None`` means absent)."""
    if document is None:
        return []
    if not isinstance(document, list):
        raise ValueError(f"Message log must be a JSON list, got {type(document).__name__}")
    return [MessageRecord.from_dict(item) for item in document]


def records_to_document(records: list[MessageRecord]) -> list[dict[str, Any]]:
    return [record.to_dict() for record in records]


def roster_from_document(document: Any) -> list[RosterEntry]:
    """Decode a roster document (``None`` means absent)."""
    if document is None:
        return []
    if not isinstance(document, list):
        raise ValueError(f"Roster must be a JSON list, got {type(document).__name__}")
    return [RosterEntry.from_dict(item) for item in document]


def roster_to_document(entries: list[RosterEntry]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in entries]
