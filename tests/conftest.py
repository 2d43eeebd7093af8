"""Shared fixtures: an in-memory revisioned store and a scripted message source."""

import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from chat_ledger.models import ChatInfo, SourceEvent
from chat_ledger.source.telegram import SourceRejectedError
from chat_ledger.store.github import ABSENT, ConflictError, ReadResult

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """Document store fake with the same conditional-write rules as GitHub.

    ``before_write`` hooks run once each, just before the next write is
    checked, which lets a test slip in a concurrent writer.
    """

    def __init__(self) -> None:
        self.documents: dict[str, Any] = {}
        self.revisions: dict[str, str] = {}
        self.writes: list[tuple[str, str | None]] = []
        self.reads: list[str] = []
        self.before_write: list = []
        self.fail_reads: Exception | None = None
        self.fail_writes: Exception | None = None

    def seed(self, path: str, document: Any) -> str:
        return self._put(path, document)

    def _put(self, path: str, document: Any) -> str:
        raw = json.dumps(document, sort_keys=True)
        revision = hashlib.sha1(f"{len(self.writes)}:{raw}".encode()).hexdigest()
        self.documents[path] = json.loads(raw)
        self.revisions[path] = revision
        return revision

    def read(self, path: str) -> ReadResult:
        self.reads.append(path)
        if self.fail_reads is not None:
            raise self.fail_reads
        if path not in self.documents:
            return ABSENT
        return ReadResult(json.loads(json.dumps(self.documents[path])), self.revisions[path])

    def write(self, path: str, document: Any, expected_revision: str | None) -> str:
        if self.before_write:
            self.before_write.pop(0)(self)
        self.writes.append((path, expected_revision))
        if self.fail_writes is not None:
            raise self.fail_writes
        if self.revisions.get(path) != expected_revision:
            raise ConflictError(f"{path} is at {self.revisions.get(path)}", status_code=409)
        return self._put(path, document)


class FakeSource:
    """Message source fake that replays queued batches."""

    def __init__(self) -> None:
        self.batches: list[list[SourceEvent]] = []
        self.sent: list[tuple[Any, str]] = []
        self.deleted: list[tuple[Any, int]] = []
        self.acknowledged = 0
        self.next_message_id = 100
        self.reject_dispatch: str | None = None
        self.reject_delete: str | None = None
        self.chats: dict[str, ChatInfo] = {}

    def poll_new(self) -> list[SourceEvent]:
        return self.batches.pop(0) if self.batches else []

    def acknowledge(self) -> None:
        self.acknowledged += 1

    def dispatch(self, target_id: Any, text: str) -> int:
        if self.reject_dispatch is not None:
            raise SourceRejectedError(self.reject_dispatch, error_code=400)
        self.sent.append((target_id, text))
        self.next_message_id += 1
        return self.next_message_id

    def delete_message(self, chat_id: Any, message_id: int) -> None:
        if self.reject_delete is not None:
            raise SourceRejectedError(self.reject_delete, error_code=400)
        self.deleted.append((chat_id, message_id))

    def lookup_chat(self, ref: Any) -> ChatInfo:
        if str(ref) not in self.chats:
            raise SourceRejectedError("Bad Request: chat not found", error_code=400)
        return self.chats[str(ref)]


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_event(
    chat_id: int = 42,
    text: str = "hi",
    name: str = "Ann",
    handle: str = "ann",
    message_id: int = 1,
    update_id: int | None = None,
) -> SourceEvent:
    """Build an inbound event; update_id defaults to the message id."""
    return SourceEvent(
        sender_id=chat_id,
        sender_display_name=name,
        sender_handle=handle,
        text=text,
        source_message_id=message_id,
        update_id=update_id if update_id is not None else message_id,
    )


@pytest.fixture
def store() -> InMemoryStore:
    """Provide an empty in-memory document store."""
    return InMemoryStore()


@pytest.fixture
def source() -> FakeSource:
    """Provide a scripted message source with no queued batches."""
    return FakeSource()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a clock frozen at T0."""
    return FakeClock()
