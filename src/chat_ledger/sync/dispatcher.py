"""Outbound dispatcher: send operator messages and record them in the log."""

from typing import Protocol

from chat_ledger.logging import get_logger
from chat_ledger.models import Direction
from chat_ledger.source.telegram import SourceError, SourceRejectedError
from chat_ledger.sync.engine import IngestionEngine, SyncResult
from chat_ledger.sync.merge import PendingMessage

logger = get_logger("dispatcher")

BOT_SENDER_NAME = "Bot"
BOT_SENDER_HANDLE = "bot"


class OutboundSource(Protocol):
    def dispatch(self, target_id: int | str, text: str) -> int: ...


class DispatchError(Exception):
    """The upstream source did not accept an outbound message."""

    def __init__(self, detail: str, rejected: bool = False) -> None:
        super().__init__(detail)
        self.detail = detail
        self.rejected = rejected


class OutboundDispatcher:
    """Sends a message upstream, then appends it through the engine."""

    def __init__(self, source: OutboundSource, engine: IngestionEngine) -> None:
        self._source = source
        self._engine = engine

    def send(self, target_id: int | str, text: str) -> SyncResult:
        """Dispatch ``text`` to ``target_id`` and persist the outbound record.

        Nothing is written when the upstream send fails. A persist failure
        after a successful send is reported through the returned result.

        Raises:
            ValueError: If ``text`` is blank
            DispatchError: If the upstream source rejects or cannot be reached
        """
        if not text.strip():
            raise ValueError("Cannot send an empty message")

        try:
            upstream_id = self._source.dispatch(target_id, text)
        except SourceError as e:
            logger.warning("Dispatch failed: target=%s error=%s", target_id, e)
            raise DispatchError(str(e), rejected=isinstance(e, SourceRejectedError)) from e

        pending = PendingMessage(
            conversation_id=target_id,
            sender_name=BOT_SENDER_NAME,
            sender_handle=BOT_SENDER_HANDLE,
            text=text,
            direction=Direction.OUTBOUND,
            observed_at=self._engine.clock(),
            upstream_message_id=upstream_id,
        )
        result = self._engine.commit([pending], dedupe=False)

        if result.ok:
            logger.info("Sent message: target=%s upstream_id=%s", target_id, upstream_id)
        else:
            logger.error(
                "Sent message but could not record it: target=%s upstream_id=%s errors=%s",
                target_id,
                upstream_id,
                result.errors,
            )
        return result
