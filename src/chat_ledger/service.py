"""Consumer-facing interface over the sync engine.

This is what request handlers or a UI call into: reading messages and the
roster, sending, deleting, adding contacts, and owning the poll loop.
"""

import threading
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Self

from chat_ledger.config import Config, SourceConfig, SyncConfig
from chat_ledger.logging import get_logger
from chat_ledger.models import Direction, MessageRecord, RosterEntry
from chat_ledger.secrets import SecretStore
from chat_ledger.source.telegram import SourceError, TelegramClient
from chat_ledger.store.github import GitHubDocumentStore
from chat_ledger.sync.dispatcher import OutboundDispatcher
from chat_ledger.sync.engine import IngestionEngine, SyncResult
from chat_ledger.sync.merge import PendingMessage
from chat_ledger.sync.scheduler import PollScheduler

logger = get_logger("service")

CONTACT_STARTED_TEXT = "Chat started"


class ChatLedger:
    """Message log, roster and polling for one bot."""

    def __init__(
        self,
        store: Any,
        source: Any,
        sync_config: SyncConfig | None = None,
        messages_path: str = "chats.json",
        roster_path: str = "users.json",
        secrets: SecretStore | None = None,
        engine: IngestionEngine | None = None,
    ) -> None:
        sync_config = sync_config or SyncConfig()
        self._store = store
        self._source = source
        self._secrets = secrets
        self._sync_config = sync_config
        self.engine = engine or IngestionEngine(
            store,
            source,
            messages_path=messages_path,
            roster_path=roster_path,
            dedup_window=timedelta(seconds=sync_config.dedup_window_seconds),
            max_attempts=sync_config.max_write_attempts,
        )
        self.dispatcher = OutboundDispatcher(source, self.engine)
        self._scheduler: PollScheduler | None = None

    @classmethod
    def from_config(cls, config: Config, secrets: SecretStore | None = None) -> "ChatLedger":
        """Build clients from configuration and the stored bot token.

        Raises:
            CredentialsMissingError: If no bot token is stored
        """
        secrets = secrets or SecretStore(config.secrets_path)
        token = secrets.require_bot_token()
        return cls(
            store=GitHubDocumentStore(config.store),
            source=TelegramClient(token, config.source),
            sync_config=config.sync,
            messages_path=config.store.messages_path,
            roster_path=config.store.roster_path,
            secrets=secrets,
        )

    def get_messages(self, conversation_id: int | str | None = None) -> list[MessageRecord]:
        """Current message log, optionally limited to one conversation."""
        records = self.engine.read_messages()
        if conversation_id is None:
            return records
        return [r for r in records if r.conversation_id == conversation_id]

    def get_roster(self) -> list[RosterEntry]:
        return self.engine.read_roster()

    def sync_once(self) -> SyncResult:
        """Poll and ingest one batch synchronously."""
        return self.engine.run_cycle()

    def append_outbound(self, target_id: int | str, text: str) -> SyncResult:
        """Send a message and return the updated log."""
        return self.dispatcher.send(target_id, text)

    def delete_message(self, message_id: int) -> SyncResult:
        """Delete a record locally, retracting it upstream when possible.

        Upstream retraction is best effort: the local delete goes ahead
        even if the source refuses (e.g. the message is too old).

        Raises:
            LookupError: If no record has ``message_id``
        """
        record = next((r for r in self.engine.read_messages() if r.id == message_id), None)
        if record is None:
            raise LookupError(f"No message with id {message_id}")

        if record.upstream_message_id is not None and not record.is_system:
            try:
                self._source.delete_message(record.conversation_id, record.upstream_message_id)
            except SourceError as e:
                logger.warning(
                    "Upstream delete failed, deleting locally only: id=%d error=%s",
                    message_id,
                    e,
                )

        return self.engine.remove(message_id)

    def add_contact(self, ref: int | str) -> SyncResult:
        """Start a conversation with a user the bot can reach.

        Resolves ``ref`` (``@username`` or numeric id) upstream and records a
        system message for it, which also creates the roster entry.

        Raises:
            SourceError: If the user cannot be resolved
        """
        chat = self._source.lookup_chat(ref)
        pending = PendingMessage(
            conversation_id=chat.chat_id,
            sender_name=chat.display_name,
            sender_handle=chat.handle,
            text=CONTACT_STARTED_TEXT,
            direction=Direction.SYSTEM,
            observed_at=self.engine.clock(),
        )
        result = self.engine.commit([pending], dedupe=False)

        if result.ok:
            logger.info("Added contact: chat_id=%s handle=%s", chat.chat_id, chat.handle)
        else:
            logger.error(
                "Resolved contact but could not record it: chat_id=%s handle=%s errors=%s",
                chat.chat_id,
                chat.handle,
                result.errors,
            )
        return result

    def start_polling(self, on_result: Callable[[SyncResult], None] | None = None) -> threading.Event:
        """Poll in the background; returns the run's cancellation token."""
        if self._scheduler is None or not self._scheduler.is_running:
            self._scheduler = PollScheduler(
                self.engine.run_cycle,
                self._sync_config.interval_seconds,
                on_result=on_result,
            )
        return self._scheduler.start()

    def stop_polling(self, timeout: float | None = None) -> None:
        if self._scheduler is not None:
            self._scheduler.stop(timeout)

    def logout(self) -> None:
        """End the session: stop polling and forget the stored bot token."""
        self.stop_polling()
        if self._secrets is not None:
            self._secrets.clear()
        self.close()

    def close(self) -> None:
        for client in (self._store, self._source):
            close = getattr(client, "close", None)
            if close is not None:
                close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.stop_polling()
        self.close()


def login(
    token: str,
    secrets: SecretStore,
    source_config: SourceConfig | None = None,
    client: TelegramClient | None = None,
) -> dict[str, Any]:
    """Validate a bot token against the Bot API and store it.

    Returns:
        The bot's user object

    Raises:
        SourceError: If the token is rejected or the API is unreachable
    """
    client = client or TelegramClient(token, source_config)
    try:
        me = client.get_me()
    finally:
        client.close()
    secrets.set_bot_token(token)
    logger.info("Logged in as bot: username=%s", me.get("username"))
    return me
