"""Telegram Bot API client acting as the upstream message source."""

import threading
from typing import Any, Self

import httpx

from chat_ledger.config import SourceConfig
from chat_ledger.logging import get_logger
from chat_ledger.models import ChatInfo, SourceEvent

logger = get_logger("source")


class SourceError(Exception):
    """Base class for upstream message source failures."""


class SourceTransportError(SourceError):
    """Network failure, server error, or rate limiting. Safe to retry later."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceRejectedError(SourceError):
    """The Bot API refused the request; ``description`` is its own wording."""

    def __init__(self, description: str, error_code: int | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.error_code = error_code


def display_name(user: dict[str, Any]) -> str:
    """Build a display name from a Telegram user or chat object."""
    name = user.get("first_name", "") or user.get("title", "")
    if user.get("last_name"):
        name = f"{name} {user['last_name']}"
    return name


def parse_update(update: dict[str, Any]) -> SourceEvent | None:
    """Convert one getUpdates entry into a SourceEvent.

    Non-message updates (edits, callbacks, membership changes) are ignored.
    Messages without text (stickers, photos) are kept with empty text so
    the caller decides what to skip.
    """
    message = update.get("message")
    if not message:
        return None
    sender = message.get("from") or message.get("chat", {})
    return SourceEvent(
        sender_id=message["chat"]["id"],
        sender_display_name=display_name(sender),
        sender_handle=sender.get("username") or "",
        text=message.get("text") or "",
        source_message_id=message.get("message_id"),
        update_id=update.get("update_id"),
    )


class TelegramClient:
    """Synchronous Bot API client.

    The Bot API keeps the update cursor server-side: updates stay pending
    until a getUpdates call passes an offset past them. ``acknowledge()``
    sends that offset as soon as the caller has stored a batch, so the
    confirmation survives a process exit. Anything unacknowledged is
    delivered again.
    """

    def __init__(
        self,
        token: str,
        config: SourceConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("Bot token must not be empty")
        self._config = config or SourceConfig()
        self._client = httpx.Client(
            base_url=f"{self._config.api_url}/bot{token}/",
            timeout=httpx.Timeout(self._config.timeout_seconds + self._config.long_poll_seconds),
            transport=transport,
        )
        self._ack_lock = threading.Lock()
        self._confirmed_offset: int | None = None
        self._last_batch_offset: int | None = None

    def _call(self, method: str, **params: Any) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises:
            SourceTransportError: On network failure, 5xx, or 429
            SourceRejectedError: When the API answers ``ok: false``
        """
        try:
            response = self._client.post(method, json=params)
        except httpx.HTTPError as e:
            # Never include the URL: it carries the bot token.
            raise SourceTransportError(f"{method} failed: {type(e).__name__}") from e

        try:
            data = response.json()
        except ValueError:
            raise SourceTransportError(
                f"{method} returned non-JSON response", status_code=response.status_code
            ) from None

        if data.get("ok"):
            return data.get("result")

        description = data.get("description", f"HTTP {response.status_code}")
        if response.status_code >= 500 or response.status_code == 429:
            raise SourceTransportError(f"{method}: {description}", status_code=response.status_code)
        raise SourceRejectedError(description, error_code=data.get("error_code"))

    def poll_new(self) -> list[SourceEvent]:
        """Fetch pending message events in arrival order.

        Delivery is at-least-once: a batch stays pending until
        ``acknowledge()`` confirms it, so a crash or a failed persist in
        between replays it.
        """
        params: dict[str, Any] = {
            "timeout": self._config.long_poll_seconds,
            "allowed_updates": ["message"],
        }
        with self._ack_lock:
            if self._confirmed_offset is not None:
                params["offset"] = self._confirmed_offset

        updates = self._call("getUpdates", **params) or []

        events = []
        for update in updates:
            event = parse_update(update)
            if event is not None:
                events.append(event)

        update_ids = [u["update_id"] for u in updates if "update_id" in u]
        with self._ack_lock:
            self._last_batch_offset = max(update_ids) + 1 if update_ids else None

        logger.debug("Polled updates: count=%d messages=%d", len(updates), len(events))
        return events

    def acknowledge(self) -> None:
        """Confirm the last polled batch to the Bot API.

        Sends a zero-timeout getUpdates with the offset past that batch so
        the service drops it right away, even if this process exits before
        polling again. Whatever that call returns is left pending. If the
        confirmation fails the offset is still passed on the next poll.
        """
        with self._ack_lock:
            if self._last_batch_offset is None:
                return
            if self._confirmed_offset is None or self._last_batch_offset > self._confirmed_offset:
                self._confirmed_offset = self._last_batch_offset
            self._last_batch_offset = None
            offset = self._confirmed_offset

        try:
            self._call("getUpdates", offset=offset, limit=1, timeout=0, allowed_updates=["message"])
        except SourceError as e:
            logger.warning("Could not confirm updates, retrying on next poll: offset=%d error=%s", offset, e)
            return
        logger.debug("Confirmed updates: offset=%d", offset)

    def dispatch(self, target_id: int | str, text: str) -> int:
        """Send a text message and return the Bot API's message id."""
        result = self._call("sendMessage", chat_id=target_id, text=text)
        return result["message_id"]

    def delete_message(self, chat_id: int | str, message_id: int) -> None:
        self._call("deleteMessage", chat_id=chat_id, message_id=message_id)

    def lookup_chat(self, ref: int | str) -> ChatInfo:
        """Resolve ``@username`` or a numeric id to chat identity.

        Bare usernames are prefixed with ``@`` as the Bot API requires.
        """
        chat_ref = ref
        if isinstance(ref, str):
            chat_ref = ref.strip()
            if chat_ref.lstrip("-").isdigit():
                chat_ref = int(chat_ref)
            elif not chat_ref.startswith("@"):
                chat_ref = f"@{chat_ref}"
        result = self._call("getChat", chat_id=chat_ref)
        return ChatInfo(
            chat_id=result["id"],
            display_name=display_name(result),
            handle=result.get("username") or "",
        )

    def get_me(self) -> dict[str, Any]:
        """Return the bot's own user object; used to validate a token."""
        return self._call("getMe")

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()
