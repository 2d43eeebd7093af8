"""Local storage for the bot credential, kept apart from the message log."""

import os
from pathlib import Path

import yaml

from chat_ledger.logging import get_logger

logger = get_logger("secrets")


class CredentialsMissingError(Exception):
    """No bot token has been stored; run ``chat-ledger login`` first."""


class SecretStore:
    """Bot token persisted in a YAML file readable only by its owner."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict:
        if not self._path.exists():
            return {}
        with open(self._path) as f:
            return yaml.safe_load(f) or {}

    def get_bot_token(self) -> str | None:
        return self._load().get("bot_token") or None

    def require_bot_token(self) -> str:
        token = self.get_bot_token()
        if token is None:
            raise CredentialsMissingError(f"No bot token stored in {self._path}")
        return token

    def set_bot_token(self, token: str) -> None:
        """Store the token, creating the file with mode 0600."""
        if not token:
            raise ValueError("Bot token must not be empty")
        data = self._load()
        data["bot_token"] = token
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump(data, f)
        os.chmod(self._path, 0o600)
        logger.info("Stored bot token: path=%s", self._path)

    def clear(self) -> None:
        """Forget the stored token; a missing file is not an error."""
        if self._path.exists():
            self._path.unlink()
            logger.info("Removed stored credentials: path=%s", self._path)
