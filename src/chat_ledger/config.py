"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class StoreConfig:
    api_url: str = "https://api.github.com"
    owner: str = ""
    repo: str = ""
    branch: str = "main"
    token: str = ""
    messages_path: str = "chats.json"
    roster_path: str = "users.json"
    commit_message: str = "Update chats"
    timeout_seconds: float = 30


@dataclass
class SourceConfig:
    api_url: str = "https://api.telegram.org"
    long_poll_seconds: int = 0
    timeout_seconds: float = 30


@dataclass
class SyncConfig:
    interval_seconds: float = 5
    dedup_window_seconds: float = 5
    max_write_attempts: int = 3


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    secrets_path: Path = field(
        default_factory=lambda: Path.home() / ".config" / "chat-ledger" / "credentials.yaml"
    )


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, "")
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "config.yaml",
            Path.home() / ".config" / "chat-ledger" / "config.yaml",
            Path("/etc/chat-ledger/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    defaults = Config()

    store_data = data.get("store", {})
    store = StoreConfig(
        api_url=store_data.get("api_url", defaults.store.api_url).rstrip("/"),
        owner=expand_env_var(str(store_data.get("owner", ""))),
        repo=expand_env_var(str(store_data.get("repo", ""))),
        branch=store_data.get("branch", defaults.store.branch),
        token=expand_env_var(str(store_data.get("token", "${GITHUB_TOKEN}"))),
        messages_path=store_data.get("messages_path", defaults.store.messages_path),
        roster_path=store_data.get("roster_path", defaults.store.roster_path),
        commit_message=store_data.get("commit_message", defaults.store.commit_message),
        timeout_seconds=store_data.get("timeout_seconds", defaults.store.timeout_seconds),
    )

    source_data = data.get("source", {})
    source = SourceConfig(
        api_url=source_data.get("api_url", defaults.source.api_url).rstrip("/"),
        long_poll_seconds=source_data.get("long_poll_seconds", defaults.source.long_poll_seconds),
        timeout_seconds=source_data.get("timeout_seconds", defaults.source.timeout_seconds),
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(
        interval_seconds=sync_data.get("interval_seconds", defaults.sync.interval_seconds),
        dedup_window_seconds=sync_data.get(
            "dedup_window_seconds", defaults.sync.dedup_window_seconds
        ),
        max_write_attempts=sync_data.get("max_write_attempts", defaults.sync.max_write_attempts),
    )
    if sync.max_write_attempts < 1:
        raise ValueError(f"max_write_attempts must be at least 1, got {sync.max_write_attempts}")

    secrets_path = defaults.secrets_path
    if "secrets_path" in data:
        secrets_path = expand_path(data["secrets_path"])

    return Config(
        store=store,
        source=source,
        sync=sync,
        secrets_path=secrets_path,
    )
