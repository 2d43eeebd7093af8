"""Sync daemon: keeps the message log current by polling on an interval."""

import threading

from chat_ledger.config import Config
from chat_ledger.logging import get_logger, setup_logging
from chat_ledger.service import ChatLedger
from chat_ledger.sync.engine import SyncResult
from chat_ledger.sync.scheduler import PollScheduler

logger = get_logger("sync")

# Cancellation token for the foreground daemon loop
_shutdown = threading.Event()


def request_shutdown() -> None:
    """Request graceful shutdown of the sync daemon."""
    _shutdown.set()


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown.is_set()


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    _shutdown.clear()


def log_cycle_result(result: SyncResult) -> None:
    """Report the outcome of one poll cycle."""
    if not result.ok:
        logger.error(
            "Cycle persisted partially: log=%s roster=%s errors=%s",
            result.log_outcome.status.value,
            result.roster_outcome.status.value,
            result.errors,
        )
    elif result.appended:
        logger.info(
            "Cycle complete: new_messages=%d total=%d conversations=%d",
            len(result.appended),
            len(result.messages),
            len(result.roster),
        )
    else:
        logger.debug("Cycle complete: no new messages")


def run_sync(config: Config, ledger: ChatLedger | None = None) -> None:
    """Run the sync daemon main loop until shutdown is requested.

    Args:
        config: Application configuration
        ledger: Prebuilt ledger (defaults to one built from config)
    """
    reset_shutdown()
    setup_logging("sync")

    if ledger is None:
        ledger = ChatLedger.from_config(config)

    logger.info(
        "Starting sync daemon: repo=%s/%s messages=%s roster=%s interval=%ss",
        config.store.owner,
        config.store.repo,
        config.store.messages_path,
        config.store.roster_path,
        config.sync.interval_seconds,
    )

    scheduler = PollScheduler(
        ledger.engine.run_cycle,
        config.sync.interval_seconds,
        on_result=log_cycle_result,
    )
    with ledger:
        scheduler.run(_shutdown)

    logger.info("Sync daemon stopped")
