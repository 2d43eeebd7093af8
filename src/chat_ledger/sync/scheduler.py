"""Fixed-interval poll scheduler with explicit cancellation."""

import threading
from collections.abc import Callable
from typing import Any

from chat_ledger.logging import get_logger

logger = get_logger("scheduler")


class PollScheduler:
    """Run a poll cycle every ``interval_seconds`` until cancelled.

    Each run is bound to a cancellation token (a ``threading.Event``).
    Setting the token stops the loop after the cycle in flight; that
    cycle's result is then dropped instead of being handed to
    ``on_result``. A failing cycle is logged and the schedule continues.
    """

    def __init__(
        self,
        cycle: Callable[[threading.Event], Any],
        interval_seconds: float,
        on_result: Callable[[Any], None] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            cycle: Called with the active cancellation token; its return
                value is delivered to ``on_result`` unless it is None
            interval_seconds: Pause between the end of one cycle and the
                start of the next
            on_result: Optional consumer of cycle results
        """
        self._cycle = cycle
        self._interval = interval_seconds
        self._on_result = on_result
        self._lock = threading.Lock()
        self._token: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._token is not None and not self._token.is_set()

    def run_once(self, token: threading.Event) -> bool:
        """Run one cycle; returns True if it completed without error."""
        try:
            result = self._cycle(token)
        except Exception:
            logger.exception("Poll cycle failed")
            return False

        if token.is_set():
            logger.debug("Dropping result of cancelled cycle")
            return True
        if result is not None and self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                logger.exception("Result callback failed")
        return True

    def run(self, token: threading.Event) -> None:
        """Loop in the calling thread until ``token`` is set."""
        logger.info("Polling started: interval=%ss", self._interval)
        while not token.is_set():
            self.run_once(token)
            # Wakes immediately when the token is set.
            token.wait(self._interval)
        logger.info("Polling stopped")

    def start(self) -> threading.Event:
        """Start polling on a background thread.

        Returns:
            The cancellation token for this run

        Raises:
            RuntimeError: If already running
        """
        with self._lock:
            if self._token is not None and not self._token.is_set():
                raise RuntimeError("Scheduler is already running")
            token = threading.Event()
            thread = threading.Thread(
                target=self.run, args=(token,), name="chat-ledger-poll", daemon=True
            )
            self._token = token
            self._thread = thread
        thread.start()
        return token

    def stop(self, timeout: float | None = None) -> None:
        """Cancel the current run and wait for its thread to exit."""
        with self._lock:
            token, thread = self._token, self._thread
        if token is None:
            return
        token.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
