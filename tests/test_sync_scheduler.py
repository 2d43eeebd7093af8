"""Tests for the poll scheduler."""

import threading
from unittest.mock import MagicMock

import pytest

from chat_ledger.sync.scheduler import PollScheduler


class TestRunOnce:
    """Tests for PollScheduler.run_once."""

    def test_delivers_result(self) -> None:
        """Should pass the cycle result to the callback."""
        on_result = MagicMock()
        scheduler = PollScheduler(lambda token: "batch", 1, on_result=on_result)

        assert scheduler.run_once(threading.Event()) is True

        on_result.assert_called_once_with("batch")

    def test_none_result_not_delivered(self) -> None:
        """Should not deliver a cancelled cycle."""
        on_result = MagicMock()
        scheduler = PollScheduler(lambda token: None, 1, on_result=on_result)

        scheduler.run_once(threading.Event())

        on_result.assert_not_called()

    def test_error_is_logged_not_raised(self) -> None:
        """A failing cycle should be logged, not raised."""
        def failing(token: threading.Event) -> None:
            raise RuntimeError("upstream down")

        scheduler = PollScheduler(failing, 1)

        assert scheduler.run_once(threading.Event()) is False

    def test_result_dropped_after_cancellation(self) -> None:
        """A cycle that finishes after stop() must not deliver its result."""
        on_result = MagicMock()
        token = threading.Event()

        def cycle(t: threading.Event) -> str:
            t.set()  # cancelled while in flight
            return "late"

        scheduler = PollScheduler(cycle, 1, on_result=on_result)
        scheduler.run_once(token)

        on_result.assert_not_called()

    def test_callback_error_does_not_propagate(self) -> None:
        """Should contain errors raised by the callback."""
        scheduler = PollScheduler(lambda t: 1, 1, on_result=MagicMock(side_effect=ValueError))

        assert scheduler.run_once(threading.Event()) is True


class TestRunLoop:
    """Tests for the blocking and background loops."""

    def test_run_stops_when_token_set(self) -> None:
        """Should leave the loop once the token is set."""
        calls = []
        token = threading.Event()

        def cycle(t: threading.Event) -> None:
            calls.append(1)
            if len(calls) == 3:
                t.set()

        PollScheduler(cycle, 0).run(token)

        assert len(calls) == 3

    def test_continues_after_failing_cycle(self) -> None:
        """Should keep polling after a cycle raises."""
        calls = []
        token = threading.Event()

        def cycle(t: threading.Event) -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")
            t.set()

        PollScheduler(cycle, 0).run(token)

        assert len(calls) == 2

    def test_start_and_stop_background_thread(self) -> None:
        """Should run on a background thread until stopped."""
        ran = threading.Event()
        scheduler = PollScheduler(lambda t: ran.set(), 0.01)

        token = scheduler.start()
        assert ran.wait(2)
        assert scheduler.is_running

        scheduler.stop(timeout=2)

        assert token.is_set()
        assert not scheduler.is_running

    def test_start_twice_raises(self) -> None:
        """Should refuse to start while already running."""
        scheduler = PollScheduler(lambda t: None, 10)
        scheduler.start()
        try:
            with pytest.raises(RuntimeError):
                scheduler.start()
        finally:
            scheduler.stop(timeout=2)

    def test_restart_uses_new_token(self) -> None:
        """Each start should hand out a fresh token."""
        scheduler = PollScheduler(lambda t: None, 10)
        first = scheduler.start()
        scheduler.stop(timeout=2)

        second = scheduler.start()
        try:
            assert first is not second
            assert first.is_set()
            assert not second.is_set()
        finally:
            scheduler.stop(timeout=2)

    def test_stop_before_start_is_noop(self) -> None:
        """Stopping an idle scheduler should do nothing."""
        PollScheduler(lambda t: None, 1).stop()
