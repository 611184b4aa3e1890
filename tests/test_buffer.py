"""Tests for the timer-coalesced access log stream."""

from __future__ import annotations

import io
import time
from collections.abc import Callable
from unittest.mock import MagicMock, patch

import pytest

from logline.buffer import BufferedStream


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestBufferedStream:
    """Tests for BufferedStream."""

    def test_writes_are_held(self) -> None:
        """Nothing reaches the target before the interval elapses."""
        target = io.StringIO()
        buffered = BufferedStream(target, interval_ms=60_000)

        assert buffered.write("a\n") == 2
        buffered.write("b\n")

        assert buffered.pending == 2
        assert target.getvalue() == ""
        buffered.close()

    def test_flush_coalesces_into_one_write(self) -> None:
        """Pending lines are joined and written in a single call."""
        target = MagicMock()
        buffered = BufferedStream(target, interval_ms=60_000)

        buffered.write("a\n")
        buffered.write("b\n")
        buffered.flush()

        target.write.assert_called_once_with("a\nb\n")
        assert buffered.pending == 0

    def test_flush_with_nothing_pending(self) -> None:
        """An empty flush writes nothing."""
        target = MagicMock()
        BufferedStream(target).flush()
        target.write.assert_not_called()

    @pytest.mark.slow
    def test_timer_flushes(self) -> None:
        """The armed timer writes the batch on its own."""
        target = io.StringIO()
        buffered = BufferedStream(target, interval_ms=20)

        buffered.write("a\n")
        buffered.write("b\n")

        assert wait_for(lambda: target.getvalue() == "a\nb\n")
        assert buffered.pending == 0

    @pytest.mark.slow
    def test_timer_rearms_after_flush(self) -> None:
        """A write after a flush starts a new interval."""
        target = io.StringIO()
        buffered = BufferedStream(target, interval_ms=20)

        buffered.write("a\n")
        assert wait_for(lambda: target.getvalue() == "a\n")

        buffered.write("b\n")
        assert wait_for(lambda: target.getvalue() == "a\nb\n")

    def test_close_flushes(self) -> None:
        """Closing writes whatever is still pending."""
        target = io.StringIO()
        buffered = BufferedStream(target, interval_ms=60_000)

        buffered.write("last\n")
        buffered.close()

        assert buffered.closed
        assert target.getvalue() == "last\n"

    def test_close_twice(self) -> None:
        """A second close is a no-op."""
        target = MagicMock()
        buffered = BufferedStream(target, interval_ms=60_000)
        buffered.write("x\n")

        buffered.close()
        buffered.close()

        target.write.assert_called_once_with("x\n")

    def test_failed_flush_is_reported_and_raised(self) -> None:
        """Target write errors are logged and propagate."""
        target = MagicMock()
        target.write.side_effect = OSError("disk full")
        buffered = BufferedStream(target, interval_ms=60_000)
        buffered.write("x\n")

        with patch("logline.buffer.get_logger") as mock_get_logger:
            mock_logger = MagicMock()
            mock_get_logger.return_value = mock_logger

            with pytest.raises(OSError):
                buffered.flush()

        mock_logger.exception.assert_called_once()
        assert mock_logger.exception.call_args.kwargs["size"] == 2
