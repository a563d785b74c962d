"""
Tests for the background console reader, fed through an OS pipe.
"""

import io
import os
import select
import threading

import pytest

from netchat.console import ConsoleInput

from .conftest import wait_until


@pytest.fixture
def pipe():
    r, w = os.pipe()
    reader = os.fdopen(r, "r")
    writer = os.fdopen(w, "wb", buffering=0)
    yield reader, writer
    for f in (reader, writer):
        if not f.closed:
            f.close()


@pytest.fixture
def quit_event():
    return threading.Event()


def drain(console: ConsoleInput):
    out = []
    while (line := console.get_next()) is not None:
        out.append(line)
    return out


class TestConsoleInput:
    """Tests for ConsoleInput."""

    def test_lines_are_queued_in_order(self, pipe, quit_event):
        """Each newline-terminated line becomes one entry."""
        reader, writer = pipe
        console = ConsoleInput(quit_event, reader, poll_interval=0.01).start()
        seen = []

        writer.write(b"hello\n/nick Bob\nbye\n")

        assert wait_until(lambda: len(seen) == 3, step=lambda: seen.extend(drain(console)))
        assert seen == ["hello", "/nick Bob", "bye"]
        console.close()

    def test_blank_lines_are_skipped_and_lines_trimmed(self, quit_event):
        """get_next() trims and never returns an empty line."""
        console = ConsoleInput(quit_event)
        for line in ("", "   ", "  /quit  ", "\t"):
            console.push(line)

        assert drain(console) == ["/quit"]

    def test_get_next_does_not_block(self, quit_event):
        """An empty queue answers None immediately."""
        assert ConsoleInput(quit_event).get_next() is None

    def test_line_split_across_writes(self, pipe, quit_event):
        """Partial lines are held until their newline arrives."""
        reader, writer = pipe
        console = ConsoleInput(quit_event, reader, poll_interval=0.01).start()
        seen = []

        writer.write(b"hel")
        writer.write(b"lo\n")

        assert wait_until(lambda: seen == ["hello"], step=lambda: seen.extend(drain(console)))
        console.close()

    def test_eof_sets_quit_and_keeps_partial_line(self, pipe, quit_event, caplog):
        """End of input flushes the unterminated tail, warns and requests quit."""
        reader, writer = pipe
        console = ConsoleInput(quit_event, reader, poll_interval=0.01).start()

        writer.write(b"first\nlast")
        writer.close()

        assert quit_event.wait(5.0)
        console.close()
        assert drain(console) == ["first", "last"]
        assert "Failed to read on stdin, quitting" in caplog.text

    def test_close_stops_the_thread(self, pipe, quit_event):
        """close() sets the quit flag and joins the reader."""
        reader, _ = pipe
        console = ConsoleInput(quit_event, reader, poll_interval=0.01).start()

        console.close()

        assert quit_event.is_set()
        assert not console._thread.is_alive()

    def test_context_manager(self, pipe, quit_event):
        """The with-block starts and stops the reader."""
        reader, _ = pipe

        with ConsoleInput(quit_event, reader, poll_interval=0.01) as console:
            assert console._thread.is_alive()

        assert not console._thread.is_alive()

    def test_stream_without_descriptor(self, quit_event, caplog):
        """A stream with no file descriptor warns and requests quit."""
        console = ConsoleInput(quit_event, io.StringIO("ignored\n"), use_select=True).start()

        assert quit_event.wait(5.0)
        console.close()
        assert "Cannot read console input" in caplog.text
        assert console.get_next() is None

    def test_read_error_sets_quit(self, pipe, quit_event, caplog, monkeypatch):
        """An OSError while waiting for input warns and requests quit."""
        reader, _ = pipe

        def broken(*args):
            raise OSError("Bad file descriptor")

        monkeypatch.setattr(select, "select", broken)
        console = ConsoleInput(quit_event, reader, poll_interval=0.01, use_select=True).start()

        assert quit_event.wait(5.0)
        console.close()
        assert "Failed to read on stdin (Bad file descriptor), quitting" in caplog.text


class TestBlockingConsoleInput:
    """Tests for the readline() fallback used where select() cannot wait on a console."""

    def test_lines_then_eof(self, pipe, quit_event, caplog):
        """Lines arrive without their newline, then EOF requests quit."""
        reader, writer = pipe
        console = ConsoleInput(quit_event, reader, use_select=False).start()

        writer.write(b"hello\r\n/nick Bob\nlast")
        writer.close()

        assert quit_event.wait(5.0)
        console.close()
        assert drain(console) == ["hello", "/nick Bob", "last"]
        assert "Failed to read on stdin, quitting" in caplog.text

    def test_closed_stream_sets_quit(self, quit_event, caplog):
        """Reading a closed stream counts as an input failure."""
        stream = io.StringIO()
        stream.close()
        console = ConsoleInput(quit_event, stream, use_select=False).start()

        assert quit_event.wait(5.0)
        console.close()
        assert "Failed to read on stdin (" in caplog.text

    def test_default_follows_platform(self, quit_event):
        """select() is used on POSIX systems only."""
        assert ConsoleInput(quit_event).use_select is (os.name == "posix")
