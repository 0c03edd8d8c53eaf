"""
Engine Log Writer Tests
=======================
"""

import logging

from core.logger import EngineLogWriter


class TestEngineLogWriter:
    """Test the stderr-to-logging sink."""

    def test_complete_lines_logged(self, caplog):
        writer = EngineLogWriter(logging.getLogger("test.natty"))

        with caplog.at_level(logging.DEBUG, logger="test.natty"):
            writer.write(b"gathering candidates\nchecking pairs\n")

        messages = [r.getMessage() for r in caplog.records]
        assert messages == ["[NATTY] gathering candidates", "[NATTY] checking pairs"]

    def test_partial_line_held_until_flush(self, caplog):
        writer = EngineLogWriter(logging.getLogger("test.natty"))

        with caplog.at_level(logging.DEBUG, logger="test.natty"):
            writer.write(b"selected pa")
            assert caplog.records == []
            writer.write(b"ir\nlast")
            writer.flush()

        assert writer.tail() == ["selected pair", "last"]

    def test_text_and_crlf(self):
        writer = EngineLogWriter(logging.getLogger("test.natty"))

        writer.write("line one\r\n\r\nline two\n")

        assert writer.tail() == ["line one", "line two"]

    def test_tail_bounded(self):
        writer = EngineLogWriter(logging.getLogger("test.natty"), maxlen=3)

        for i in range(5):
            writer.write(f"line {i}\n".encode())

        assert writer.tail() == ["line 2", "line 3", "line 4"]
        assert writer.tail(1) == ["line 4"]
        assert writer.tail(0) == []

    def test_level(self, caplog):
        writer = EngineLogWriter(logging.getLogger("test.natty"), level=logging.INFO)

        with caplog.at_level(logging.INFO, logger="test.natty"):
            writer.write(b"hello\n")

        assert caplog.records[0].levelno == logging.INFO

    def test_write_returns_argument_length(self):
        writer = EngineLogWriter(logging.getLogger("test.natty"))

        assert writer.write("été\n") == 4
        assert writer.write(b"ok\n") == 3
