"""Tests for logging setup."""

import io
import logging

from archrag.logging_config import FlushingStreamHandler, configure_logging


def test_closed_stream_does_not_raise(monkeypatch):
    """Test a handler whose stream was closed reports instead of raising."""
    monkeypatch.setattr(logging, "raiseExceptions", False)
    stream = io.StringIO()
    handler = FlushingStreamHandler(stream)
    stream.close()

    record = logging.LogRecord("archrag.test", logging.WARNING, __file__, 1, "forced", None, None)
    handler.emit(record)


def test_configure_logging_is_idempotent(restore_archrag_logger):
    configure_logging("DEBUG")
    configure_logging("WARNING")

    logger = restore_archrag_logger
    assert len([h for h in logger.handlers if isinstance(h, FlushingStreamHandler)]) == 1
    assert logger.level == logging.WARNING
    assert logger.propagate is False


def test_log_file(tmp_path, restore_archrag_logger):
    log_file = tmp_path / "logs" / "archrag.log"
    configure_logging("INFO", str(log_file))

    logging.getLogger("archrag.pipeline").info("indexed %d files", 3)
    for handler in restore_archrag_logger.handlers:
        handler.flush()

    assert "archrag.pipeline - INFO - indexed 3 files" in log_file.read_text()
