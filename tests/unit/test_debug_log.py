"""Unit tests for LoggerRegistry."""
from src.adsync_core.metrics.debug_log import LoggerRegistry


def test_get_or_create_reuses_logger_per_key(tmp_path):
    """One logger per key, created once."""
    registry = LoggerRegistry(tmp_path)

    first = registry.get_or_create("2024-01-01")
    again = registry.get_or_create("2024-01-01")
    other = registry.get_or_create("2024-01-02")

    assert first is again
    assert first is not other
    assert registry.keys() == ["2024-01-01", "2024-01-02"]
    registry.close()


def test_messages_go_to_dated_file_only(tmp_path):
    """Messages only reach the file for their date."""
    registry = LoggerRegistry(tmp_path)

    registry.get_or_create("2024-01-01").debug("classified order 7")
    registry.close()

    assert (tmp_path / "payment_debug_2024_01_01.log").read_text().count(
        "classified order 7"
    ) == 1
    assert not (tmp_path / "payment_debug_2024_01_02.log").exists()


def test_close_detaches_handlers(tmp_path):
    """close() removes handlers and forgets loggers."""
    registry = LoggerRegistry(tmp_path, prefix="debug")
    debug_logger = registry.get_or_create()

    registry.close()

    assert debug_logger.handlers == []
    assert registry.keys() == []
