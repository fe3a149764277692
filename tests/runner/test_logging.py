"""Tests for crawlq.runner.logging - Logging setup

Tests focus on the following behavior:
- Level normalization from names and numbers
- Logging configuration with level filtering
- Custom format application
- Logger namespace handling (crawlq.*)
- File and stdout handler setup
"""

import logging

import pytest

from crawlq.runner.logging import normalize_level, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo root handler and crawlq level changes made by setup_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    crawlq_levels = {
        name: logging.getLogger(name).level
        for name in list(logging.Logger.manager.loggerDict)
        if name == "crawlq" or name.startswith("crawlq.")
    }
    yield
    for h in root.handlers[:]:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)
    for name in list(logging.Logger.manager.loggerDict):
        if name == "crawlq" or name.startswith("crawlq."):
            logging.getLogger(name).setLevel(crawlq_levels.get(name, logging.NOTSET))


# normalize_level Tests


@pytest.mark.parametrize(
    "value, expected",
    [
        ("DEBUG", logging.DEBUG),
        ("warning", logging.WARNING),
        (" error ", logging.ERROR),
        (logging.CRITICAL, logging.CRITICAL),
        ("15", 15),
        ("nonsense", logging.INFO),
    ],
)
def test_normalize_level(value, expected):
    assert normalize_level(value) == expected


# setup_logging Tests


def test_setup_logging_sets_crawlq_namespace_levels():
    """setup_logging applies the level to `crawlq` and existing `crawlq.*` loggers."""
    child = logging.getLogger("crawlq.core.engine")

    setup_logging(level="DEBUG")

    assert logging.getLogger("crawlq").level == logging.DEBUG
    assert child.level == logging.DEBUG
    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_file_handler_writes_messages(tmp_path):
    """setup_logging with a file handler writes log messages to the file."""
    log_file = tmp_path / "logs" / "crawl.log"

    handler = setup_logging(level="INFO", log_file=str(log_file))
    logger = logging.getLogger("crawlq.test")
    logger.info("Info message")
    logger.debug("Debug message")
    handler.flush()

    content = log_file.read_text(encoding="utf-8")
    assert "Info message" in content
    assert "Debug message" not in content
    assert "crawlq.test" in content


def test_setup_logging_custom_format(capsys):
    """setup_logging uses the custom format on stdout."""
    setup_logging(level="INFO", fmt="[%(levelname)s] %(message)s")

    logging.getLogger("crawlq.test").warning("formatted")

    assert "[WARNING] formatted" in capsys.readouterr().out


def test_setup_logging_reconfigures(tmp_path):
    """A second call replaces the previous handler."""
    first = setup_logging(level="INFO", log_file=str(tmp_path / "a.log"))
    second = setup_logging(level="WARNING", log_file=str(tmp_path / "b.log"))

    root = logging.getLogger()
    assert second in root.handlers
    assert first not in root.handlers
    assert logging.getLogger("crawlq").level == logging.WARNING
