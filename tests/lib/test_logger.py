import logging
from typing import Generator

import pytest

from jobengine.lib.logger import StructuredFormatter, configure_logger


@pytest.fixture
def reset_logging() -> Generator[None, None, None]:
    """Reset the test logger's handlers after each test."""
    yield
    for name in ("jobengine", "test_logger"):
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)


@pytest.fixture
def env_cleanup(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Start each test without LOG_LEVEL set."""
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    return monkeypatch


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="jobengine.services.job_management.executor",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_configure_logger_default(reset_logging: None, env_cleanup) -> None:
    """Test logger configuration with default settings."""
    logger = configure_logger()
    assert logger.name == "jobengine"
    assert logger.level == logging.INFO


def test_configure_logger_custom_name(reset_logging: None, env_cleanup) -> None:
    logger = configure_logger("test_logger")
    assert logger.name == "test_logger"
    assert logger.level == logging.INFO


def test_configure_logger_custom_level(reset_logging: None, env_cleanup) -> None:
    env_cleanup.setenv("LOG_LEVEL", "DEBUG")
    logger = configure_logger()
    assert logger.level == logging.DEBUG


def test_configure_logger_invalid_level(reset_logging: None, env_cleanup) -> None:
    """Invalid levels fall back to INFO."""
    env_cleanup.setenv("LOG_LEVEL", "INVALID")
    logger = configure_logger()
    assert logger.level == logging.INFO


def test_configure_logger_case_insensitive(reset_logging: None, env_cleanup) -> None:
    env_cleanup.setenv("LOG_LEVEL", "warning")
    logger = configure_logger()
    assert logger.level == logging.WARNING


def test_configure_logger_single_handler(reset_logging: None, env_cleanup) -> None:
    """Repeated configuration does not stack handlers."""
    configure_logger("test_logger")
    logger = configure_logger("test_logger")
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, StructuredFormatter)


def test_structured_formatter_renders_extras() -> None:
    line = StructuredFormatter().format(
        _record(
            "Job enqueued",
            event_type="job_enqueued",
            job_type="send_email",
            job_id="abc123",
            error=None,
        )
    )
    assert "| INFO     |" in line
    assert "| executor" in line
    assert "Job enqueued" in line
    assert "type=job_enqueued" in line
    assert "job=send_email" in line
    assert "job_id=abc123" in line
    assert "error=" not in line


def test_structured_formatter_truncates_dicts() -> None:
    line = StructuredFormatter().format(
        _record("Stats", payload={f"key{i}": "x" * 20 for i in range(20)})
    )
    rendered = line.split("payload=", 1)[1]
    assert len(rendered) == 100
