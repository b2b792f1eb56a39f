import logging
from pathlib import Path

import pytest

from sms_ledger.logger import ColourizedFormatter, get_logging_config


def _record(level: int) -> logging.LogRecord:
    return logging.LogRecord("sms_ledger.test", level, __file__, 1, "stored", None, None)


def test_formatter_colours_level_and_restores_record() -> None:
    formatter = ColourizedFormatter("%(levelname)s %(message)s")
    record = _record(logging.WARNING)

    output = formatter.format(record)

    assert output == "\x1b[33mWARNING\x1b[0m stored"
    assert record.levelname == "WARNING"


def test_console_only_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = get_logging_config()

    assert list(config["handlers"]) == ["console"]
    assert config["loggers"][""]["level"] == "DEBUG"
    assert config["loggers"]["openai"] == {"level": "WARNING"}
    assert config["loggers"]["uvicorn.access"]["propagate"] is False


def test_log_dir_adds_file_handler(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    monkeypatch.setenv("LOG_DIR", str(log_dir))

    config = get_logging_config()

    assert log_dir.is_dir()
    assert config["handlers"]["file"]["filename"] == str(log_dir / "sms_ledger.log")
    assert config["loggers"][""]["handlers"] == ["console", "file"]
