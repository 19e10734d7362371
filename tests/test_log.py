"""
Tests for logging setup and the crash log.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from ambros import config
from ambros.log import configure_logging, write_crash_log


@pytest.fixture(autouse=True)
def _reset_ambros_logger():
    yield
    logger = logging.getLogger("ambros")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def test_configure_logging_sets_level_and_single_handler() -> None:
    configure_logging("debug")
    configure_logging("info")

    logger = logging.getLogger("ambros")
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1


def test_configure_logging_unknown_level_falls_back_to_warning() -> None:
    configure_logging("chatty")

    assert logging.getLogger("ambros").level == logging.WARNING


def test_configure_logging_writes_to_file(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "ambros.log"
    configure_logging("INFO", str(log_file))

    logging.getLogger("ambros.chain").info("chain started")
    for handler in logging.getLogger("ambros").handlers:
        handler.flush()

    assert "chain started" in log_file.read_text(encoding="utf-8")


def test_write_crash_log_appends(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AMBROS_DATA_HOME", str(tmp_path))

    try:
        raise RuntimeError("first")
    except RuntimeError as e:
        path = write_crash_log(e, command_line="ambros run x", db_path=tmp_path / "a.db")
    try:
        raise ValueError("second")
    except ValueError as e:
        write_crash_log(e)

    assert path == config.logs_dir(tmp_path) / "crash.log"
    text = path.read_text(encoding="utf-8")
    assert "command=ambros run x" in text
    assert "error=RuntimeError: first" in text
    assert "error=ValueError: second" in text
    assert text.count("----") == 2


def test_write_crash_log_returns_none_when_unwritable(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    monkeypatch.setattr(config, "get_data_root", lambda: blocker)

    assert write_crash_log(RuntimeError("x")) is None
