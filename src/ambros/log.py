# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""Logging setup and crash log."""

from __future__ import annotations

import logging
import traceback
from datetime import datetime
from pathlib import Path

from . import config as cfg_module

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "WARNING", log_file: str | None = None) -> None:
    """Attach a single handler to the ``ambros`` logger."""
    logger = logging.getLogger("ambros")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))


def write_crash_log(
    error: BaseException,
    command_line: str = "",
    db_path: Path | None = None,
) -> Path | None:
    """Append an entry to the crash log.

    Only creates the log directory when actually needed.
    Appends to crash.log (never overwrites).

    Returns:
        Path of the crash log, or None if it could not be written
    """
    try:
        logs_dir = cfg_module.logs_dir(cfg_module.get_data_root())
        logs_dir.mkdir(parents=True, exist_ok=True)
        crash_log_path = logs_dir / "crash.log"

        lines = [f"{datetime.now().isoformat()}"]
        if command_line:
            lines.append(f"command={command_line}")
        if db_path:
            lines.append(f"db_path={db_path}")
        lines.append(f"error={type(error).__name__}: {error}")
        lines.append("traceback:")
        lines.append(
            "".join(
                traceback.format_exception(
                    type(error), error, error.__traceback__
                )
            )
        )
        lines.append("----")

        with crash_log_path.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    except OSError:
        # Already handling a crash; an unwritable log must not mask it.
        return None
    return crash_log_path
