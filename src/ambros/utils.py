# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Text helpers for CLI output.
"""

from datetime import datetime
from typing import Any


def format_table(
    headers: list[str],
    rows: list[list[Any]],
    title: str = ""
) -> str:
    """
    Format data as a simple left-aligned text table.

    Args:
        headers: List of column header names
        rows: List of rows, where each row is a list of values
        title: Optional title to display above the table

    Returns:
        Formatted table as a string ("" when there are no rows)
    """
    if not rows:
        return ""

    str_headers = [str(h) for h in headers]
    str_rows = [[str(val) for val in row] for row in rows]

    col_widths = [
        max([len(header)] + [len(row[i]) for row in str_rows if i < len(row)])
        for i, header in enumerate(str_headers)
    ]

    lines = []
    if title:
        lines.append(title)

    lines.append(
        "  ".join(h.ljust(col_widths[i]) for i, h in enumerate(str_headers))
        .rstrip()
    )
    for row in str_rows:
        lines.append(
            "  ".join(v.ljust(col_widths[i]) for i, v in enumerate(row))
            .rstrip()
        )

    return "\n".join(lines)


def format_duration(seconds: float | None) -> str:
    """Human duration: '350ms', '4.2s', '3m05s'."""
    if seconds is None:
        return "-"
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%Y-%m-%d %H:%M:%S")
