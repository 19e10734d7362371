"""
Tests for schema creation and migration (ambros.db).
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from ambros import db


def _columns(db_path: Path, table: str) -> set[str]:
    conn = sqlite3.connect(str(db_path))
    try:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
    finally:
        conn.close()


def test_ensure_schema_creates_tables(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "ambros.db"

    db.ensure_schema(path)

    assert path.exists()
    assert {
        "id",
        "name",
        "arguments",
        "output",
        "error",
        "status",
        "created_at",
        "terminated_at",
        "tags",
        "category",
        "variables",
        "truncated",
    } <= _columns(path, "commands")
    assert {"name", "id", "commands", "conditional", "store"} <= _columns(
        path, "chains"
    )


def test_ensure_schema_is_idempotent(tmp_path: Path) -> None:
    path = tmp_path / "ambros.db"

    db.ensure_schema(path)
    db.ensure_schema(path)

    assert "truncated" in _columns(path, "commands")


def test_ensure_schema_migrates_missing_truncated_column(tmp_path: Path) -> None:
    path = tmp_path / "ambros.db"
    conn = sqlite3.connect(str(path))
    conn.execute(
        """
        CREATE TABLE commands (
            id TEXT PRIMARY KEY, name TEXT NOT NULL,
            arguments TEXT NOT NULL DEFAULT '[]', output TEXT, error TEXT,
            status INTEGER NOT NULL DEFAULT 0, created_at TEXT NOT NULL,
            terminated_at TEXT, tags TEXT NOT NULL DEFAULT '[]',
            category TEXT NOT NULL DEFAULT '', variables TEXT NOT NULL DEFAULT '{}'
        )
        """
    )
    conn.commit()
    conn.close()

    db.ensure_schema(path)

    assert "truncated" in _columns(path, "commands")
