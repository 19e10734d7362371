# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Database schema for Ambros.

This module is the only place that creates or migrates tables. The store
assumes the schema exists.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def ensure_schema(db_path: Path) -> None:
    """Create or migrate database schema.

    Creates required tables if they don't exist:
    - commands: executed / stored command records
    - chains: named command chains

    This function is idempotent - safe to call multiple times.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS commands (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                arguments TEXT NOT NULL DEFAULT '[]',
                output TEXT,
                error TEXT,
                status INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                terminated_at TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                category TEXT NOT NULL DEFAULT '',
                variables TEXT NOT NULL DEFAULT '{}'
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_commands_created_at "
            "ON commands(created_at)"
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chains (
                name TEXT PRIMARY KEY,
                id TEXT UNIQUE NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                commands TEXT NOT NULL,
                conditional INTEGER NOT NULL DEFAULT 0,
                store INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
            """
        )

        # Migration: output truncation flag arrived after the first schema.
        cur = conn.execute("PRAGMA table_info(commands)")
        cols = {row[1] for row in cur.fetchall()}
        if "truncated" not in cols:
            conn.execute(
                "ALTER TABLE commands ADD COLUMN truncated INTEGER DEFAULT 0"
            )

        conn.commit()
    finally:
        conn.close()
