# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
SQLite-backed storage implementation for Ambros.

Handles command records and chain definitions.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from .errors import ChainNotFoundError, CommandNotFoundError
from .models import ChainDefinition, Command

# Output capture limits for history safety
MAX_OUTPUT_BYTES = 65_536
MAX_ERROR_BYTES = 16_384

_COMMAND_COLUMNS = (
    "id, name, arguments, output, error, status, created_at, "
    "terminated_at, tags, category, variables"
)


def _cap(text: str, limit: int) -> tuple[str, bool]:
    raw = text.encode("utf-8") if text else b""
    if len(raw) <= limit:
        return text, False
    return raw[:limit].decode("utf-8", errors="replace"), True


def _row_to_command(row: tuple[Any, ...]) -> Command:
    return Command.from_dict(
        {
            "id": row[0],
            "name": row[1],
            "arguments": json.loads(row[2] or "[]"),
            "output": row[3],
            "error": row[4],
            "status": bool(row[5]),
            "created_at": row[6],
            "terminated_at": row[7],
            "tags": json.loads(row[8] or "[]"),
            "category": row[9],
            "variables": json.loads(row[10] or "{}"),
        }
    )


def _row_to_chain(row: tuple[Any, ...]) -> ChainDefinition:
    return ChainDefinition.from_dict(
        {
            "name": row[0],
            "id": row[1],
            "description": row[2],
            "commands": json.loads(row[3] or "[]"),
            "conditional": bool(row[4]),
            "store": bool(row[5]),
            "created_at": row[6],
        }
    )


class SQLiteStore:
    """SQLite implementation of the Repository protocol."""

    def __init__(self, db_path: Path):
        """Initialize store with database path.

        Args:
            db_path: Path to SQLite database file (must have schema)

        Note:
            Store does NOT create schema. Schema must be created by
            db.ensure_schema() before constructing SQLiteStore.
        """
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    # ----------------------------------------------------------------
    # Command records
    # ----------------------------------------------------------------

    def put(self, command: Command) -> None:
        """Insert or replace a command record (output is capped)."""
        output, out_cut = _cap(command.output, MAX_OUTPUT_BYTES)
        error, err_cut = _cap(command.error, MAX_ERROR_BYTES)
        data = command.to_dict()

        conn = self._connect()
        try:
            conn.execute(
                f"""
                INSERT OR REPLACE INTO commands ({_COMMAND_COLUMNS}, truncated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["id"],
                    data["name"],
                    json.dumps(data["arguments"]),
                    output,
                    error,
                    1 if data["status"] else 0,
                    data["created_at"],
                    data["terminated_at"],
                    json.dumps(data["tags"]),
                    data["category"],
                    json.dumps(data["variables"]),
                    1 if (out_cut or err_cut) else 0,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get(self, command_id: str) -> Command:
        conn = self._connect()
        try:
            cur = conn.execute(
                f"SELECT {_COMMAND_COLUMNS} FROM commands WHERE id = ?",
                (command_id,),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            raise CommandNotFoundError(command_id)
        return _row_to_command(row)

    def delete(self, command_id: str) -> None:
        conn = self._connect()
        try:
            cur = conn.execute(
                "DELETE FROM commands WHERE id = ?", (command_id,)
            )
            conn.commit()
            deleted = cur.rowcount
        finally:
            conn.close()
        if not deleted:
            raise CommandNotFoundError(command_id)

    def get_all_commands(self) -> list[Command]:
        """All records, newest first."""
        conn = self._connect()
        try:
            cur = conn.execute(
                f"SELECT {_COMMAND_COLUMNS} FROM commands "
                "ORDER BY created_at DESC"
            )
            return [_row_to_command(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def search_by_tag(self, tag: str) -> list[Command]:
        return [c for c in self.get_all_commands() if tag in c.tags]

    def search_by_status(self, success: bool) -> list[Command]:
        conn = self._connect()
        try:
            cur = conn.execute(
                f"SELECT {_COMMAND_COLUMNS} FROM commands "
                "WHERE status = ? ORDER BY created_at DESC",
                (1 if success else 0,),
            )
            return [_row_to_command(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def cleanup(self, max_age_days: int) -> int:
        """Delete records created more than max_age_days ago.

        Returns:
            Number of deleted records
        """
        cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
        conn = self._connect()
        try:
            cur = conn.execute(
                "DELETE FROM commands WHERE created_at < ?", (cutoff,)
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    # ----------------------------------------------------------------
    # Chains
    # ----------------------------------------------------------------

    def put_chain(self, chain: ChainDefinition) -> None:
        data = chain.to_dict()
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO chains
                (name, id, description, commands, conditional, store,
                 created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["name"],
                    data["id"],
                    data["description"],
                    json.dumps(data["commands"]),
                    1 if data["conditional"] else 0,
                    1 if data["store"] else 0,
                    data["created_at"],
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def get_chain(self, name: str) -> ChainDefinition:
        conn = self._connect()
        try:
            cur = conn.execute(
                """
                SELECT name, id, description, commands, conditional, store,
                       created_at
                FROM chains WHERE name = ?
                """,
                (name,),
            )
            row = cur.fetchone()
        finally:
            conn.close()
        if row is None:
            raise ChainNotFoundError(name)
        return _row_to_chain(row)

    def delete_chain(self, name: str) -> None:
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM chains WHERE name = ?", (name,))
            conn.commit()
            deleted = cur.rowcount
        finally:
            conn.close()
        if not deleted:
            raise ChainNotFoundError(name)

    def list_chains(self) -> list[ChainDefinition]:
        conn = self._connect()
        try:
            cur = conn.execute(
                """
                SELECT name, id, description, commands, conditional, store,
                       created_at
                FROM chains ORDER BY name
                """
            )
            return [_row_to_chain(row) for row in cur.fetchall()]
        finally:
            conn.close()

