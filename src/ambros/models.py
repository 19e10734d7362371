# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Records and value types shared by the execution engine.

- Command: one execution, stored or transient
- ChainDefinition: a named, ordered list of command ids
- PipelineStep: one (program, arguments) pair of a pipe-delimited line
- Outcome / RunResult: what a single process invocation produced
- generate_id(): monotonic, never-reused identifiers
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import InvalidInputError


class ExecutionMode(Enum):
    """How a single command is attached to the caller's terminal."""

    AUTO = "auto"
    STREAM = "stream"
    CAPTURE = "capture"

    @classmethod
    def parse(cls, value: str | ExecutionMode) -> ExecutionMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise InvalidInputError(
                f"unknown execution mode '{value}' (expected one of: {choices})"
            ) from None


class ChainState(Enum):
    RESOLVING = "resolving"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


# -----------------------
# Identifiers
# -----------------------

_id_lock = threading.Lock()
_last_id_ns = 0


def generate_id(prefix: str = "CMD") -> str:
    """Return a unique id such as ``CMD-1734170000123456789``.

    The numeric part comes from the wall clock in nanoseconds but is bumped
    so that it strictly increases within the process, even when two ids are
    requested inside the same clock tick.
    """
    global _last_id_ns
    with _id_lock:
        now = time.time_ns()
        if now <= _last_id_ns:
            now = _last_id_ns + 1
        _last_id_ns = now
    return f"{prefix}-{now}"


# -----------------------
# Records
# -----------------------


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Command:
    """One command execution (stored or transient)."""

    id: str
    name: str
    arguments: list[str] = field(default_factory=list)
    output: str = ""
    error: str = ""
    status: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    terminated_at: datetime | None = None
    tags: list[str] = field(default_factory=list)
    category: str = ""
    variables: dict[str, str] = field(default_factory=dict)

    @classmethod
    def new(
        cls,
        name: str,
        arguments: list[str] | None = None,
        tags: list[str] | None = None,
        category: str = "",
        prefix: str = "CMD",
    ) -> Command:
        """Create an in-memory record immediately before spawning."""
        return cls(
            id=generate_id(prefix),
            name=name,
            arguments=list(arguments or []),
            tags=list(tags or []),
            category=category,
        )

    @property
    def command_line(self) -> str:
        return " ".join([self.name, *self.arguments]).strip()

    @property
    def duration(self) -> float | None:
        """Seconds between creation and termination, if terminated."""
        if self.terminated_at is None:
            return None
        return (self.terminated_at - self.created_at).total_seconds()

    def finish(
        self, output: str, error: str, status: bool
    ) -> Command:
        """Fill in the results and stamp termination time."""
        self.output = output
        self.error = error
        self.status = status
        now = datetime.now()
        # Wall clock may step backwards; termination never precedes creation.
        self.terminated_at = now if now >= self.created_at else self.created_at
        return self

    def as_stored_command(self) -> str:
        return f"[{self.id}] {self.command_line}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": list(self.arguments),
            "output": self.output,
            "error": self.error,
            "status": self.status,
            "created_at": _ts(self.created_at),
            "terminated_at": _ts(self.terminated_at),
            "tags": list(self.tags),
            "category": self.category,
            "variables": dict(self.variables),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Command:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            arguments=list(data.get("arguments") or []),
            output=data.get("output") or "",
            error=data.get("error") or "",
            status=bool(data.get("status", False)),
            created_at=_parse_ts(data.get("created_at")) or datetime.now(),
            terminated_at=_parse_ts(data.get("terminated_at")),
            tags=list(data.get("tags") or []),
            category=data.get("category") or "",
            variables=dict(data.get("variables") or {}),
        )


@dataclass
class ChainDefinition:
    """A named, ordered list of command ids executed as a unit."""

    id: str
    name: str
    commands: list[str]
    description: str = ""
    conditional: bool = False
    store: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "commands": list(self.commands),
            "conditional": self.conditional,
            "store": self.store,
            "created_at": _ts(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChainDefinition:
        return cls(
            id=str(data.get("id") or generate_id("CHAIN")),
            name=str(data["name"]),
            description=data.get("description") or "",
            commands=[str(c) for c in data.get("commands") or []],
            conditional=bool(data.get("conditional", False)),
            store=bool(data.get("store", False)),
            created_at=_parse_ts(data.get("created_at")) or datetime.now(),
        )


@dataclass(frozen=True)
class PipelineStep:
    program: str
    arguments: tuple[str, ...] = ()


@dataclass(frozen=True)
class Outcome:
    """Result of one process invocation.

    exit_status is None when the process never started; error then carries
    the explanation.
    """

    exit_status: int | None
    stdout: str
    stderr: str
    success: bool
    error: str = ""
    precise: bool = True


@dataclass(frozen=True)
class RunResult:
    """Result of StreamExecutor.run_once (output is None in stream mode)."""

    exit_status: int | None
    output: str | None
    success: bool
    mode: ExecutionMode
    error: str = ""
