# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Protocol definitions for dependency injection.

These interfaces separate the execution engine from storage and from the
process layer, so each side can be replaced by a fake in tests.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from .models import ChainDefinition, Command, Outcome

# "Is the caller's stdin an interactive terminal?"
TerminalCheck = Callable[[], bool]

# Persistence hook handed each completed record.
RecordSink = Callable[[Command], None]


class CommandRepository(Protocol):
    """Protocol for command record storage."""

    def get(self, command_id: str) -> Command:
        """Fetch one record; raise CommandNotFoundError when absent."""
        ...

    def put(self, command: Command) -> None:
        """Insert or replace one record."""
        ...

    def delete(self, command_id: str) -> None:
        """Remove one record."""
        ...

    def search_by_tag(self, tag: str) -> list[Command]:
        ...

    def search_by_status(self, success: bool) -> list[Command]:
        ...

    def get_all_commands(self) -> list[Command]:
        ...


class ChainRepository(Protocol):
    """Protocol for chain definition storage."""

    def put_chain(self, chain: ChainDefinition) -> None:
        ...

    def get_chain(self, name: str) -> ChainDefinition:
        """Fetch a chain by name; raise ChainNotFoundError when absent."""
        ...

    def delete_chain(self, name: str) -> None:
        """Delete a chain; raise ChainNotFoundError when absent."""
        ...

    def list_chains(self) -> list[ChainDefinition]:
        """All chains, sorted by name."""
        ...


class Repository(CommandRepository, ChainRepository, Protocol):
    """Combined storage used by the chain engine and the CLI."""


class Runner(Protocol):
    """Protocol for single-process execution."""

    def run(
        self,
        program: str,
        args: list[str] | tuple[str, ...],
        input_text: str | None = None,
        combine: bool = False,
    ) -> Outcome:
        ...
