# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Exception types raised by the engine.

Only input validation, resolution and terminal allocation failures are
raised. A command that cannot start or exits non-zero is reported in the
returned record instead.
"""

from __future__ import annotations


class AmbrosError(Exception):
    """Base class for engine errors."""

    code = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidInputError(AmbrosError):
    code = "invalid_command"


class CommandNotFoundError(AmbrosError):
    code = "command_not_found"

    def __init__(self, command_id: str):
        super().__init__(f"command not found: {command_id}")
        self.command_id = command_id


class ChainNotFoundError(AmbrosError):
    code = "chain_not_found"

    def __init__(self, name: str):
        super().__init__(f"chain not found: {name}")
        self.name = name


class ChainExistsError(AmbrosError):
    code = "chain_exists"

    def __init__(self, name: str):
        super().__init__(f"chain already exists: {name}")
        self.name = name


class TerminalError(AmbrosError):
    """Pseudo-terminal could not be allocated (stream mode)."""

    code = "terminal_failure"
