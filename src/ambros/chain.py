# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Chain engine: create, resolve and execute named sequences of stored commands.

Execution of one chain goes RESOLVING -> RUNNING -> COMPLETED | ABORTED.
Every step id is resolved before the first step starts, so a chain that
references an unknown command never runs partially.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from .errors import (
    ChainExistsError,
    ChainNotFoundError,
    InvalidInputError,
)
from .executor import StreamExecutor
from .interfaces import Repository
from .models import (
    ChainDefinition,
    ChainState,
    Command,
    ExecutionMode,
    generate_id,
)

logger = logging.getLogger(__name__)

CHAIN_RESULT_CATEGORY = "chain-execution"
CHAIN_RESULT_TAGS = ("chain", "execution")

# Asked before each step after the first; False stops the chain.
StepConfirm = Callable[[Command], bool]


def split_step_ids(step_ids: str | Iterable[str]) -> list[str]:
    """Normalize a comma-separated string (or list) of command ids."""
    parts = step_ids.split(",") if isinstance(step_ids, str) else step_ids
    return [p.strip() for p in parts if p and p.strip()]


@dataclass
class ChainRun:
    """Result of one chain execution."""

    chain: ChainDefinition
    state: ChainState = ChainState.RESOLVING
    records: list[Command] = field(default_factory=list)

    @property
    def failed(self) -> list[Command]:
        return [r for r in self.records if not r.status]

    @property
    def succeeded(self) -> bool:
        return self.state is ChainState.COMPLETED and not self.failed


class ChainEngine:
    """Chain administration and execution on top of a repository."""

    def __init__(
        self,
        repository: Repository,
        executor: StreamExecutor | None = None,
        mode: ExecutionMode | str = ExecutionMode.AUTO,
        retry_delay: float = 1.0,
    ):
        """Initialize engine.

        Args:
            repository: command and chain storage
            executor: runs each step (default: StreamExecutor())
            mode: execution mode used when execute_chain gets none
            retry_delay: seconds before the first retry of a failed step;
                retry n waits n times as long
        """
        self.repository = repository
        self.executor = executor or StreamExecutor()
        self.mode = ExecutionMode.parse(mode)
        self.retry_delay = retry_delay

    # ----------------------------------------------------------------
    # Administration
    # ----------------------------------------------------------------

    def create_chain(
        self,
        name: str,
        step_ids: str | Iterable[str],
        description: str = "",
        conditional: bool = False,
        store: bool = False,
    ) -> ChainDefinition:
        """Create and persist a chain.

        Raises:
            InvalidInputError: missing name or empty id list
            CommandNotFoundError: any id is unknown (nothing is persisted)
            ChainExistsError: a chain with this name already exists
        """
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("chain name required")
        ids = split_step_ids(step_ids)
        if not ids:
            raise InvalidInputError("chain name and command IDs required")

        self._resolve(ids)
        if self._exists(name):
            raise ChainExistsError(name)

        chain = ChainDefinition(
            id=generate_id("CHAIN"),
            name=name,
            description=description,
            commands=ids,
            conditional=conditional,
            store=store,
        )
        self.repository.put_chain(chain)
        logger.info(
            "created chain %s (%s) with %d command(s)",
            chain.name, chain.id, len(ids),
        )
        return chain

    def get_chain(self, name: str) -> ChainDefinition:
        return self.repository.get_chain(self._require_name(name))

    def list_chains(self) -> list[ChainDefinition]:
        return self.repository.list_chains()

    def delete_chain(self, name: str) -> None:
        name = self._require_name(name)
        self.repository.delete_chain(name)
        logger.info("deleted chain %s", name)

    def export_chain(self, name: str) -> str:
        return json.dumps(self.get_chain(name).to_dict(), indent=2)

    def import_chain(self, text: str) -> ChainDefinition:
        """Persist a chain from its exported JSON form."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"invalid chain document: {e}") from e
        if not isinstance(data, dict) or not data.get("name"):
            raise InvalidInputError("invalid chain document: name required")

        chain = ChainDefinition.from_dict(data)
        chain.commands = split_step_ids(chain.commands)
        if not chain.commands:
            raise InvalidInputError("chain name and command IDs required")

        self._resolve(chain.commands)
        if self._exists(chain.name):
            raise ChainExistsError(chain.name)

        self.repository.put_chain(chain)
        logger.info("imported chain %s", chain.name)
        return chain

    # ----------------------------------------------------------------
    # Execution
    # ----------------------------------------------------------------

    def plan_chain(self, name: str) -> list[Command]:
        """Resolve every step without running anything (dry run)."""
        return self._resolve(self.get_chain(name).commands)

    def execute_chain(
        self,
        name: str,
        mode: ExecutionMode | str | None = None,
        confirm: StepConfirm | None = None,
        retry: int = 0,
    ) -> ChainRun:
        """Run a stored chain.

        A failing step is re-run up to ``retry`` more times; only the last
        attempt's record is kept.

        Raises:
            InvalidInputError: negative retry count or unknown mode
            ChainNotFoundError: no chain with this name
            CommandNotFoundError: a step id no longer resolves (nothing ran)
            TerminalError: stream mode could not allocate a PTY
        """
        if retry < 0:
            raise InvalidInputError("retry must be >= 0")
        chain = self.get_chain(name)
        run = ChainRun(chain=chain)

        steps = self._resolve(chain.commands)
        run.state = ChainState.RUNNING
        mode = self.mode if mode is None else ExecutionMode.parse(mode)
        logger.info(
            "executing chain %s: %d step(s), conditional=%s, store=%s",
            chain.name, len(steps), chain.conditional, chain.store,
        )

        for index, (step_id, template) in enumerate(
            zip(chain.commands, steps), start=1
        ):
            if confirm is not None and index > 1 and not confirm(template):
                logger.info(
                    "chain %s stopped before step %d", chain.name, index
                )
                run.state = ChainState.ABORTED
                return run

            record, attempts = self._run_step(template, mode, retry)
            record.category = CHAIN_RESULT_CATEGORY
            record.tags = [*template.tags, *CHAIN_RESULT_TAGS]
            record.variables = {
                "chain_id": chain.id,
                "chain_name": chain.name,
                "step_id": step_id,
                "step": str(index),
                "attempts": str(attempts),
            }
            run.records.append(record)

            if chain.store:
                self.repository.put(record)

            if not record.status:
                logger.warning(
                    "chain %s step %d (%s) failed: %s",
                    chain.name, index, step_id, record.error,
                )
                if chain.conditional:
                    run.state = ChainState.ABORTED
                    return run

        run.state = ChainState.COMPLETED
        return run

    # ----------------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------------

    def _run_step(
        self, template: Command, mode: ExecutionMode, retry: int
    ) -> tuple[Command, int]:
        attempt = 1
        record = self.executor.run_command(template, mode, prefix="RUN")
        while not record.status and attempt <= retry:
            delay = self.retry_delay * attempt
            logger.info(
                "retrying %s in %.1fs (attempt %d/%d)",
                template.command_line, delay, attempt + 1, retry + 1,
            )
            if delay > 0:
                time.sleep(delay)
            attempt += 1
            record = self.executor.run_command(template, mode, prefix="RUN")
        return record, attempt

    def _resolve(self, ids: list[str]) -> list[Command]:
        # CommandNotFoundError from the repository propagates unchanged.
        return [self.repository.get(command_id) for command_id in ids]

    def _exists(self, name: str) -> bool:
        try:
            self.repository.get_chain(name)
        except ChainNotFoundError:
            return False
        return True

    @staticmethod
    def _require_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("chain name required")
        return name
