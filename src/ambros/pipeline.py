# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Pipeline sequencer for pipe-delimited command lines.

Segments run one after another (not concurrently): each segment's combined
output is fed to the next segment's stdin once it has exited. A failing
segment stops the pipeline; later segments are neither started nor recorded.
"""

from __future__ import annotations

import logging

from .errors import InvalidInputError
from .interfaces import RecordSink, Runner
from .models import Command, PipelineStep
from .runner import ProcessRunner

logger = logging.getLogger(__name__)


def parse_pipeline(raw: str) -> list[PipelineStep]:
    """Split a command line on '|' and each segment on whitespace.

    Raises:
        InvalidInputError: blank line or an empty segment
    """
    if raw is None or not raw.strip():
        raise InvalidInputError("value must be provided")

    steps: list[PipelineStep] = []
    for segment in raw.split("|"):
        parts = segment.split()
        if not parts:
            raise InvalidInputError("value must be provided")
        steps.append(PipelineStep(program=parts[0], arguments=tuple(parts[1:])))
    return steps


class PipelineSequencer:
    """Runs a parsed pipeline and hands each record to the caller."""

    def __init__(
        self,
        runner: Runner | None = None,
        on_record: RecordSink | None = None,
    ):
        self.runner = runner or ProcessRunner()
        self.on_record = on_record

    def run(
        self,
        raw: str,
        tags: list[str] | None = None,
        category: str = "",
    ) -> list[Command]:
        """Execute raw and return one record per executed segment.

        The list is truncated at the first failing segment.
        """
        steps = parse_pipeline(raw)
        logger.info("running pipeline with %d segment(s)", len(steps))

        records: list[Command] = []
        feed: str | None = None

        for index, step in enumerate(steps, start=1):
            record = Command.new(
                step.program, list(step.arguments), tags=tags, category=category
            )
            outcome = self.runner.run(
                step.program, step.arguments, input_text=feed, combine=True
            )

            error = outcome.error
            if not outcome.success and not error:
                error = f"exit status {outcome.exit_status}"
            record.finish(
                output=outcome.stdout, error=error, status=outcome.success
            )
            records.append(record)

            if self.on_record is not None:
                self.on_record(record)

            if not record.status:
                logger.warning(
                    "pipeline stopped at segment %d (%s): %s",
                    index, record.command_line, error,
                )
                break

            feed = outcome.stdout

        return records
