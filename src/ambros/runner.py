# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Process runner: spawn one program, drain its output, report the outcome.

No shell is involved. The program and its arguments are passed to the OS as
an argv list. Each call owns its pipes and drain threads; nothing is shared
between invocations.
"""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from collections.abc import Sequence
from typing import IO

from .errors import InvalidInputError
from .models import Outcome

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Exit status extraction (one variant per platform family)
# ----------------------------------------------------------------


def _exit_status_posix(returncode: int) -> tuple[int, bool]:
    """Real exit status from the wait status.

    subprocess reports death-by-signal as -signum; report it the way a POSIX
    shell does (128 + signum).
    """
    if returncode < 0:
        return 128 - returncode, True
    return returncode, True


def _exit_status_generic(returncode: int) -> tuple[int, bool]:
    """Fallback where the platform has no wait status: success or 1."""
    if returncode == 0:
        return 0, True
    return 1, False


extract_exit_status = (
    _exit_status_posix if os.name == "posix" else _exit_status_generic
)


_READ_SIZE = 4096


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


# ----------------------------------------------------------------
# Runner
# ----------------------------------------------------------------


class ProcessRunner:
    """Subprocess implementation of the Runner protocol."""

    def __init__(
        self, env: dict[str, str] | None = None, cwd: str | None = None
    ):
        """Initialize runner.

        Args:
            env: environment for children (default: inherit)
            cwd: working directory for children (default: current)
        """
        self.env = env
        self.cwd = cwd

    def run(
        self,
        program: str,
        args: Sequence[str] = (),
        input_text: str | None = None,
        combine: bool = False,
    ) -> Outcome:
        """Run program to completion and return its outcome.

        Args:
            program: executable name or path
            args: argument list (not shell-parsed)
            input_text: text fed to the child's stdin; None means the child
                reads from the null device
            combine: merge stderr into stdout (single drain)

        Returns:
            Outcome. A spawn failure is reported with exit_status=None and
            success=False rather than raised.
        """
        if not program or not program.strip():
            raise InvalidInputError("no command specified")

        argv = [program, *args]
        logger.debug("spawning %s", argv)

        try:
            proc = subprocess.Popen(
                argv,
                stdin=(
                    subprocess.PIPE if input_text is not None
                    else subprocess.DEVNULL
                ),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT if combine else subprocess.PIPE,
                env=self.env,
                cwd=self.cwd,
            )
        except OSError as e:
            logger.debug("failed to start %s: %s", program, e)
            return Outcome(
                exit_status=None,
                stdout="",
                stderr="",
                success=False,
                error=f"Error executing command: {e}",
                precise=False,
            )

        # Raw bytes: \r and \r\n must come back unchanged.
        cap_out: list[bytes] = []
        cap_err: list[bytes] = []

        def _reader(pipe: IO[bytes], buf: list[bytes]) -> None:
            try:
                for chunk in iter(lambda: pipe.read(_READ_SIZE), b""):
                    buf.append(chunk)
            finally:
                pipe.close()

        def _writer(pipe: IO[bytes], data: bytes) -> None:
            try:
                pipe.write(data)
            except BrokenPipeError:
                # Child exited before consuming all of its input.
                pass
            finally:
                try:
                    pipe.close()
                except BrokenPipeError:
                    pass

        assert proc.stdout is not None
        threads = [
            threading.Thread(
                target=_reader, args=(proc.stdout, cap_out), daemon=True
            )
        ]
        if not combine:
            assert proc.stderr is not None
            threads.append(
                threading.Thread(
                    target=_reader, args=(proc.stderr, cap_err), daemon=True
                )
            )
        if input_text is not None:
            assert proc.stdin is not None
            threads.append(
                threading.Thread(
                    target=_writer,
                    args=(proc.stdin, input_text.encode("utf-8")),
                    daemon=True,
                )
            )

        for t in threads:
            t.start()
        try:
            returncode = proc.wait()
        finally:
            # Both drains must reach end-of-stream before the outcome exists.
            for t in threads:
                t.join()

        code, precise = extract_exit_status(returncode)
        logger.debug("%s exited with %s", program, code)

        return Outcome(
            exit_status=code,
            stdout=_decode(cap_out),
            stderr=_decode(cap_err),
            success=code == 0,
            precise=precise,
        )
