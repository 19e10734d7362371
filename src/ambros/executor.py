# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Stream executor: run one command either attached to a pseudo-terminal or
with its output captured.

Modes:
- STREAM: child gets a PTY; its output is copied to the caller as it
  arrives, keystrokes and window resizes are forwarded. Nothing is captured.
- CAPTURE: combined stdout+stderr buffered in memory and returned.
- AUTO: STREAM when the caller's stdin is a terminal, CAPTURE otherwise.
  Decided once, before the child starts.
"""

from __future__ import annotations

import codecs
import logging
import os
import select
import subprocess
import sys
from collections.abc import Callable, Sequence
from contextlib import ExitStack

from . import terminal
from .errors import InvalidInputError, TerminalError
from .interfaces import Runner, TerminalCheck
from .models import Command, ExecutionMode, RunResult
from .runner import ProcessRunner, extract_exit_status

logger = logging.getLogger(__name__)

_READ_SIZE = 4096
_POLL_INTERVAL = 0.05


def resolve_mode(
    mode: ExecutionMode | str, is_terminal: TerminalCheck
) -> ExecutionMode:
    """Turn AUTO into a concrete mode; other modes pass through."""
    mode = ExecutionMode.parse(mode)
    if mode is not ExecutionMode.AUTO:
        return mode
    return ExecutionMode.STREAM if is_terminal() else ExecutionMode.CAPTURE


# Programs that expect a terminal; captured, they tend to hang or misrender.
INTERACTIVE_PROGRAMS = frozenset({
    "ssh", "su", "sudo", "vim", "vi", "nano", "less", "more", "man",
    "top", "htop", "screen", "tmux", "passwd",
})
_FOLLOW_FLAGS = frozenset({"-f", "-F"})
_TTY_FLAGS = frozenset({"-i", "-t", "-it", "-ti"})


def looks_interactive(program: str, args: Sequence[str] = ()) -> bool:
    """Guess whether a command needs a terminal to be useful."""
    name = os.path.basename(program)
    if name in INTERACTIVE_PROGRAMS:
        return True
    if name == "tail":
        return any(a in _FOLLOW_FLAGS for a in args)
    if name in ("docker", "kubectl"):
        return any(a in _TTY_FLAGS for a in args)
    return False


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class StreamExecutor:
    """Runs single commands in auto, stream or capture mode."""

    def __init__(
        self,
        runner: Runner | None = None,
        is_terminal: TerminalCheck | None = None,
        on_output: Callable[[str], None] | None = None,
        input_fd: Callable[[], int | None] | None = None,
    ):
        """Initialize executor.

        Args:
            runner: process runner for capture mode
            is_terminal: predicate used by AUTO mode
            on_output: receives PTY output chunks in stream mode
                (default: caller's stdout, flushed per chunk)
            input_fd: returns the fd whose keystrokes are forwarded to the
                PTY (default: caller's stdin)
        """
        self.runner = runner or ProcessRunner()
        self.is_terminal = is_terminal or terminal.stdin_is_terminal
        self.on_output = on_output or _write_stdout
        self.input_fd = input_fd or terminal.stdin_fd

    def run_once(
        self,
        program: str,
        args: Sequence[str] = (),
        mode: ExecutionMode | str = ExecutionMode.AUTO,
    ) -> RunResult:
        """Run program once in the requested mode.

        Raises:
            InvalidInputError: empty program name or unknown mode
            TerminalError: stream mode could not allocate a PTY
        """
        if not program or not program.strip():
            raise InvalidInputError("no command specified")

        resolved = resolve_mode(mode, self.is_terminal)
        logger.debug("running %s in %s mode", program, resolved.value)

        if resolved is ExecutionMode.STREAM:
            return self._run_stream(program, list(args))

        if looks_interactive(program, args):
            logger.warning(
                "%s looks interactive; running it with captured output "
                "may hang (use --mode stream)",
                program,
            )
        outcome = self.runner.run(program, list(args), combine=True)
        return RunResult(
            exit_status=outcome.exit_status,
            output=outcome.stdout,
            success=outcome.success,
            mode=resolved,
            error=outcome.error,
        )

    def run_command(
        self,
        template: Command,
        mode: ExecutionMode | str = ExecutionMode.AUTO,
        prefix: str = "CMD",
    ) -> Command:
        """Execute a stored command and return a new, completed record."""
        record = Command.new(
            template.name,
            template.arguments,
            tags=template.tags,
            category=template.category,
            prefix=prefix,
        )
        result = self.run_once(record.name, record.arguments, mode)

        error = result.error
        if not result.success and not error:
            error = f"exit status {result.exit_status}"
        return record.finish(
            output=result.output or "", error=error, status=result.success
        )

    # ----------------------------------------------------------------
    # Stream mode
    # ----------------------------------------------------------------

    def _run_stream(self, program: str, args: list[str]) -> RunResult:
        try:
            import pty

            master_fd, slave_fd = pty.openpty()
        except (ImportError, OSError) as e:
            raise TerminalError(
                f"failed to allocate pseudo-terminal: {e}"
            ) from e

        in_fd = self.input_fd()
        interactive = in_fd is not None and os.isatty(in_fd)
        if interactive:
            terminal.copy_window_size(in_fd, master_fd)

        try:
            proc = subprocess.Popen(
                [program, *args],
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                preexec_fn=terminal.acquire_controlling_terminal,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            logger.debug("failed to start %s: %s", program, e)
            return RunResult(
                exit_status=None,
                output=None,
                success=False,
                mode=ExecutionMode.STREAM,
                error=f"Error executing command: {e}",
            )
        finally:
            os.close(slave_fd)

        try:
            with ExitStack() as stack:
                if interactive:
                    stack.enter_context(terminal.forward_winch(in_fd, master_fd))
                    stack.enter_context(terminal.raw_mode(in_fd))
                self._pump(proc, master_fd, in_fd if interactive else None)
        except BaseException:
            proc.kill()
            raise
        finally:
            returncode = proc.wait()
            os.close(master_fd)

        code, _precise = extract_exit_status(returncode)
        logger.debug("%s exited with %s", program, code)
        return RunResult(
            exit_status=code,
            output=None,
            success=code == 0,
            mode=ExecutionMode.STREAM,
        )

    def _pump(
        self, proc: subprocess.Popen, master_fd: int, in_fd: int | None
    ) -> None:
        """Copy PTY output to the caller (and keystrokes to the PTY) until
        the child has exited and its output is drained."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        watched = [master_fd] if in_fd is None else [master_fd, in_fd]

        while True:
            ready, _, _ = select.select(watched, [], [], _POLL_INTERVAL)

            if master_fd in ready:
                try:
                    data = os.read(master_fd, _READ_SIZE)
                except OSError:
                    # EIO: every holder of the slave side has gone away.
                    data = b""
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    self.on_output(text)
            elif proc.poll() is not None:
                break

            if in_fd is not None and in_fd in ready:
                data = os.read(in_fd, _READ_SIZE)
                if data:
                    os.write(master_fd, data)
                else:
                    watched.remove(in_fd)

        tail = decoder.decode(b"", final=True)
        if tail:
            self.on_output(tail)
