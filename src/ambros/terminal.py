# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Controlling-terminal helpers used by stream mode.

termios/fcntl/tty only exist on POSIX, so they are imported inside the
functions that need them.
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager


def stdin_is_terminal() -> bool:
    """True when the calling process's stdin is an interactive terminal."""
    try:
        return os.isatty(sys.stdin.fileno())
    except (AttributeError, ValueError, OSError):
        # Replaced or closed stdin (e.g. under a test runner).
        return False


def stdin_fd() -> int | None:
    try:
        return sys.stdin.fileno()
    except (AttributeError, ValueError, OSError):
        return None


def copy_window_size(src_fd: int, dst_fd: int) -> bool:
    """Copy the window size of src_fd's terminal onto dst_fd.

    Returns False when src_fd is not a terminal.
    """
    import fcntl
    import termios

    try:
        size = fcntl.ioctl(src_fd, termios.TIOCGWINSZ, b"\0" * 8)
        fcntl.ioctl(dst_fd, termios.TIOCSWINSZ, size)
    except OSError:
        return False
    return True


def acquire_controlling_terminal() -> None:
    """Make fd 0 the controlling terminal of a fresh session.

    Runs in the child between fork and exec (after setsid).
    """
    import fcntl
    import termios

    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


@contextmanager
def forward_winch(src_fd: int, dst_fd: int) -> Iterator[None]:
    """Forward window-size changes of src_fd to dst_fd while active.

    Signal handlers can only be installed from the main thread; elsewhere,
    and on platforms without SIGWINCH, this is a no-op.
    """
    winch = getattr(signal, "SIGWINCH", None)
    if winch is None or threading.current_thread() is not threading.main_thread():
        yield
        return

    def _on_winch(signum, frame) -> None:
        copy_window_size(src_fd, dst_fd)

    previous = signal.signal(winch, _on_winch)
    try:
        yield
    finally:
        signal.signal(
            winch, previous if previous is not None else signal.SIG_DFL
        )


@contextmanager
def raw_mode(fd: int) -> Iterator[None]:
    """Put the terminal on fd into raw mode, restoring it on exit."""
    import termios
    import tty

    try:
        saved = termios.tcgetattr(fd)
    except termios.error:
        saved = None

    if saved is None:
        yield
        return

    tty.setraw(fd)
    try:
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
