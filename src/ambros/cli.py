# Ambros — Personal Command History and Re-execution Tool
# Copyright (c) 2025
# TriFactoria (Andrew Blankfield)
#
# Licensed under the Business Source License 1.1 (BSL 1.1).
# You may use, modify, and redistribute this file under the terms of the BSL.
# On the Change Date (2029-01-01), this file will be licensed under
# the Apache License, Version 2.0.

"""
Ambros CLI entry point.

Design:
- CLI owns process startup, config loading and DB resolution.
- Engine objects (executor, sequencer, chain engine) get the store and the
  configured defaults injected.
- Status lines go through prompt_toolkit; captured command output is written
  to stdout untouched.
"""

from __future__ import annotations

import functools
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

import typer
from prompt_toolkit.formatted_text import ANSI
from prompt_toolkit.shortcuts import confirm, print_formatted_text

from . import __version__
from . import config as cfg_module
from .chain import ChainEngine, ChainRun
from .config import ANSI_COLORS, YAMLConfig
from .db import ensure_schema
from .errors import (
    AmbrosError,
    ChainExistsError,
    ChainNotFoundError,
    CommandNotFoundError,
    InvalidInputError,
    TerminalError,
)
from .executor import StreamExecutor
from .log import configure_logging, write_crash_log
from .models import Command, ExecutionMode
from .pipeline import PipelineSequencer
from .store import SQLiteStore
from .utils import format_duration, format_table, format_timestamp

app = typer.Typer(
    name="ambros",
    help="Run, store, chain and replay shell commands.",
    add_completion=False,
    no_args_is_help=True,
)
chain_app = typer.Typer(
    help="Create, run and manage command chains.",
    no_args_is_help=True,
)
app.add_typer(chain_app, name="chain")

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class AppContext:
    config: YAMLConfig
    store: SQLiteStore
    db_path: Path


# ----------------------------------------------------------------
# Output helpers
# ----------------------------------------------------------------


def say(text: str, color: str | None = None) -> None:
    """Print a status line, optionally coloured."""
    if color:
        text = f"{ANSI_COLORS[color]}{text}{ANSI_COLORS['reset']}"
    print_formatted_text(ANSI(text), file=sys.stdout)


def write_raw(text: str) -> None:
    """Write command output exactly as captured."""
    if not text:
        return
    sys.stdout.write(text)
    if not text.endswith("\n"):
        sys.stdout.write("\n")
    sys.stdout.flush()


def report(record: Command) -> None:
    duration = format_duration(record.duration)
    if record.status:
        say(f"[{record.id}] Success ({duration})", "green")
    else:
        say(f"[{record.id}] Failed ({duration}) {record.error}".rstrip(), "red")


def handle_errors(func: F) -> F:
    """Map engine errors to exit codes; crash-log anything unexpected."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except InvalidInputError as e:
            say(f"[ERROR] {e.message}", "red")
            raise typer.Exit(2) from e
        except TerminalError as e:
            say(f"[ERROR] {e.message} (retry with --mode capture)", "red")
            raise typer.Exit(1) from e
        except (CommandNotFoundError, ChainNotFoundError, ChainExistsError) as e:
            say(f"[ERROR] {e.message}", "red")
            raise typer.Exit(1) from e
        except AmbrosError as e:
            say(f"[ERROR] {e}", "red")
            raise typer.Exit(1) from e
        except Exception as e:
            app_ctx = _app_from(args, kwargs)
            db_path = app_ctx.db_path if app_ctx is not None else None
            log_path = write_crash_log(
                e, command_line=" ".join(sys.argv), db_path=db_path
            )
            say(f"[ERROR] Unhandled exception: {type(e).__name__}: {e}", "red")
            if log_path is not None:
                say(f"Crash details written to {log_path}", "dim")
            raise typer.Exit(1) from e

    return wrapper  # type: ignore[return-value]


def _app_from(args: tuple, kwargs: dict) -> AppContext | None:
    for value in (*args, *kwargs.values()):
        if isinstance(value, typer.Context):
            return value.find_object(AppContext)
    return None


def _app(ctx: typer.Context) -> AppContext:
    obj = ctx.find_object(AppContext)
    if obj is None:
        raise RuntimeError("CLI context was not initialized")
    return obj


def _mode(value: str | None, config: YAMLConfig) -> ExecutionMode:
    return config.default_mode if value is None else ExecutionMode.parse(value)


# ----------------------------------------------------------------
# Bootstrap
# ----------------------------------------------------------------


@app.callback()
@handle_errors
def main(ctx: typer.Context) -> None:
    """Load config, configure logging and open the command store."""
    if ctx.resilient_parsing:
        return
    data_root = cfg_module.get_data_root()
    config = cfg_module.load_config(data_root)
    configure_logging(config.log_level, config.log_file)

    path = cfg_module.db_path(data_root)
    ensure_schema(path)
    ctx.obj = AppContext(config=config, store=SQLiteStore(path), db_path=path)


@app.command()
def version() -> None:
    """Show version."""
    typer.echo(f"ambros v{__version__}")


# ----------------------------------------------------------------
# Single commands
# ----------------------------------------------------------------


@app.command(context_settings={"ignore_unknown_options": True})
@handle_errors
def run(
    ctx: typer.Context,
    command: list[str] = typer.Argument(..., help="Program and arguments"),
    mode: str | None = typer.Option(
        None, "--mode", "-m", help="auto | stream | capture"
    ),
    store: bool | None = typer.Option(
        None, "--store/--no-store", help="Store the execution"
    ),
    tag: list[str] = typer.Option([], "--tag", "-t", help="Tag (repeatable)"),
    category: str = typer.Option("", "--category", "-c"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would be executed"
    ),
) -> None:
    """Run a command and optionally store its execution.

    Use -- before the command when it has flags of its own:
    ambros run -- ls -la
    """
    app_ctx = _app(ctx)
    resolved = _mode(mode, app_ctx.config)
    record = Command.new(command[0], command[1:], tags=tag, category=category)

    if dry_run:
        say(f"Would execute: {record.command_line}")
        if tag:
            say(f"Tags: {', '.join(tag)}")
        if category:
            say(f"Category: {category}")
        return

    executor = StreamExecutor()
    result = executor.run_once(record.name, record.arguments, resolved)

    error = result.error
    if not result.success and not error:
        error = f"exit status {result.exit_status}"
    record.finish(output=result.output or "", error=error, status=result.success)

    write_raw(record.output)
    if result.error:
        say(result.error, "red")

    if app_ctx.config.store_runs if store is None else store:
        app_ctx.store.put(record)
        report(record)

    if not result.success:
        raise typer.Exit(result.exit_status or 1)


@app.command(context_settings={"ignore_unknown_options": True})
@handle_errors
def pipe(
    ctx: typer.Context,
    line: list[str] = typer.Argument(
        ..., help='Pipe-delimited command line, e.g. "ls -la | grep py"'
    ),
    store: bool | None = typer.Option(None, "--store/--no-store"),
    tag: list[str] = typer.Option([], "--tag", "-t"),
) -> None:
    """Run commands in sequence, feeding each one's output to the next.

    Quote the "|" separators so the shell does not pipe them itself:
    ambros pipe "ls -la | grep py"
    """
    app_ctx = _app(ctx)
    persist = app_ctx.config.store_runs if store is None else store
    sequencer = PipelineSequencer(
        on_record=app_ctx.store.put if persist else None
    )
    records = sequencer.run(" ".join(line), tags=tag)

    last = records[-1]
    write_raw(last.output)
    for record in records:
        report(record)
    if not last.status:
        raise typer.Exit(1)


@app.command()
@handle_errors
def rerun(
    ctx: typer.Context,
    command_id: str = typer.Argument(..., help="Stored command id"),
    mode: str | None = typer.Option(None, "--mode", "-m"),
    store: bool = typer.Option(False, "--store", "-s"),
    dry_run: bool = typer.Option(False, "--dry-run"),
) -> None:
    """Re-execute a previously stored command."""
    app_ctx = _app(ctx)
    template = app_ctx.store.get(command_id)

    if dry_run:
        say(f"Would execute: {template.command_line}")
        return

    record = StreamExecutor().run_command(
        template, _mode(mode, app_ctx.config)
    )
    write_raw(record.output)
    if store:
        app_ctx.store.put(record)
    report(record)
    if not record.status:
        raise typer.Exit(1)


@app.command()
@handle_errors
def cleanup(
    ctx: typer.Context,
    days: int | None = typer.Option(
        None, "--days", "-d", help="Maximum age in days (default from config)"
    ),
) -> None:
    """Delete stored commands older than the configured age."""
    app_ctx = _app(ctx)
    max_age = app_ctx.config.cleanup_max_age_days if days is None else days
    if max_age < 0:
        raise InvalidInputError("--days must be >= 0")
    removed = app_ctx.store.cleanup(max_age)
    say(f"Removed {removed} command(s) older than {max_age} day(s)")


# ----------------------------------------------------------------
# Chains
# ----------------------------------------------------------------


def _engine(app_ctx: AppContext) -> ChainEngine:
    return ChainEngine(app_ctx.store, mode=app_ctx.config.default_mode)


def _ask_continue(step: Command) -> bool:
    return confirm(f"Continue with next command ({step.command_line})?")


def _summarize(run: ChainRun) -> None:
    for index, record in enumerate(run.records, start=1):
        say(f"[{index}/{len(run.chain.commands)}] {record.command_line}", "cyan")
        write_raw(record.output)
        report(record)

    say(
        f"Chain {run.chain.name}: {run.state.value} "
        f"({len(run.records) - len(run.failed)} succeeded, "
        f"{len(run.failed)} failed, "
        f"{len(run.chain.commands) - len(run.records)} skipped)",
        "green" if run.succeeded else "yellow",
    )


@chain_app.command("create")
@handle_errors
def chain_create(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    ids: str = typer.Argument(..., help="Comma-separated command ids"),
    desc: str = typer.Option("", "--desc", "-d"),
    conditional: bool = typer.Option(
        False, "--conditional", "-c", help="Stop at the first failing step"
    ),
    store: bool | None = typer.Option(
        None, "--store/--no-store", help="Store per-step results"
    ),
) -> None:
    """Create a chain from stored command ids."""
    app_ctx = _app(ctx)
    chain = _engine(app_ctx).create_chain(
        name,
        ids,
        description=desc,
        conditional=conditional,
        store=app_ctx.config.store_chain_results if store is None else store,
    )
    say(f"Chain '{chain.name}' created with {len(chain.commands)} commands")
    if chain.description:
        say(f"Description: {chain.description}")


@chain_app.command("exec")
@handle_errors
def chain_exec(
    ctx: typer.Context,
    name: str = typer.Argument(...),
    mode: str | None = typer.Option(None, "--mode", "-m"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    interactive: bool = typer.Option(
        False, "--interactive", "-i", help="Confirm before each step"
    ),
    retry: int = typer.Option(
        0, "--retry", "-r", min=0, help="Re-run a failing step up to N times"
    ),
) -> None:
    """Execute a stored chain."""
    app_ctx = _app(ctx)
    engine = _engine(app_ctx)

    if dry_run:
        chain = engine.get_chain(name)
        steps = engine.plan_chain(name)
        say(f"Chain: {chain.name}", "cyan")
        if chain.description:
            say(f"Description: {chain.description}")
        for index, step in enumerate(steps, start=1):
            say(f"  {index}. {step.command_line}")
        say(f"Stop on failure: {chain.conditional}", "yellow")
        return

    run = engine.execute_chain(
        name,
        mode=mode,
        confirm=_ask_continue if interactive else None,
        retry=retry,
    )
    _summarize(run)
    if not run.succeeded:
        raise typer.Exit(1)


@chain_app.command("list")
@handle_errors
def chain_list(ctx: typer.Context) -> None:
    """List stored chains."""
    chains = _engine(_app(ctx)).list_chains()
    if not chains:
        say("No command chains found")
        return
    rows = [
        [
            c.name,
            len(c.commands),
            "yes" if c.conditional else "no",
            "yes" if c.store else "no",
            c.description,
        ]
        for c in chains
    ]
    typer.echo(
        format_table(["NAME", "STEPS", "CONDITIONAL", "STORE", "DESCRIPTION"], rows)
    )


@chain_app.command("show")
@handle_errors
def chain_show(ctx: typer.Context, name: str = typer.Argument(...)) -> None:
    """Show chain details."""
    app_ctx = _app(ctx)
    chain = _engine(app_ctx).get_chain(name)
    say(f"Chain: {chain.name}", "cyan")
    say(f"ID: {chain.id}")
    say(f"Description: {chain.description}")
    say(f"Created: {format_timestamp(chain.created_at)}")
    say(f"Conditional: {chain.conditional}")
    say(f"Store results: {chain.store}")
    say(f"Commands ({len(chain.commands)}):")
    for index, command_id in enumerate(chain.commands, start=1):
        try:
            step = app_ctx.store.get(command_id)
        except CommandNotFoundError:
            say(f"  {index}. {command_id} (not found)", "red")
            continue
        say(f"  {index}. {step.command_line}")


@chain_app.command("delete")
@handle_errors
def chain_delete(ctx: typer.Context, name: str = typer.Argument(...)) -> None:
    """Delete a chain."""
    _engine(_app(ctx)).delete_chain(name)
    say(f"Chain '{name}' deleted")


@chain_app.command("export")
@handle_errors
def chain_export(ctx: typer.Context, name: str = typer.Argument(...)) -> None:
    """Print a chain as JSON."""
    typer.echo(_engine(_app(ctx)).export_chain(name))


@chain_app.command("import")
@handle_errors
def chain_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False),
) -> None:
    """Import a chain from an exported JSON file."""
    chain = _engine(_app(ctx)).import_chain(path.read_text(encoding="utf-8"))
    say(f"Chain imported: {chain.name}", "green")
