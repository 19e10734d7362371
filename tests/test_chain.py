"""
Tests for ChainEngine: chain administration, resolution and execution.
Storage and process execution are replaced by in-memory fakes.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest

from ambros.chain import (
    CHAIN_RESULT_CATEGORY,
    ChainEngine,
    split_step_ids,
)
from ambros.errors import (
    ChainExistsError,
    ChainNotFoundError,
    CommandNotFoundError,
    InvalidInputError,
)
from ambros.executor import StreamExecutor
from ambros.models import ChainDefinition, ChainState, Command, ExecutionMode, Outcome


class FakeRepository:
    """In-memory Repository."""

    def __init__(self):
        self.commands: dict[str, Command] = {}
        self.chains: dict[str, ChainDefinition] = {}
        self.puts: list[Command] = []

    def get(self, command_id: str) -> Command:
        if command_id not in self.commands:
            raise CommandNotFoundError(command_id)
        return self.commands[command_id]

    def put(self, command: Command) -> None:
        self.puts.append(command)
        self.commands[command.id] = command

    def delete(self, command_id: str) -> None:
        if self.commands.pop(command_id, None) is None:
            raise CommandNotFoundError(command_id)

    def search_by_tag(self, tag: str) -> list[Command]:
        return [c for c in self.commands.values() if tag in c.tags]

    def search_by_status(self, success: bool) -> list[Command]:
        return [c for c in self.commands.values() if c.status is success]

    def get_all_commands(self) -> list[Command]:
        return list(self.commands.values())

    def put_chain(self, chain: ChainDefinition) -> None:
        self.chains[chain.name] = chain

    def get_chain(self, name: str) -> ChainDefinition:
        if name not in self.chains:
            raise ChainNotFoundError(name)
        return self.chains[name]

    def delete_chain(self, name: str) -> None:
        if self.chains.pop(name, None) is None:
            raise ChainNotFoundError(name)

    def list_chains(self) -> list[ChainDefinition]:
        return [self.chains[n] for n in sorted(self.chains)]


@dataclass
class ProgramRunner:
    """Programs named 'fail*' exit 1; everything else succeeds.

    flaky maps a program name to how many times it fails before succeeding.
    """

    ran: list[str] = field(default_factory=list)
    flaky: dict[str, int] = field(default_factory=dict)

    def run(self, program, args, input_text=None, combine=False) -> Outcome:
        self.ran.append(program)
        if self.flaky.get(program, 0) > 0:
            self.flaky[program] -= 1
            return Outcome(1, f"{program} flaked\n", "", False)
        if program.startswith("fail"):
            return Outcome(1, f"{program} failed\n", "", False)
        return Outcome(0, f"{program} ok\n", "", True)


@pytest.fixture
def repo() -> FakeRepository:
    r = FakeRepository()
    for name in ("first", "second", "fail_middle", "last"):
        cmd = Command.new(name, ["--flag"], tags=["stored"])
        cmd.id = f"ID-{name}"
        r.commands[cmd.id] = cmd
    return r


@pytest.fixture
def runner() -> ProgramRunner:
    return ProgramRunner()


@pytest.fixture
def engine(repo: FakeRepository, runner: ProgramRunner) -> ChainEngine:
    executor = StreamExecutor(runner=runner, is_terminal=lambda: False)
    return ChainEngine(
        repo, executor=executor, mode=ExecutionMode.CAPTURE, retry_delay=0
    )


# ----------------------------------------------------------------
# Id parsing
# ----------------------------------------------------------------


def test_split_step_ids_trims_and_drops_empty() -> None:
    assert split_step_ids(" a, b ,,c ") == ["a", "b", "c"]
    assert split_step_ids(["x", " ", "y "]) == ["x", "y"]
    assert split_step_ids("") == []


# ----------------------------------------------------------------
# Administration
# ----------------------------------------------------------------


def test_create_chain_persists_definition(
    engine: ChainEngine, repo: FakeRepository
) -> None:
    chain = engine.create_chain(
        "deploy", "ID-first, ID-second", description="d", conditional=True
    )

    assert chain.id.startswith("CHAIN-")
    assert chain.commands == ["ID-first", "ID-second"]
    assert chain.conditional is True
    assert chain.store is False
    assert repo.chains["deploy"] is chain


@pytest.mark.parametrize("name, ids", [("", "ID-first"), ("   ", "ID-first")])
def test_create_chain_requires_name(engine: ChainEngine, name: str, ids: str) -> None:
    with pytest.raises(InvalidInputError):
        engine.create_chain(name, ids)


@pytest.mark.parametrize("ids", ["", " , ", []])
def test_create_chain_requires_ids(engine: ChainEngine, ids) -> None:
    with pytest.raises(InvalidInputError):
        engine.create_chain("deploy", ids)


def test_create_chain_with_unknown_id_persists_nothing(
    engine: ChainEngine, repo: FakeRepository
) -> None:
    with pytest.raises(CommandNotFoundError) as exc:
        engine.create_chain("deploy", "ID-first,ID-missing")

    assert exc.value.command_id == "ID-missing"
    assert repo.chains == {}


def test_create_chain_rejects_duplicate_name(engine: ChainEngine) -> None:
    engine.create_chain("deploy", "ID-first")

    with pytest.raises(ChainExistsError):
        engine.create_chain("deploy", "ID-second")


def test_list_and_delete_chains(engine: ChainEngine) -> None:
    engine.create_chain("b", "ID-first")
    engine.create_chain("a", "ID-second")

    assert [c.name for c in engine.list_chains()] == ["a", "b"]

    engine.delete_chain("a")
    assert [c.name for c in engine.list_chains()] == ["b"]

    with pytest.raises(ChainNotFoundError):
        engine.delete_chain("a")


def test_export_then_import_into_fresh_repository(
    engine: ChainEngine, repo: FakeRepository, runner: ProgramRunner
) -> None:
    engine.create_chain("deploy", "ID-first,ID-last", description="ship it")
    document = engine.export_chain("deploy")

    assert json.loads(document)["commands"] == ["ID-first", "ID-last"]

    other = FakeRepository()
    other.commands = dict(repo.commands)
    imported = ChainEngine(other, executor=StreamExecutor(runner=runner)).import_chain(
        document
    )

    assert imported.name == "deploy"
    assert imported.description == "ship it"
    assert other.chains["deploy"].commands == ["ID-first", "ID-last"]


def test_import_rejects_existing_chain(engine: ChainEngine) -> None:
    engine.create_chain("deploy", "ID-first")

    with pytest.raises(ChainExistsError):
        engine.import_chain(engine.export_chain("deploy"))


@pytest.mark.parametrize(
    "text",
    ["not json", "[]", json.dumps({"commands": ["ID-first"]}), json.dumps({"name": "x"})],
)
def test_import_rejects_invalid_documents(engine: ChainEngine, text: str) -> None:
    with pytest.raises(InvalidInputError):
        engine.import_chain(text)


# ----------------------------------------------------------------
# Execution
# ----------------------------------------------------------------


def test_execute_runs_every_step_in_order(
    engine: ChainEngine, runner: ProgramRunner
) -> None:
    engine.create_chain("all", "ID-first,ID-second,ID-last")

    run = engine.execute_chain("all")

    assert runner.ran == ["first", "second", "last"]
    assert run.state is ChainState.COMPLETED
    assert run.succeeded is True
    assert [r.output for r in run.records] == [
        "first ok\n",
        "second ok\n",
        "last ok\n",
    ]


def test_non_conditional_chain_continues_after_failure(
    engine: ChainEngine, runner: ProgramRunner
) -> None:
    engine.create_chain("loose", "ID-first,ID-fail_middle,ID-last")

    run = engine.execute_chain("loose")

    assert runner.ran == ["first", "fail_middle", "last"]
    assert run.state is ChainState.COMPLETED
    assert [r.name for r in run.failed] == ["fail_middle"]
    assert run.succeeded is False


def test_conditional_chain_stops_at_first_failure(
    engine: ChainEngine, runner: ProgramRunner
) -> None:
    engine.create_chain("strict", "ID-first,ID-fail_middle,ID-last", conditional=True)

    run = engine.execute_chain("strict")

    assert runner.ran == ["first", "fail_middle"]
    assert run.state is ChainState.ABORTED
    assert len(run.records) == 2


def test_execute_unknown_chain(engine: ChainEngine) -> None:
    with pytest.raises(ChainNotFoundError):
        engine.execute_chain("nope")


def test_execute_with_vanished_step_runs_nothing(
    engine: ChainEngine, repo: FakeRepository, runner: ProgramRunner
) -> None:
    engine.create_chain("deploy", "ID-first,ID-last")
    del repo.commands["ID-last"]

    with pytest.raises(CommandNotFoundError):
        engine.execute_chain("deploy")

    assert runner.ran == []


def test_execute_does_not_store_results_by_default(
    engine: ChainEngine, repo: FakeRepository
) -> None:
    engine.create_chain("deploy", "ID-first")

    engine.execute_chain("deploy")

    assert repo.puts == []


def test_execute_with_store_persists_tagged_records(
    engine: ChainEngine, repo: FakeRepository
) -> None:
    chain = engine.create_chain("deploy", "ID-first,ID-second", store=True)

    run = engine.execute_chain("deploy")

    assert repo.puts == run.records
    first = repo.puts[0]
    assert first.id.startswith("RUN-")
    assert first.id != "ID-first"
    assert first.category == CHAIN_RESULT_CATEGORY
    assert first.tags == ["stored", "chain", "execution"]
    assert first.variables == {
        "chain_id": chain.id,
        "chain_name": "deploy",
        "step_id": "ID-first",
        "step": "1",
        "attempts": "1",
    }
    assert repo.puts[1].variables["step"] == "2"


def test_execute_leaves_stored_templates_untouched(
    engine: ChainEngine, repo: FakeRepository
) -> None:
    engine.create_chain("deploy", "ID-first", store=True)

    engine.execute_chain("deploy")

    template = repo.commands["ID-first"]
    assert template.output == ""
    assert template.category == ""


def test_execute_confirm_can_stop_chain(
    engine: ChainEngine, runner: ProgramRunner
) -> None:
    engine.create_chain("deploy", "ID-first,ID-second,ID-last")
    asked: list[str] = []

    def _confirm(step: Command) -> bool:
        asked.append(step.name)
        return step.name != "last"

    run = engine.execute_chain("deploy", confirm=_confirm)

    assert asked == ["second", "last"]
    assert runner.ran == ["first", "second"]
    assert run.state is ChainState.ABORTED


def test_plan_chain_resolves_without_running(
    engine: ChainEngine, runner: ProgramRunner
) -> None:
    engine.create_chain("deploy", "ID-first,ID-last")

    steps = engine.plan_chain("deploy")

    assert [s.name for s in steps] == ["first", "last"]
    assert runner.ran == []


def test_execute_rejects_unknown_mode(engine: ChainEngine) -> None:
    engine.create_chain("deploy", "ID-first")

    with pytest.raises(InvalidInputError):
        engine.execute_chain("deploy", mode="bogus")


# ----------------------------------------------------------------
# Retry
# ----------------------------------------------------------------


def test_retry_reruns_failing_step_until_success(
    engine: ChainEngine, runner: ProgramRunner
) -> None:
    runner.flaky["second"] = 2
    engine.create_chain("deploy", "ID-first,ID-second,ID-last", store=True)

    run = engine.execute_chain("deploy", retry=3)

    assert runner.ran == ["first", "second", "second", "second", "last"]
    assert run.succeeded is True
    assert len(run.records) == 3
    assert run.records[1].output == "second ok\n"
    assert run.records[1].variables["attempts"] == "3"


def test_retry_gives_up_after_limit(
    engine: ChainEngine, repo: FakeRepository, runner: ProgramRunner
) -> None:
    engine.create_chain(
        "strict", "ID-fail_middle,ID-last", conditional=True, store=True
    )

    run = engine.execute_chain("strict", retry=2)

    assert runner.ran == ["fail_middle"] * 3
    assert run.state is ChainState.ABORTED
    assert len(run.records) == 1
    assert run.records[0].variables["attempts"] == "3"
    # Only the last attempt is persisted.
    assert repo.puts == run.records


def test_retry_waits_longer_each_attempt(
    repo: FakeRepository, runner: ProgramRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    delays: list[float] = []
    monkeypatch.setattr("ambros.chain.time.sleep", delays.append)
    engine = ChainEngine(
        repo,
        executor=StreamExecutor(runner=runner),
        mode=ExecutionMode.CAPTURE,
        retry_delay=0.5,
    )
    engine.create_chain("deploy", "ID-fail_middle")

    engine.execute_chain("deploy", retry=3)

    assert delays == [0.5, 1.0, 1.5]


def test_retry_rejects_negative_count(engine: ChainEngine) -> None:
    engine.create_chain("deploy", "ID-first")

    with pytest.raises(InvalidInputError):
        engine.execute_chain("deploy", retry=-1)
