"""Task plan inspection.

Loads issue-tracker task records from a JSON or TOML file into a scratch
swarm and shows the order in which they could land.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from pydantic import ValidationError as PydanticValidationError
from rich import box
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from epicswarm.core.console import console
from epicswarm.core.result import Err, Ok, Result, ValidationError, collect_results, try_result
from epicswarm.core.rig import Rig
from epicswarm.swarm.manager import SwarmManager
from epicswarm.swarm.types import DependencyReport, TaskRecord, TaskState

if TYPE_CHECKING:
    from epicswarm.main import AppState

_PLAN_SWARM = "plan"


def _parse_entry(index: int, item: Any) -> Result[TaskRecord, ValidationError]:
    if not isinstance(item, dict):
        return Err(ValidationError("Task entry must be a table", context={"index": index}))
    fields = dict(item)
    if "issue_id" not in fields and "id" in fields:
        fields["issue_id"] = fields.pop("id")
    if "dependencies" not in fields and "depends_on" in fields:
        fields["dependencies"] = fields.pop("depends_on")
    try:
        return Ok(TaskRecord.model_validate(fields))
    except PydanticValidationError as exc:
        return Err(ValidationError("Invalid task entry", context={"index": index, "error": str(exc)}))


def read_task_records(path: Path) -> Result[list[TaskRecord], ValidationError]:
    """Parse task records from ``path``.

    Accepts either a top-level list of records or a mapping with a
    ``tasks`` list. ``id`` and ``depends_on`` are accepted as aliases.
    """
    match try_result(lambda: path.read_text(encoding="utf-8"), OSError):
        case Err(exc):
            return Err(ValidationError("Cannot read task file", context={"path": str(path), "error": str(exc)}))
        case Ok(raw_text):
            pass

    try:
        data: Any = json.loads(raw_text) if path.suffix.lower() == ".json" else tomllib.loads(raw_text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        return Err(ValidationError("Task file is not valid", context={"path": str(path), "error": str(exc)}))

    items = data.get("tasks", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        return Err(ValidationError("Task file must hold a list of tasks", context={"path": str(path)}))

    return collect_results([_parse_entry(index, item) for index, item in enumerate(items)])


def landing_waves(manager: SwarmManager, swarm_id: str) -> list[list[str]]:
    """Merge ready tasks round by round until nothing new becomes ready.

    Mutates the swarm: every task that can ever land ends up MERGED.
    """
    waves: list[list[str]] = []
    while True:
        ready = manager.get_ready_tasks(swarm_id).unwrap_or([])
        if not ready:
            return waves
        wave = [task.issue_id for task in ready]
        for issue_id in wave:
            manager.update_task_state(swarm_id, issue_id, TaskState.MERGED)
        waves.append(wave)


def _render_report(report: DependencyReport) -> None:
    if report.cycles:
        lines = [" -> ".join([*cycle, cycle[0]]) for cycle in report.cycles]
        console.print(Panel("\n".join(lines), title="Dependency cycles", border_style="red"))
    if report.missing:
        lines = [f"{task}: {', '.join(deps)}" for task, deps in report.missing.items()]
        console.print(Panel("\n".join(lines), title="Missing dependencies", border_style="red"))


def plan(
    ctx: typer.Context,
    tasks_file: Path = typer.Argument(..., help="JSON or TOML file with task records."),
    workers: int = typer.Option(
        1, "--workers", "-n", min=1, help="Roster size used to estimate parallelism."
    ),
) -> None:
    """Show which tasks are ready now and the order the rest can land in."""
    state: AppState = ctx.obj
    match read_task_records(tasks_file.expanduser()):
        case Err(err):
            console.print(f"[red]{escape(str(err))}[/red]")
            raise typer.Exit(code=1)
        case Ok(records):
            pass

    manager = SwarmManager(Rig(name=state.config.swarm.default_rig, path=Path.cwd()))
    roster = [f"worker-{i + 1}" for i in range(workers)]
    manager.create(_PLAN_SWARM, roster, state.config.swarm.default_base_branch).unwrap()
    match manager.load_tasks(_PLAN_SWARM, records):
        case Err(err):
            console.print(f"[red]{escape(str(err))}[/red]")
            raise typer.Exit(code=1)
        case Ok(_):
            pass

    report = manager.check_dependencies(_PLAN_SWARM).unwrap()
    waves = landing_waves(manager, _PLAN_SWARM)
    wave_of = {issue_id: n for n, wave in enumerate(waves, start=1) for issue_id in wave}

    table = Table(title=f"Plan for {tasks_file.name}", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Task", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Depends on", style="white")
    table.add_column("Wave", style="green", justify="right")

    for record in records:
        wave = wave_of.get(record.issue_id)
        table.add_row(
            record.issue_id,
            record.title,
            ", ".join(record.dependencies) or "-",
            str(wave) if wave is not None else "[red]never[/red]",
        )
    console.print(table)

    # Each wave needs ceil(len / workers) rounds of assignment.
    rounds = sum(-(-len(wave) // workers) for wave in waves)
    console.print(
        f"{len(wave_of)}/{len(records)} task(s) can land in {len(waves)} wave(s), "
        f"about {rounds} round(s) with {workers} worker(s)."
    )

    _render_report(report)
    if not report.ok or len(wave_of) != len(records):
        raise typer.Exit(code=1)
