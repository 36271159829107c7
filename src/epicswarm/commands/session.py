"""Worker session commands.

Provides CLI commands that drive the session controller against real tmux
sessions:
    - spawn: start a worker session (optionally waiting for readiness)
    - ready: wait for a session's ready marker
    - nudge: type a line into a session
    - kill: two-phase process-group shutdown
    - list: show epicswarm sessions with their process groups
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import typer
from rich import box
from rich.markup import escape
from rich.table import Table

from epicswarm.core.console import console
from epicswarm.core.result import EpicSwarmError, Err, Ok, Result, SessionNotFoundError
from epicswarm.session.controller import SessionController
from epicswarm.session.signals import get_signaler, group_members
from epicswarm.session.tmux import Tmux, session_name_for
from epicswarm.session.types import ReadyOutcome, SessionStatus, TerminateOutcome

if TYPE_CHECKING:
    from epicswarm.main import AppState

T = TypeVar("T")

app = typer.Typer(help="Spawn, probe and terminate worker sessions.")


def _unwrap_result(result: Result[T, EpicSwarmError]) -> T:
    match result:
        case Ok(value):
            return value
        case Err(err):
            message = err.message if hasattr(err, "message") else str(err)
            console.print(f"[red]{message}[/red]")
            raise typer.Exit(code=1)


def _controller(ctx: typer.Context) -> SessionController:
    state: AppState = ctx.obj
    return SessionController(state.config.session)


def _rig(ctx: typer.Context, rig: str | None) -> str:
    state: AppState = ctx.obj
    return rig or state.config.swarm.default_rig


def _attach(controller: SessionController, rig: str, worker: str, status: SessionStatus) -> None:
    """Adopt the worker's running tmux session into a fresh controller."""
    match controller.adopt(rig, worker, status):
        case Ok(_):
            return
        case Err(SessionNotFoundError()):
            console.print(f"[red]No session for {worker} on {rig}.[/red]")
            raise typer.Exit(code=1)
        case Err(err):
            console.print(f"[red]{escape(str(err))}[/red]")
            raise typer.Exit(code=1)


@app.command("spawn")
def spawn(
    ctx: typer.Context,
    worker: str = typer.Argument(..., help="Worker name."),
    rig: str | None = typer.Option(None, "--rig", "-r", help="Rig name (defaults to swarm.default_rig)."),
    workdir: Path | None = typer.Option(None, "--workdir", "-d", help="Directory to start in."),
    command: str | None = typer.Option(None, "--command", help="Command to run in the session."),
    wait: bool = typer.Option(False, "--wait", "-w", help="Wait for the ready marker."),
    nudge: bool = typer.Option(False, "--nudge", help="Send the nudge text once ready."),
) -> None:
    """Start a worker session in its own process group."""
    controller = _controller(ctx)
    rig_name = _rig(ctx, rig)
    session = _unwrap_result(
        controller.spawn(rig_name, worker, workdir=workdir.expanduser() if workdir else None, command=command)
    )
    console.print(f"[green]spawned[/green] {session.session_name} (pgid {session.pgid})")

    if not (wait or nudge):
        return

    outcome = _unwrap_result(controller.wait_ready(rig_name, worker))
    if outcome is ReadyOutcome.TIMED_OUT:
        console.print(f"[yellow]{session.session_name} not ready yet; try again later.[/yellow]")
        raise typer.Exit(code=2)
    console.print(f"[green]ready[/green] {session.session_name}")

    if nudge:
        _unwrap_result(controller.nudge(rig_name, worker))
        console.print(f"[green]nudged[/green] {session.session_name}")


@app.command("ready")
def ready(
    ctx: typer.Context,
    worker: str = typer.Argument(..., help="Worker name."),
    rig: str | None = typer.Option(None, "--rig", "-r", help="Rig name (defaults to swarm.default_rig)."),
    timeout: float | None = typer.Option(None, "--timeout", "-t", help="Seconds to wait."),
) -> None:
    """Wait until a worker session shows its ready marker."""
    controller = _controller(ctx)
    rig_name = _rig(ctx, rig)
    _attach(controller, rig_name, worker, SessionStatus.SPAWNING)

    outcome = _unwrap_result(controller.wait_ready(rig_name, worker, timeout))
    if outcome is ReadyOutcome.TIMED_OUT:
        console.print(f"[yellow]timed out[/yellow] waiting for {worker}")
        raise typer.Exit(code=2)
    console.print(f"[green]ready[/green] {worker}")


@app.command("nudge")
def nudge_cmd(
    ctx: typer.Context,
    worker: str = typer.Argument(..., help="Worker name."),
    rig: str | None = typer.Option(None, "--rig", "-r", help="Rig name (defaults to swarm.default_rig)."),
    text: str | None = typer.Option(None, "--text", help="Line to send (defaults to session.nudge_text)."),
) -> None:
    """Type a line into a worker session."""
    controller = _controller(ctx)
    rig_name = _rig(ctx, rig)
    _attach(controller, rig_name, worker, SessionStatus.READY)
    _unwrap_result(controller.nudge(rig_name, worker, text))
    console.print(f"[green]nudged[/green] {worker}")


@app.command("kill")
def kill(
    ctx: typer.Context,
    worker: str = typer.Argument(..., help="Worker name."),
    rig: str | None = typer.Option(None, "--rig", "-r", help="Rig name (defaults to swarm.default_rig)."),
    grace: float | None = typer.Option(
        None, "--grace", "-g", help="Seconds between SIGTERM and SIGKILL."
    ),
) -> None:
    """Terminate a worker session's whole process group."""
    controller = _controller(ctx)
    rig_name = _rig(ctx, rig)
    _attach(controller, rig_name, worker, SessionStatus.READY)

    outcome = _unwrap_result(controller.terminate(rig_name, worker, grace))
    colors = {
        TerminateOutcome.TERMINATED: "green",
        TerminateOutcome.FORCE_TERMINATED: "yellow",
        TerminateOutcome.FAILED: "red",
        TerminateOutcome.UNSUPPORTED: "red",
    }
    color = colors[outcome]
    console.print(f"[{color}]{outcome.value}[/{color}] {worker}")
    if outcome in (TerminateOutcome.FAILED, TerminateOutcome.UNSUPPORTED):
        raise typer.Exit(code=1)


@app.command("list")
def list_sessions(ctx: typer.Context) -> None:
    """List epicswarm tmux sessions and their process groups."""
    state: AppState = ctx.obj
    tmux = Tmux.from_config(state.config.session)
    signaler = get_signaler()
    prefix = session_name_for(f"{state.config.session.session_prefix}-")

    names = [name for name in _unwrap_result(tmux.list_sessions()) if name.startswith(prefix)]
    if not names:
        console.print("[yellow]No worker sessions running.[/yellow]")
        return

    table = Table(title="Worker sessions", box=box.SIMPLE_HEAVY, expand=True)
    table.add_column("Session", style="cyan", no_wrap=True)
    table.add_column("PGID", style="white")
    table.add_column("Processes", style="white")

    for name in names:
        pgid: int | None = None
        match tmux.pane_pid(name):
            case Ok(pid):
                pgid = signaler.group_of(pid)
            case Err(_):
                pass
        members = len(group_members(pgid)) if pgid is not None else 0
        table.add_row(name, str(pgid) if pgid is not None else "-", str(members))

    console.print(table)
