"""Dispatch: the glue between the swarm manager and the session controller.

Each step is a separate, separately-locked manager call followed by a
controller call made outside any manager lock. A spawn failure is reported
on the assignment; the task stays ASSIGNED and the driver decides whether to
retry the spawn or rebuild the task.
"""

from __future__ import annotations

from dataclasses import dataclass

from epicswarm.core.console import get_logger
from epicswarm.core.result import (
    AlreadyExistsError,
    EpicSwarmError,
    Err,
    InvalidTransitionError,
    Ok,
    Result,
)
from epicswarm.session.controller import SessionController
from epicswarm.session.types import TerminateOutcome, WorkerSession
from epicswarm.swarm.manager import SwarmManager
from epicswarm.swarm.types import SwarmState, TaskState

logger = get_logger(__name__)


@dataclass
class Assignment:
    """One task handed to one worker during a dispatch round.

    Attributes:
        issue_id: Task that was assigned
        worker: Worker it went to
        session: The worker's session, if one is running
        error: Why the session could not be started, if it could not
    """

    issue_id: str
    worker: str
    session: WorkerSession | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SwarmDispatcher:
    """Hands ready tasks to idle workers and manages their sessions."""

    def __init__(self, manager: SwarmManager, controller: SessionController) -> None:
        self.manager = manager
        self.controller = controller

    @property
    def rig(self) -> str:
        return self.manager.rig.name

    def _ensure_session(self, worker: str) -> tuple[WorkerSession | None, str | None]:
        spawned = self.controller.spawn(
            self.rig, worker, workdir=self.manager.rig.worker_dir(worker)
        )
        if isinstance(spawned, Ok):
            return spawned.value, None
        if isinstance(spawned.error, AlreadyExistsError):
            # Worker kept its session from an earlier task.
            existing = self.controller.get_session(self.rig, worker)
            if isinstance(existing, Ok):
                return existing.value, None
        return None, str(spawned.error)

    def dispatch(self, swarm_id: str) -> Result[list[Assignment], EpicSwarmError]:
        """Assign every ready task that has an idle worker, then spawn sessions.

        Tasks and workers are paired in order: first ready task to first
        idle worker.
        """
        match self.manager.get_swarm(swarm_id):
            case Err() as err:
                return err
            case Ok(swarm):
                pass
        if swarm.state is not SwarmState.ACTIVE:
            return Err(
                InvalidTransitionError(
                    f"Swarm is {swarm.state.value}; only active swarms take new work",
                    context={"swarm": swarm_id},
                )
            )

        ready = self.manager.get_ready_tasks(swarm_id).unwrap_or([])
        idle = self.manager.idle_workers(swarm_id).unwrap_or([])

        assignments: list[Assignment] = []
        for task, worker in zip(ready, idle):
            assigned = self.manager.assign_task(swarm_id, task.issue_id, worker)
            if isinstance(assigned, Err):
                # Another driver got there first.
                logger.info("Skipping %s: %s", task.issue_id, assigned.error)
                continue

            session, error = self._ensure_session(worker)
            if error:
                logger.error("Assigned %s to %s but no session is running: %s", task.issue_id, worker, error)
            assignments.append(Assignment(task.issue_id, worker, session=session, error=error))

        return Ok(assignments)

    def land(
        self, swarm_id: str, issue_id: str, grace_period: float | None = None
    ) -> Result[TerminateOutcome | None, EpicSwarmError]:
        """Record a task's merge and tear down its worker's session.

        Returns Ok(None) when the assignee had no tracked session, or when
        the task had already merged; by then the worker may hold new work.
        """
        match self.manager.get_task(swarm_id, issue_id):
            case Err() as err:
                return err
            case Ok(task):
                pass

        if task.state is TaskState.MERGED:
            logger.info("Task %s already merged; leaving %s running", issue_id, task.assignee or "-")
            return Ok(None)

        merged = self.manager.update_task_state(swarm_id, issue_id, TaskState.MERGED)
        if isinstance(merged, Err):
            return merged

        if not task.assignee:
            return Ok(None)

        terminated = self.controller.terminate(self.rig, task.assignee, grace_period)
        if isinstance(terminated, Err):
            # SessionNotFoundError is the only failure terminate reports.
            logger.info("No session to stop for %s after merging %s", task.assignee, issue_id)
            return Ok(None)
        return Ok(terminated.value)


__all__ = ["Assignment", "SwarmDispatcher"]
