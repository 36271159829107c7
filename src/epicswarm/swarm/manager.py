"""Swarm manager: the authoritative table of swarms and their tasks.

The manager is a plain in-process object. Drivers construct one per rig and
pass it to whatever needs it; there is no module-level instance.

Concurrency:
    A single ``threading.Lock`` guards the table. Every public method holds
    it for its whole read-modify-write, so callers observe a linearizable
    history. Nothing inside the lock calls out to sessions, git or the issue
    tracker.

Failure model:
    Methods return ``Result`` values. Validation runs before any field is
    written, so an ``Err`` always means the table is unchanged.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from epicswarm.core.console import get_logger
from epicswarm.core.result import (
    AlreadyExistsError,
    Err,
    InvalidTaskStateError,
    InvalidTransitionError,
    Ok,
    Result,
    SwarmNotFoundError,
    TaskNotFoundError,
    ValidationError,
)
from epicswarm.core.rig import Rig
from epicswarm.swarm.dependencies import analyze_dependencies
from epicswarm.swarm.transitions import can_advance_task, can_transition
from epicswarm.swarm.types import (
    DependencyReport,
    Swarm,
    SwarmState,
    SwarmTask,
    TaskRecord,
    TaskState,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SwarmManager:
    """Owns swarm lifecycle and per-task assignment for one rig.

    Attributes:
        rig: The rig every swarm in this manager works against
    """

    def __init__(self, rig: Rig, *, clock: Callable[[], datetime] | None = None) -> None:
        self.rig = rig
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._swarms: dict[str, Swarm] = {}

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _lookup(self, swarm_id: str) -> Result[Swarm, SwarmNotFoundError]:
        swarm = self._swarms.get(swarm_id)
        if swarm is None:
            return Err(SwarmNotFoundError("Swarm not found", context={"swarm": swarm_id}))
        return Ok(swarm)

    def _lookup_task(
        self, swarm_id: str, issue_id: str
    ) -> Result[tuple[Swarm, SwarmTask], SwarmNotFoundError | TaskNotFoundError]:
        match self._lookup(swarm_id):
            case Err() as err:
                return err
            case Ok(swarm):
                pass
        task = swarm.find_task(issue_id)
        if task is None:
            return Err(
                TaskNotFoundError(
                    "Task not found in swarm", context={"swarm": swarm_id, "task": issue_id}
                )
            )
        return Ok((swarm, task))

    def _transition(
        self, swarm_id: str, target: SwarmState, *, reason: str | None = None
    ) -> Result[Swarm, SwarmNotFoundError | InvalidTransitionError]:
        match self._lookup(swarm_id):
            case Err() as err:
                return err
            case Ok(swarm):
                pass

        current = swarm.state
        if not can_transition(current, target):
            logger.debug("Rejected swarm %s transition %s -> %s", swarm_id, current.value, target.value)
            return Err(
                InvalidTransitionError(
                    f"Cannot transition swarm from {current.value} to {target.value}",
                    context={"swarm": swarm_id, "from": current.value, "to": target.value},
                )
            )

        swarm.state = target
        if reason is not None:
            swarm.error = reason
        logger.info("Swarm %s: %s -> %s", swarm_id, current.value, target.value)
        return Ok(swarm.snapshot())

    # ------------------------------------------------------------------
    # Swarm lifecycle
    # ------------------------------------------------------------------

    def create(
        self, swarm_id: str, workers: Iterable[str], base_branch: str
    ) -> Result[Swarm, AlreadyExistsError | ValidationError]:
        """Register a new swarm in the CREATED state with no tasks.

        Args:
            swarm_id: Caller-assigned id, unique within this manager
            workers: Worker roster (at least one name), fixed for the swarm's life
            base_branch: Branch task branches merge into

        Returns:
            Ok(snapshot) or Err(AlreadyExistsError | ValidationError)
        """
        roster = list(workers)
        if not swarm_id:
            return Err(ValidationError("Swarm id must not be empty"))
        if not roster:
            return Err(ValidationError("Swarm needs at least one worker", context={"swarm": swarm_id}))
        if not base_branch:
            return Err(ValidationError("Base branch must not be empty", context={"swarm": swarm_id}))

        with self._lock:
            if swarm_id in self._swarms:
                return Err(AlreadyExistsError("Swarm already exists", context={"swarm": swarm_id}))
            swarm = Swarm(
                id=swarm_id,
                rig=self.rig.name,
                base_branch=base_branch,
                workers=roster,
                created_at=self._clock(),
            )
            self._swarms[swarm_id] = swarm
            logger.info(
                "Created swarm %s on %s (workers: %s, base: %s)",
                swarm_id,
                self.rig.name,
                ", ".join(roster),
                base_branch,
            )
            return Ok(swarm.snapshot())

    def get_swarm(self, swarm_id: str) -> Result[Swarm, SwarmNotFoundError]:
        """Return a snapshot of the swarm."""
        with self._lock:
            return self._lookup(swarm_id).map(Swarm.snapshot)

    def list_swarms(self) -> list[Swarm]:
        """Snapshots of every swarm in creation order."""
        with self._lock:
            return [swarm.snapshot() for swarm in self._swarms.values()]

    def start(self, swarm_id: str) -> Result[Swarm, SwarmNotFoundError | InvalidTransitionError]:
        """Move a CREATED swarm to ACTIVE."""
        with self._lock:
            return self._transition(swarm_id, SwarmState.ACTIVE)

    def update_state(
        self, swarm_id: str, next_state: SwarmState
    ) -> Result[Swarm, SwarmNotFoundError | InvalidTransitionError]:
        """Move the swarm along one legal edge of the transition table."""
        with self._lock:
            return self._transition(swarm_id, next_state)

    def cancel(
        self, swarm_id: str, reason: str
    ) -> Result[Swarm, SwarmNotFoundError | InvalidTransitionError]:
        """Mark a non-terminal swarm CANCELLED and record why.

        Only the record changes. Sessions keep running until the driver asks
        the session controller to terminate them.
        """
        with self._lock:
            return self._transition(swarm_id, SwarmState.CANCELLED, reason=reason)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def load_tasks(
        self, swarm_id: str, records: Iterable[TaskRecord]
    ) -> Result[list[SwarmTask], SwarmNotFoundError | AlreadyExistsError | InvalidTransitionError]:
        """Append issue-tracker records to the swarm as PENDING tasks.

        The whole batch is rejected if any issue id is already present or
        repeated within the batch, or if the swarm has reached a terminal
        state.
        """
        batch = list(records)
        with self._lock:
            match self._lookup(swarm_id):
                case Err() as err:
                    return err
                case Ok(swarm):
                    pass

            if swarm.state.is_terminal:
                return Err(
                    InvalidTransitionError(
                        "Cannot load tasks into a finished swarm",
                        context={"swarm": swarm_id, "state": swarm.state.value},
                    )
                )

            seen = {task.issue_id for task in swarm.tasks}
            for record in batch:
                if record.issue_id in seen:
                    return Err(
                        AlreadyExistsError(
                            "Task already exists in swarm",
                            context={"swarm": swarm_id, "task": record.issue_id},
                        )
                    )
                seen.add(record.issue_id)

            new_tasks = [SwarmTask.from_record(record) for record in batch]
            swarm.tasks.extend(new_tasks)
            logger.info("Loaded %d task(s) into swarm %s", len(new_tasks), swarm_id)
            return Ok([task.model_copy(deep=True) for task in new_tasks])

    def get_task(
        self, swarm_id: str, issue_id: str
    ) -> Result[SwarmTask, SwarmNotFoundError | TaskNotFoundError]:
        with self._lock:
            return self._lookup_task(swarm_id, issue_id).map(
                lambda pair: pair[1].model_copy(deep=True)
            )

    def get_ready_tasks(self, swarm_id: str) -> Result[list[SwarmTask], SwarmNotFoundError]:
        """Return PENDING tasks whose dependencies have all merged.

        Tasks keep their load order. A dependency naming no task in the swarm
        is never satisfied.
        """
        with self._lock:
            match self._lookup(swarm_id):
                case Err() as err:
                    return err
                case Ok(swarm):
                    pass

            merged = {task.issue_id for task in swarm.tasks if task.state is TaskState.MERGED}
            ready = [
                task.model_copy(deep=True)
                for task in swarm.tasks
                if task.state is TaskState.PENDING
                and all(dep in merged for dep in task.dependencies)
            ]
            return Ok(ready)

    def assign_task(
        self, swarm_id: str, issue_id: str, assignee: str
    ) -> Result[
        SwarmTask,
        SwarmNotFoundError | TaskNotFoundError | InvalidTaskStateError | ValidationError,
    ]:
        """Bind a PENDING task to a worker and mark it ASSIGNED.

        The assignee is not required to be on the swarm's roster; a stranger
        is accepted and logged.
        """
        if not assignee:
            return Err(
                ValidationError(
                    "Assignee must not be empty", context={"swarm": swarm_id, "task": issue_id}
                )
            )

        with self._lock:
            match self._lookup_task(swarm_id, issue_id):
                case Err() as err:
                    return err
                case Ok((swarm, task)):
                    pass

            if task.state is not TaskState.PENDING:
                return Err(
                    InvalidTaskStateError(
                        f"Task is {task.state.value}, expected pending",
                        context={
                            "swarm": swarm_id,
                            "task": issue_id,
                            "assignee": task.assignee or "-",
                        },
                    )
                )

            if assignee not in swarm.workers:
                logger.warning(
                    "Assigning %s in swarm %s to %s, who is not on the roster",
                    issue_id,
                    swarm_id,
                    assignee,
                )

            task.assignee = assignee
            task.state = TaskState.ASSIGNED
            if task.assigned_at is None:
                task.assigned_at = self._clock()
            logger.info("Swarm %s: assigned %s to %s", swarm_id, issue_id, assignee)
            return Ok(task.model_copy(deep=True))

    def update_task_state(
        self, swarm_id: str, issue_id: str, next_state: TaskState
    ) -> Result[SwarmTask, SwarmNotFoundError | TaskNotFoundError | InvalidTaskStateError]:
        """Advance a task's state.

        Re-requesting the current state is a no-op. Moving backwards is
        rejected. The first move to MERGED stamps ``merged_at``.
        """
        with self._lock:
            match self._lookup_task(swarm_id, issue_id):
                case Err() as err:
                    return err
                case Ok((_, task)):
                    pass

            current = task.state
            if current is next_state:
                return Ok(task.model_copy(deep=True))

            if not can_advance_task(current, next_state):
                return Err(
                    InvalidTaskStateError(
                        f"Cannot move task from {current.value} to {next_state.value}",
                        context={"swarm": swarm_id, "task": issue_id},
                    )
                )

            now = self._clock()
            task.state = next_state
            if next_state is TaskState.ASSIGNED and task.assigned_at is None:
                task.assigned_at = now
            if next_state is TaskState.MERGED and task.merged_at is None:
                task.merged_at = now
            logger.info("Swarm %s: task %s %s -> %s", swarm_id, issue_id, current.value, next_state.value)
            return Ok(task.model_copy(deep=True))

    def is_complete(self, swarm_id: str) -> Result[bool, SwarmNotFoundError]:
        """True iff the swarm has tasks and every one of them has merged."""
        with self._lock:
            return self._lookup(swarm_id).map(
                lambda swarm: bool(swarm.tasks)
                and all(task.state is TaskState.MERGED for task in swarm.tasks)
            )

    # ------------------------------------------------------------------
    # Driver helpers
    # ------------------------------------------------------------------

    def idle_workers(self, swarm_id: str) -> Result[list[str], SwarmNotFoundError]:
        """Roster members that currently hold no ASSIGNED task."""
        with self._lock:
            match self._lookup(swarm_id):
                case Err() as err:
                    return err
                case Ok(swarm):
                    pass
            busy = {t.assignee for t in swarm.tasks if t.state is TaskState.ASSIGNED}
            return Ok([w for w in swarm.workers if w not in busy])

    def check_dependencies(self, swarm_id: str) -> Result[DependencyReport, SwarmNotFoundError]:
        """Report dependency cycles and dangling dependency ids."""
        with self._lock:
            return self._lookup(swarm_id).map(lambda swarm: analyze_dependencies(swarm.tasks))


__all__ = ["SwarmManager"]
