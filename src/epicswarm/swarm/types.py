"""Data types for swarm orchestration.

Key classes:
- SwarmState / TaskState: closed lifecycle enumerations
- TaskRecord: a task definition as supplied by the issue tracker
- SwarmTask: one task tracked inside a swarm
- Swarm: one epic-level orchestration run
- DependencyReport: result of dependency diagnostics
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SwarmState(Enum):
    """Lifecycle state of a swarm."""

    CREATED = "created"
    ACTIVE = "active"
    MERGING = "merging"
    LANDED = "landed"  # terminal
    CANCELLED = "cancelled"  # terminal

    @property
    def is_terminal(self) -> bool:
        return self in (SwarmState.LANDED, SwarmState.CANCELLED)


class TaskState(Enum):
    """Lifecycle state of a task within a swarm."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    MERGED = "merged"


def _dedupe(ids: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


class TaskRecord(BaseModel):
    """Task definition loaded from the issue tracker.

    Attributes:
        issue_id: Tracker id, unique within a swarm
        title: Human-readable summary
        dependencies: Issue ids that must merge before this task is ready
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issue_id: str = Field(..., min_length=1)
    title: str = ""
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("dependencies", mode="after")
    @classmethod
    def unique_dependencies(cls, v: list[str]) -> list[str]:
        return _dedupe(v)


class SwarmTask(BaseModel):
    """A task tracked by the swarm manager.

    ``assigned_at`` and ``merged_at`` are written once and never rewritten.
    """

    model_config = ConfigDict(extra="forbid")

    issue_id: str
    title: str = ""
    state: TaskState = TaskState.PENDING
    assignee: str = ""
    dependencies: list[str] = Field(default_factory=list)
    assigned_at: datetime | None = None
    merged_at: datetime | None = None

    @field_validator("dependencies", mode="after")
    @classmethod
    def unique_dependencies(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @classmethod
    def from_record(cls, record: TaskRecord) -> SwarmTask:
        return cls(
            issue_id=record.issue_id,
            title=record.title,
            dependencies=list(record.dependencies),
        )


class Swarm(BaseModel):
    """One epic-level orchestration run.

    Instances returned by the manager are snapshots; mutating them has no
    effect on the manager's table.

    Attributes:
        id: Caller-assigned unique id (usually the epic's issue id)
        rig: Name of the rig the swarm works against
        state: Current lifecycle state
        base_branch: Merge target, fixed at creation
        workers: Worker roster, fixed at creation
        tasks: Tasks in load order
        error: Cancellation reason, empty unless cancelled
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    rig: str = ""
    state: SwarmState = SwarmState.CREATED
    base_branch: str
    workers: list[str] = Field(default_factory=list)
    tasks: list[SwarmTask] = Field(default_factory=list)
    error: str = ""
    created_at: datetime | None = None

    def find_task(self, issue_id: str) -> SwarmTask | None:
        for task in self.tasks:
            if task.issue_id == issue_id:
                return task
        return None

    def snapshot(self) -> Swarm:
        return self.model_copy(deep=True)


class DependencyReport(BaseModel):
    """Dependency diagnostics for a swarm's tasks.

    Attributes:
        cycles: Each cycle as the ordered issue ids along it
        missing: Task id -> dependency ids that name no task in the swarm
    """

    cycles: list[list[str]] = Field(default_factory=list)
    missing: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.cycles and not self.missing


__all__ = [
    "DependencyReport",
    "Swarm",
    "SwarmState",
    "SwarmTask",
    "TaskRecord",
    "TaskState",
]
