"""Table-driven transition checks for swarms and tasks.

Every state change in the manager goes through one of these lookups, so an
edge missing from the table can never be taken.
"""

from __future__ import annotations

from epicswarm.swarm.types import SwarmState, TaskState

SWARM_TRANSITIONS: dict[SwarmState, frozenset[SwarmState]] = {
    SwarmState.CREATED: frozenset({SwarmState.ACTIVE, SwarmState.CANCELLED}),
    SwarmState.ACTIVE: frozenset({SwarmState.MERGING, SwarmState.CANCELLED}),
    SwarmState.MERGING: frozenset({SwarmState.LANDED, SwarmState.CANCELLED}),
    SwarmState.LANDED: frozenset(),
    SwarmState.CANCELLED: frozenset(),
}

# Forward-only; resetting ASSIGNED to PENDING is a caller-level retry.
TASK_TRANSITIONS: dict[TaskState, frozenset[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.ASSIGNED, TaskState.MERGED}),
    TaskState.ASSIGNED: frozenset({TaskState.MERGED}),
    TaskState.MERGED: frozenset(),
}


def can_transition(current: SwarmState, target: SwarmState) -> bool:
    """Return True if the swarm edge ``current -> target`` is legal."""
    return target in SWARM_TRANSITIONS[current]


def can_advance_task(current: TaskState, target: TaskState) -> bool:
    """Return True if a task may move from ``current`` to ``target``."""
    return target in TASK_TRANSITIONS[current]


__all__ = [
    "SWARM_TRANSITIONS",
    "TASK_TRANSITIONS",
    "can_advance_task",
    "can_transition",
]
