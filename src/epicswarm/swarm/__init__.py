"""Swarm manager and task state machine.

A swarm is one epic-level run: a fixed worker roster, a base branch, and the
epic's decomposed tasks. The manager owns the table of swarms; drivers call
it to find ready work, assign it, and record merges.

Key classes:
- SwarmManager: lock-guarded swarm/task table
- SwarmDispatcher: pairs ready tasks with idle workers and spawns sessions
- Swarm, SwarmTask, TaskRecord: data model
"""

from epicswarm.swarm.dispatch import Assignment, SwarmDispatcher
from epicswarm.swarm.manager import SwarmManager
from epicswarm.swarm.types import (
    DependencyReport,
    Swarm,
    SwarmState,
    SwarmTask,
    TaskRecord,
    TaskState,
)

__all__ = [
    "Assignment",
    "DependencyReport",
    "Swarm",
    "SwarmDispatcher",
    "SwarmManager",
    "SwarmState",
    "SwarmTask",
    "TaskRecord",
    "TaskState",
]
