"""Data types for worker sessions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class SessionStatus(Enum):
    """Lifecycle of the OS session backing one worker."""

    SPAWNING = "spawning"
    READY = "ready"
    WORKING = "working"
    IDLE = "idle"
    ERROR = "error"
    PENDING_SHUTDOWN = "pending_shutdown"
    TERMINATED = "terminated"


class ReadyOutcome(Enum):
    READY = "ready"
    TIMED_OUT = "timed_out"


class TerminateOutcome(Enum):
    """How a two-phase shutdown ended.

    UNSUPPORTED means no signal was sent at all; it is never a clean kill.
    """

    TERMINATED = "terminated"  # group exited within the grace period
    FORCE_TERMINATED = "force_terminated"  # SIGKILL was needed
    FAILED = "failed"  # a signal could not be delivered
    UNSUPPORTED = "unsupported"  # platform has no process groups


@dataclass(frozen=True, slots=True)
class SessionKey:
    rig: str
    worker: str

    def __str__(self) -> str:
        return f"{self.rig}/{self.worker}"


@dataclass(slots=True)
class WorkerSession:
    """A worker's tmux session as tracked by the controller.

    Attributes:
        key: (rig, worker) identity
        session_name: tmux session name
        pgid: Process group of the pane's leader process
        status: Current lifecycle status
        last_activity: Last time the controller saw or caused activity
    """

    key: SessionKey
    session_name: str
    pgid: int
    status: SessionStatus
    last_activity: datetime

    def snapshot(self) -> WorkerSession:
        return replace(self)


__all__ = [
    "ReadyOutcome",
    "SessionKey",
    "SessionStatus",
    "TerminateOutcome",
    "WorkerSession",
]
