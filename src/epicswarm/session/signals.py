"""Process-group signaling behind a small capability interface.

Worker sessions run each agent in its own process group so that the agent
and every subprocess it starts can be signaled together. Signals are always
addressed to the negated group id; the leader pid alone is never signaled.

On platforms without POSIX process groups the ``UnsupportedSignaler``
answers ``SignalOutcome.UNSUPPORTED`` for every request instead of
pretending a signal was delivered.
"""

from __future__ import annotations

import os
import signal
from enum import Enum
from typing import Protocol

import psutil

from epicswarm.core.console import get_logger

logger = get_logger(__name__)


class SignalOutcome(Enum):
    SENT = "sent"
    NO_SUCH_GROUP = "no_such_group"  # every member already exited
    DENIED = "denied"
    UNSUPPORTED = "unsupported"


class ProcessGroupSignaler(Protocol):
    supported: bool

    def terminate(self, pgid: int) -> SignalOutcome: ...

    def kill(self, pgid: int) -> SignalOutcome: ...

    def is_alive(self, pgid: int) -> bool: ...

    def group_of(self, pid: int) -> int | None: ...


class PosixSignaler:
    """Deliver SIGTERM/SIGKILL to whole process groups via ``kill(-pgid, sig)``."""

    supported = True

    def _send(self, pgid: int, sig: int) -> SignalOutcome:
        if pgid <= 1:
            # kill(0) / kill(-1) would hit our own group or every process.
            logger.error("Refusing to signal process group %s", pgid)
            return SignalOutcome.DENIED
        try:
            os.kill(-pgid, sig)
        except ProcessLookupError:
            return SignalOutcome.NO_SUCH_GROUP
        except PermissionError:
            logger.warning("Permission denied signaling process group %s", pgid)
            return SignalOutcome.DENIED
        return SignalOutcome.SENT

    def terminate(self, pgid: int) -> SignalOutcome:
        return self._send(pgid, signal.SIGTERM)

    def kill(self, pgid: int) -> SignalOutcome:
        return self._send(pgid, signal.SIGKILL)

    def is_alive(self, pgid: int) -> bool:
        """True while any process remains in the group."""
        if pgid <= 1:
            return False
        try:
            os.kill(-pgid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Members exist but belong to someone else.
            return True
        return True

    def group_of(self, pid: int) -> int | None:
        try:
            return os.getpgid(pid)
        except ProcessLookupError:
            return None


class UnsupportedSignaler:
    """Stand-in for platforms without process groups; never reports success."""

    supported = False

    def terminate(self, pgid: int) -> SignalOutcome:
        return SignalOutcome.UNSUPPORTED

    def kill(self, pgid: int) -> SignalOutcome:
        return SignalOutcome.UNSUPPORTED

    def is_alive(self, pgid: int) -> bool:
        # Without group signaling we can still see whether the leader exists.
        return psutil.pid_exists(pgid)

    def group_of(self, pid: int) -> int | None:
        # No groups: the leader pid stands in for the group id.
        return pid if psutil.pid_exists(pid) else None


def group_members(pgid: int) -> list[psutil.Process]:
    """List live processes whose group id is ``pgid``.

    Used for diagnostics; signaling never depends on this enumeration.
    """
    if not hasattr(os, "getpgid"):
        return []
    members: list[psutil.Process] = []
    for proc in psutil.process_iter(["pid", "name"]):
        try:
            if os.getpgid(proc.pid) == pgid:
                members.append(proc)
        except (ProcessLookupError, PermissionError, psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return members


def get_signaler() -> ProcessGroupSignaler:
    """Pick the signaler for the running platform."""
    if hasattr(os, "killpg") and hasattr(signal, "SIGKILL"):
        return PosixSignaler()
    return UnsupportedSignaler()


__all__ = [
    "PosixSignaler",
    "ProcessGroupSignaler",
    "SignalOutcome",
    "UnsupportedSignaler",
    "get_signaler",
    "group_members",
]
