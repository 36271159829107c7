"""Worker session controller.

Each worker runs in a detached tmux session whose pane leader heads its own
process group. The controller spawns those sessions, polls them for
readiness, and tears them down with SIGTERM then SIGKILL addressed to the
whole group.

Key classes:
- SessionController: spawn / wait_ready / terminate by (rig, worker) key
- ProcessGroupSignaler: platform capability for group signaling
- Tmux: subprocess-backed tmux wrapper
"""

from epicswarm.session.controller import SessionController
from epicswarm.session.signals import (
    PosixSignaler,
    ProcessGroupSignaler,
    SignalOutcome,
    UnsupportedSignaler,
    get_signaler,
)
from epicswarm.session.tmux import Tmux, TmuxBackend
from epicswarm.session.types import (
    ReadyOutcome,
    SessionKey,
    SessionStatus,
    TerminateOutcome,
    WorkerSession,
)

__all__ = [
    "PosixSignaler",
    "ProcessGroupSignaler",
    "ReadyOutcome",
    "SessionController",
    "SessionKey",
    "SessionStatus",
    "SignalOutcome",
    "TerminateOutcome",
    "Tmux",
    "TmuxBackend",
    "UnsupportedSignaler",
    "WorkerSession",
    "get_signaler",
]
