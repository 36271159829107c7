"""Worker session controller.

Binds each worker to one detached tmux session whose pane leader heads its
own process group, so the agent and everything it spawns can be torn down
as a unit.

Sessions are keyed by ``(rig, worker)``. Callers never hold a session
object that the controller mutates; every accessor returns a copy.

Concurrency:
    ``self._lock`` guards the session table only. It is released before any
    tmux call, readiness poll or grace-period wait, so a slow shutdown of one
    worker never blocks lookups for another.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from epicswarm.core.config import SessionConfig
from epicswarm.core.console import get_logger
from epicswarm.core.result import (
    AlreadyExistsError,
    Err,
    InvalidTransitionError,
    Ok,
    Result,
    SessionError,
    SessionNotFoundError,
)
from epicswarm.session.signals import ProcessGroupSignaler, SignalOutcome, get_signaler, group_members
from epicswarm.session.tmux import Tmux, TmuxBackend, session_name_for
from epicswarm.session.types import (
    ReadyOutcome,
    SessionKey,
    SessionStatus,
    TerminateOutcome,
    WorkerSession,
)

logger = get_logger(__name__)

STATUS_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.SPAWNING: frozenset(
        {SessionStatus.READY, SessionStatus.ERROR, SessionStatus.TERMINATED}
    ),
    SessionStatus.READY: frozenset(
        {
            SessionStatus.WORKING,
            SessionStatus.IDLE,
            SessionStatus.ERROR,
            SessionStatus.PENDING_SHUTDOWN,
            SessionStatus.TERMINATED,
        }
    ),
    SessionStatus.WORKING: frozenset(
        {
            SessionStatus.IDLE,
            SessionStatus.ERROR,
            SessionStatus.PENDING_SHUTDOWN,
            SessionStatus.TERMINATED,
        }
    ),
    SessionStatus.IDLE: frozenset(
        {
            SessionStatus.WORKING,
            SessionStatus.ERROR,
            SessionStatus.PENDING_SHUTDOWN,
            SessionStatus.TERMINATED,
        }
    ),
    SessionStatus.ERROR: frozenset({SessionStatus.PENDING_SHUTDOWN, SessionStatus.TERMINATED}),
    SessionStatus.PENDING_SHUTDOWN: frozenset({SessionStatus.TERMINATED}),
    SessionStatus.TERMINATED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionController:
    """Spawn, probe and tear down worker sessions.

    Args:
        config: Session settings (tmux, ready marker, timeouts)
        tmux: tmux backend; defaults to the real binary
        signaler: Process-group capability; defaults to the platform's
        clock: Monotonic clock used for timeouts
        sleep: Sleep function used between polls
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        tmux: TmuxBackend | None = None,
        signaler: ProcessGroupSignaler | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or SessionConfig()
        self._tmux: TmuxBackend = tmux or Tmux.from_config(self.config)
        self._signaler: ProcessGroupSignaler = signaler or get_signaler()
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._sessions: dict[SessionKey, WorkerSession] = {}

    # ------------------------------------------------------------------
    # Table helpers
    # ------------------------------------------------------------------

    def session_name(self, rig: str, worker: str) -> str:
        return session_name_for(f"{self.config.session_prefix}-{rig}-{worker}")

    def _get(self, key: SessionKey) -> Result[WorkerSession, SessionNotFoundError]:
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return Err(SessionNotFoundError("No session for worker", context={"session": str(key)}))
            return Ok(session.snapshot())

    def _set_status(self, key: SessionKey, status: SessionStatus) -> None:
        with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                session.status = status
                session.last_activity = _utcnow()

    def _promote(self, key: SessionKey, expected: SessionStatus, status: SessionStatus) -> bool:
        """Move to ``status`` only if the session is still ``expected``."""
        with self._lock:
            session = self._sessions.get(key)
            if session is None or session.status is not expected:
                return False
            session.status = status
            session.last_activity = _utcnow()
            return True

    def get_session(self, rig: str, worker: str) -> Result[WorkerSession, SessionNotFoundError]:
        return self._get(SessionKey(rig, worker))

    def list_sessions(self) -> list[WorkerSession]:
        with self._lock:
            return [session.snapshot() for session in self._sessions.values()]

    def is_alive(self, rig: str, worker: str) -> Result[bool, SessionNotFoundError]:
        return self._get(SessionKey(rig, worker)).map(
            lambda session: self._signaler.is_alive(session.pgid)
        )

    # ------------------------------------------------------------------
    # Spawn / adopt
    # ------------------------------------------------------------------

    def _register(
        self, key: SessionKey, name: str, pid: int, status: SessionStatus
    ) -> Result[WorkerSession, AlreadyExistsError | SessionError]:
        pgid = self._signaler.group_of(pid)
        if pgid is None:
            return Err(
                SessionError("Pane process exited before it could be tracked", context={"session": name, "pid": pid})
            )

        session = WorkerSession(
            key=key,
            session_name=name,
            pgid=pgid,
            status=status,
            last_activity=_utcnow(),
        )
        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None and existing.status is not SessionStatus.TERMINATED:
                return Err(AlreadyExistsError("Worker already has a live session", context={"session": str(key)}))
            self._sessions[key] = session
        return Ok(session.snapshot())

    def spawn(
        self,
        rig: str,
        worker: str,
        *,
        workdir: Path | None = None,
        command: str | None = None,
    ) -> Result[WorkerSession, AlreadyExistsError | SessionError]:
        """Start a detached tmux session for the worker.

        Args:
            rig: Rig name
            worker: Worker name
            workdir: Directory the session starts in (defaults to cwd)
            command: Command run in the pane (defaults to config.agent_command)

        Returns:
            Ok(session) with status SPAWNING, or Err if the key is already
            live or tmux fails.
        """
        key = SessionKey(rig, worker)
        name = self.session_name(rig, worker)

        with self._lock:
            existing = self._sessions.get(key)
            if existing is not None and existing.status is not SessionStatus.TERMINATED:
                return Err(AlreadyExistsError("Worker already has a live session", context={"session": str(key)}))

        if self._tmux.has_session(name):
            return Err(
                AlreadyExistsError("tmux session already exists; adopt it instead", context={"session": name})
            )

        started = self._tmux.new_session(name, workdir or Path.cwd(), command or self.config.agent_command)
        if isinstance(started, Err):
            logger.error("Failed to spawn %s: %s", key, started.error)
            return started

        match self._tmux.pane_pid(name):
            case Err() as err:
                logger.error("Spawned %s but could not read its pane pid: %s", key, err.error)
                self._tmux.kill_session(name)
                return err
            case Ok(pid):
                pass

        registered = self._register(key, name, pid, SessionStatus.SPAWNING)
        match registered:
            case Ok(session):
                logger.info("Spawned session %s for %s (pgid %s)", name, key, session.pgid)
            case Err(err):
                # A concurrent spawn for the same key registered first; the
                # tmux name is theirs now.
                logger.warning("Lost spawn race for %s: %s", name, err)
        return registered

    def adopt(
        self, rig: str, worker: str, status: SessionStatus = SessionStatus.READY
    ) -> Result[WorkerSession, AlreadyExistsError | SessionError | SessionNotFoundError]:
        """Track a tmux session that was started outside this controller."""
        key = SessionKey(rig, worker)
        name = self.session_name(rig, worker)
        if not self._tmux.has_session(name):
            return Err(SessionNotFoundError("No tmux session to adopt", context={"session": name}))
        match self._tmux.pane_pid(name):
            case Err() as err:
                return err
            case Ok(pid):
                pass
        registered = self._register(key, name, pid, status)
        if isinstance(registered, Ok):
            logger.info("Adopted session %s for %s", name, key)
        return registered

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    def _pane_is_ready(self, text: str) -> bool:
        marker = self.config.ready_marker
        return any(marker in line for line in text.splitlines())

    def wait_ready(
        self, rig: str, worker: str, timeout: float | None = None
    ) -> Result[ReadyOutcome, SessionNotFoundError]:
        """Poll the pane until the ready marker appears or ``timeout`` elapses.

        A failed capture counts as "not ready yet"; the session may still be
        starting. On success a SPAWNING session moves to READY; a session
        whose status changed meanwhile keeps it.
        """
        key = SessionKey(rig, worker)
        match self._get(key):
            case Err() as err:
                return err
            case Ok(session):
                pass

        limit = self.config.ready_timeout if timeout is None else timeout
        deadline = self._clock() + limit
        while True:
            match self._tmux.capture_pane(session.session_name, self.config.capture_lines):
                case Ok(text) if self._pane_is_ready(text):
                    self._promote(key, SessionStatus.SPAWNING, SessionStatus.READY)
                    logger.info("Session %s is ready", session.session_name)
                    return Ok(ReadyOutcome.READY)
                case Err(err):
                    logger.debug("Capture of %s failed: %s", session.session_name, err)

            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning("Session %s not ready after %.1fs", session.session_name, limit)
                return Ok(ReadyOutcome.TIMED_OUT)
            self._sleep(min(self.config.poll_interval, remaining))

    def nudge(
        self, rig: str, worker: str, text: str | None = None
    ) -> Result[None, SessionNotFoundError | SessionError]:
        """Type a line into the worker's pane."""
        key = SessionKey(rig, worker)
        match self._get(key):
            case Err() as err:
                return err
            case Ok(session):
                pass
        sent = self._tmux.send_keys(session.session_name, text or self.config.nudge_text)
        if isinstance(sent, Ok):
            with self._lock:
                current = self._sessions.get(key)
                if current is not None:
                    current.last_activity = _utcnow()
            logger.info("Nudged %s", key)
        return sent

    def mark(
        self, rig: str, worker: str, status: SessionStatus
    ) -> Result[WorkerSession, SessionNotFoundError | InvalidTransitionError]:
        """Record a driver-observed status change.

        PENDING_SHUTDOWN should only be requested after the driver has
        confirmed the worker's tree is clean; no repository is inspected here.
        """
        key = SessionKey(rig, worker)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return Err(SessionNotFoundError("No session for worker", context={"session": str(key)}))
            if status is session.status:
                return Ok(session.snapshot())
            if status not in STATUS_TRANSITIONS[session.status]:
                return Err(
                    InvalidTransitionError(
                        f"Cannot move session from {session.status.value} to {status.value}",
                        context={"session": str(key)},
                    )
                )
            session.status = status
            session.last_activity = _utcnow()
            return Ok(session.snapshot())

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _wait_for_exit(self, pgid: int, grace: float) -> bool:
        """Poll until the group is gone or ``grace`` elapses; True if gone."""
        deadline = self._clock() + grace
        while self._signaler.is_alive(pgid):
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self.config.poll_interval, remaining))
        return True

    def terminate(
        self, rig: str, worker: str, grace_period: float | None = None
    ) -> Result[TerminateOutcome, SessionNotFoundError]:
        """Two-phase shutdown of the worker's process group.

        SIGTERM goes to the whole group first. SIGKILL follows only if the
        group outlives ``grace_period``. The tmux session is removed once the
        group is down.
        """
        key = SessionKey(rig, worker)
        match self._get(key):
            case Err() as err:
                return err
            case Ok(session):
                pass

        if session.status is SessionStatus.TERMINATED:
            logger.debug("Session %s already terminated", session.session_name)
            return Ok(TerminateOutcome.TERMINATED)

        grace = self.config.grace_period if grace_period is None else grace_period
        pgid = session.pgid
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Terminating %s: %d process(es) in group %s", key, len(group_members(pgid)), pgid)

        outcome = self._signaler.terminate(pgid)
        if outcome is SignalOutcome.UNSUPPORTED:
            logger.warning("Process groups unsupported on this platform; %s left running", key)
            return Ok(TerminateOutcome.UNSUPPORTED)
        if outcome is SignalOutcome.DENIED:
            self._set_status(key, SessionStatus.ERROR)
            return Ok(TerminateOutcome.FAILED)

        result = TerminateOutcome.TERMINATED
        if outcome is SignalOutcome.SENT and not self._wait_for_exit(pgid, grace):
            logger.warning("Group %s of %s survived %.1fs grace period; sending SIGKILL", pgid, key, grace)
            forced = self._signaler.kill(pgid)
            if forced is SignalOutcome.DENIED or forced is SignalOutcome.UNSUPPORTED:
                self._set_status(key, SessionStatus.ERROR)
                return Ok(TerminateOutcome.FAILED)
            result = TerminateOutcome.FORCE_TERMINATED

        if self._tmux.has_session(session.session_name):
            removed = self._tmux.kill_session(session.session_name)
            if isinstance(removed, Err):
                logger.warning("Could not remove tmux session %s: %s", session.session_name, removed.error)

        self._set_status(key, SessionStatus.TERMINATED)
        logger.info("Session %s %s", session.session_name, result.value.replace("_", " "))
        return Ok(result)


__all__ = ["STATUS_TRANSITIONS", "SessionController"]
