"""Thin tmux wrapper used by the session controller.

Every call shells out to the tmux binary without a shell and returns a
``Result``; tmux failures never raise past this module.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from epicswarm.core.config import SessionConfig
from epicswarm.core.console import get_logger
from epicswarm.core.result import Err, Ok, Result, SessionError

logger = get_logger(__name__)

# Generous upper bound for a single tmux invocation.
_TMUX_TIMEOUT = 10.0


@dataclass(slots=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


# tmux records "." and ":" in session names as "_".
_NAME_FIXUPS = str.maketrans({".": "_", ":": "_"})


def session_name_for(raw: str) -> str:
    """Name tmux will actually record for a session created as ``raw``."""
    return raw.translate(_NAME_FIXUPS)


def _pane(name: str) -> str:
    """Exact-match target for the active pane of session ``name``."""
    return f"={name}:"


class TmuxBackend(Protocol):
    """The subset of tmux the controller needs; faked in tests."""

    def has_session(self, name: str) -> bool: ...

    def new_session(
        self, name: str, workdir: Path, command: str
    ) -> Result[None, SessionError]: ...

    def pane_pid(self, name: str) -> Result[int, SessionError]: ...

    def capture_pane(self, name: str, lines: int) -> Result[str, SessionError]: ...

    def send_keys(self, name: str, text: str) -> Result[None, SessionError]: ...

    def kill_session(self, name: str) -> Result[None, SessionError]: ...

    def list_sessions(self) -> Result[list[str], SessionError]: ...


class Tmux:
    """tmux driven through ``subprocess.run``."""

    def __init__(self, binary: str = "tmux", socket: str | None = None) -> None:
        self.binary = binary
        self.socket = socket

    @classmethod
    def from_config(cls, config: SessionConfig) -> Tmux:
        return cls(binary=config.tmux_binary, socket=config.tmux_socket)

    def _prefix(self) -> list[str]:
        binary = shutil.which(self.binary) or self.binary
        if self.socket:
            return [binary, "-L", self.socket]
        return [binary]

    def _run(self, *args: str) -> Result[CommandResult, SessionError]:
        cmd = [*self._prefix(), *args]
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=_TMUX_TIMEOUT,
                check=False,
            )
        except FileNotFoundError as exc:
            return Err(SessionError("tmux binary not found", context={"binary": self.binary, "error": str(exc)}))
        except subprocess.TimeoutExpired:
            return Err(SessionError("tmux command timed out", context={"cmd": " ".join(args)}))
        except OSError as exc:
            return Err(SessionError("Failed to start tmux", context={"error": str(exc)}))

        return Ok(CommandResult(proc.returncode, proc.stdout, proc.stderr))

    def _run_checked(self, *args: str) -> Result[CommandResult, SessionError]:
        match self._run(*args):
            case Err() as err:
                return err
            case Ok(result):
                pass
        if result.returncode != 0:
            return Err(
                SessionError(
                    f"tmux {args[0]} failed",
                    context={"returncode": result.returncode, "stderr": result.stderr.strip()},
                )
            )
        return Ok(result)

    def has_session(self, name: str) -> bool:
        # "=" forces an exact match instead of tmux's prefix matching.
        match self._run("has-session", "-t", f"={name}"):
            case Ok(result):
                return result.returncode == 0
            case Err(err):
                logger.debug("has-session %s failed: %s", name, err)
                return False

    def new_session(self, name: str, workdir: Path, command: str) -> Result[None, SessionError]:
        return self._run_checked(
            "new-session", "-d", "-s", name, "-c", str(workdir), command
        ).map(lambda _: None)

    def pane_pid(self, name: str) -> Result[int, SessionError]:
        match self._run_checked("display-message", "-p", "-t", _pane(name), "#{pane_pid}"):
            case Err() as err:
                return err
            case Ok(result):
                raw = result.stdout.strip()
        try:
            return Ok(int(raw))
        except ValueError:
            return Err(SessionError("Unexpected pane_pid output", context={"session": name, "output": raw}))

    def capture_pane(self, name: str, lines: int) -> Result[str, SessionError]:
        args = ["capture-pane", "-p", "-t", _pane(name)]
        if lines > 0:
            args.extend(["-S", f"-{lines}"])
        return self._run_checked(*args).map(lambda result: result.stdout)

    def send_keys(self, name: str, text: str) -> Result[None, SessionError]:
        target = _pane(name)
        sent = self._run_checked("send-keys", "-t", target, "-l", text)
        if isinstance(sent, Err):
            return sent
        return self._run_checked("send-keys", "-t", target, "Enter").map(lambda _: None)

    def kill_session(self, name: str) -> Result[None, SessionError]:
        return self._run_checked("kill-session", "-t", f"={name}").map(lambda _: None)

    def list_sessions(self) -> Result[list[str], SessionError]:
        match self._run("list-sessions", "-F", "#{session_name}"):
            case Err() as err:
                return err
            case Ok(result):
                pass
        if result.returncode != 0:
            # No server running means no sessions.
            if "no server running" in result.stderr or "error connecting" in result.stderr:
                return Ok([])
            return Err(SessionError("tmux list-sessions failed", context={"stderr": result.stderr.strip()}))
        return Ok([line.strip() for line in result.stdout.splitlines() if line.strip()])


__all__ = ["CommandResult", "Tmux", "TmuxBackend", "session_name_for"]
