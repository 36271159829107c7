"""Rig: the target repository a swarm works against."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class Rig(BaseModel):
    """A named repository checkout that hosts worker worktrees.

    The core never inspects the repository itself; the rig only identifies
    where sessions start and which swarms belong together.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1, description="Short rig name, e.g. 'gastown'.")
    path: Path = Field(..., description="Root of the rig's repository checkout.")

    def worker_dir(self, worker: str) -> Path:
        """Directory a worker's session starts in.

        Workers get their own worktree under ``<path>/workers/<name>`` when
        the driver has created one; otherwise the rig root is used.
        """
        candidate = self.path / "workers" / worker
        return candidate if candidate.is_dir() else self.path


__all__ = ["Rig"]
