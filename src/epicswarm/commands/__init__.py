"""CLI command modules for epicswarm.

Commands are organized by domain:
    - plan: Inspect task records and their landing order
    - session: Worker session lifecycle (spawn, ready, nudge, kill, list)
"""

from __future__ import annotations

from . import plan, session

__all__ = ["plan", "session"]
