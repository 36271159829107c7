"""epicswarm - orchestration core for swarms of autonomous worker agents.

This package provides the swarm manager (swarm lifecycle and task
assignment), the worker session controller (tmux sessions torn down through
process-group signaling), and the `epicswarm` command-line tool.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
