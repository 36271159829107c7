"""Core shared infrastructure for epicswarm.

This package contains foundational utilities:
    - config: Application configuration management
    - console: Rich console output and logging
    - result: Error handling patterns
    - rig: Target repository description
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
