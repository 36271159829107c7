"""
Unified Result types and error hierarchy for epicswarm.

This module provides:
1. Result[T, E] type for explicit error handling
2. Domain-specific exception hierarchy
3. Helper functions for Result operations

Usage:
    from epicswarm.core.result import Ok, Err, Result, SwarmNotFoundError

    def lookup(swarm_id: str) -> Result[Swarm, SwarmNotFoundError]:
        if swarm_id not in table:
            return Err(SwarmNotFoundError("Swarm not found", context={"swarm": swarm_id}))
        return Ok(table[swarm_id])

    match lookup("epic-1"):
        case Ok(swarm):
            print(swarm.state)
        case Err(err):
            print(err)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E", bound=Exception)
F = TypeVar("F", bound=Exception)


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Represents a successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Return the contained value."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return the contained value (ignores default for Ok)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply a function to the contained value."""
        return Ok(fn(self.value))

    def map_err(self, fn: Callable[[E], F]) -> Ok[T]:
        """No-op for Ok - returns self unchanged."""
        return self

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Chain operations that may fail."""
        return fn(self.value)


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Represents a failed result containing an error."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the contained error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Return the default value."""
        return default

    def map(self, fn: Callable[[T], U]) -> Err[E]:
        """No-op for Err - returns self unchanged."""
        return self

    def map_err(self, fn: Callable[[E], F]) -> Err[F]:
        """Apply a function to the contained error."""
        return Err(fn(self.error))

    def and_then(self, fn: Callable[[T], Result[U, E]]) -> Err[E]:
        """Short-circuit for Err - returns self unchanged."""
        return self


# Type alias for Result
Result = Ok[T] | Err[E]


# ---------------------------------------------------------------------------
# Domain-specific error hierarchy
# ---------------------------------------------------------------------------


class EpicSwarmError(Exception):
    """Base exception for all epicswarm errors.

    Errors are normally returned inside ``Err`` rather than raised; the
    ``context`` mapping carries the identifiers a driver needs to decide
    whether to retry, force, or alert.
    """

    def __init__(self, message: str, *, context: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class NotFoundError(EpicSwarmError):
    """Raised when a swarm, task or session is absent."""


class SwarmNotFoundError(NotFoundError):
    """No swarm with the requested id is known to the manager."""


class TaskNotFoundError(NotFoundError):
    """The swarm exists but holds no task with the requested issue id."""


class SessionNotFoundError(NotFoundError):
    """The session controller tracks no session for the requested key."""


class AlreadyExistsError(EpicSwarmError):
    """Raised for duplicate swarm ids, issue ids, or live session keys."""


class InvalidTransitionError(EpicSwarmError):
    """Raised when a requested state edge is not in the transition table.

    Examples:
    - Starting a swarm that is already active
    - Any transition out of Landed or Cancelled
    - Marking a terminated session as working
    """


class InvalidTaskStateError(EpicSwarmError):
    """Raised when a task is not in the state an operation requires."""


class ValidationError(EpicSwarmError):
    """Raised for input validation failures.

    Examples:
    - Empty worker roster
    - Malformed task records
    """


class SessionError(EpicSwarmError):
    """Raised when the terminal multiplexer or process layer fails.

    Examples:
    - tmux binary not found
    - tmux command exited non-zero
    - Pane process vanished before its group id could be read
    """


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def try_result(fn: Callable[[], T], error_type: type[E] = EpicSwarmError) -> Result[T, E]:
    """Execute a function and wrap the result in Ok/Err.

    Args:
        fn: Function to execute
        error_type: Exception type to catch (default: EpicSwarmError)

    Returns:
        Ok(value) on success, Err(exception) on failure
    """
    try:
        return Ok(fn())
    except error_type as exc:
        return Err(exc)


def collect_results(results: list[Result[T, E]]) -> Result[list[T], E]:
    """Collect a list of Results into a Result of list.

    Returns Err on first error, Ok(list) if all succeed.
    """
    values: list[T] = []
    for result in results:
        if result.is_err():
            return result  # type: ignore[return-value]
        values.append(result.unwrap())
    return Ok(values)


__all__ = [
    # Result types
    "Ok",
    "Err",
    "Result",
    # Error hierarchy
    "EpicSwarmError",
    "NotFoundError",
    "SwarmNotFoundError",
    "TaskNotFoundError",
    "SessionNotFoundError",
    "AlreadyExistsError",
    "InvalidTransitionError",
    "InvalidTaskStateError",
    "ValidationError",
    "SessionError",
    # Helpers
    "try_result",
    "collect_results",
]
