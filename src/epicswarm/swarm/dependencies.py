"""Dependency diagnostics for swarm tasks.

Readiness never consults these checks: a task stuck behind a cycle or a
dependency that names no task simply never becomes ready. The report exists
so a driver can notice and surface that situation.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from epicswarm.swarm.types import DependencyReport, SwarmTask

_WHITE, _GRAY, _BLACK = 0, 1, 2


def _canonical(cycle: list[str]) -> tuple[str, ...]:
    """Rotate a cycle so it starts at its smallest id."""
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:] + cycle[:pivot])


def find_cycles(tasks: Sequence[SwarmTask]) -> list[list[str]]:
    """Return every distinct dependency cycle reachable by DFS.

    Edges point from a task to each of its dependencies. A task that depends
    on itself is reported as a one-element cycle.
    """
    graph: dict[str, list[str]] = {t.issue_id: list(t.dependencies) for t in tasks}
    color: dict[str, int] = {tid: _WHITE for tid in graph}
    seen: set[tuple[str, ...]] = set()
    cycles: list[list[str]] = []

    for task in tasks:
        if color[task.issue_id] != _WHITE:
            continue
        color[task.issue_id] = _GRAY
        path: list[str] = [task.issue_id]
        frames: list[Iterator[str]] = [iter(graph[task.issue_id])]
        while frames:
            dep = next(frames[-1], None)
            if dep is None:
                color[path.pop()] = _BLACK
                frames.pop()
                continue
            if dep not in graph:
                continue
            if color[dep] == _GRAY:
                key = _canonical(path[path.index(dep) :])
                if key not in seen:
                    seen.add(key)
                    cycles.append(list(key))
            elif color[dep] == _WHITE:
                color[dep] = _GRAY
                path.append(dep)
                frames.append(iter(graph[dep]))

    return cycles


def find_missing(tasks: Sequence[SwarmTask]) -> dict[str, list[str]]:
    """Map each task to the dependency ids that name no task in the swarm."""
    known = {t.issue_id for t in tasks}
    missing: dict[str, list[str]] = {}
    for task in tasks:
        absent = [dep for dep in task.dependencies if dep not in known]
        if absent:
            missing[task.issue_id] = absent
    return missing


def analyze_dependencies(tasks: Sequence[SwarmTask]) -> DependencyReport:
    return DependencyReport(cycles=find_cycles(tasks), missing=find_missing(tasks))


__all__ = ["analyze_dependencies", "find_cycles", "find_missing"]
