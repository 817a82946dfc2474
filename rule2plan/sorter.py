"""
Dependency validation and topological ordering of remediation steps.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Sequence, Tuple

from rule2plan.errors import CircularDependencyError, DuplicateStepError, MissingDependencyError
from rule2plan.models import RemediationStep

log = logging.getLogger(__name__)

# Per-node colours for the cycle search.
UNVISITED, IN_PROGRESS, DONE = 0, 1, 2


def index_steps(steps: Sequence[RemediationStep]) -> Dict[str, RemediationStep]:
    index: Dict[str, RemediationStep] = {}
    for step in steps:
        if step.id in index:
            raise DuplicateStepError(step.id)
        index[step.id] = step
    return index


def derive_output_dependencies(steps: Sequence[RemediationStep]) -> None:
    """Add the source step of every output reference to the step's ``dependsOn``."""
    for step in steps:
        for ref in step.output_refs.values():
            source, sep, _ = ref.partition(".")
            if sep and source and source != step.id and source not in step.depends_on:
                log.debug("Step %s depends on %s through output reference %s", step.id, source, ref)
                step.depends_on.append(source)


def check_dependencies(index: Dict[str, RemediationStep]) -> None:
    for step in index.values():
        for dep in step.depends_on:
            if dep not in index:
                raise MissingDependencyError(step.id, dep)


def find_cycle(index: Dict[str, RemediationStep]) -> List[str]:
    """Return the first dependency cycle found as ``[a, b, …, a]``, or ``[]``."""
    colour = {step_id: UNVISITED for step_id in index}

    for root in index:
        if colour[root] != UNVISITED:
            continue
        colour[root] = IN_PROGRESS
        path: List[str] = [root]
        pending: List[Iterator[str]] = [iter(index[root].depends_on)]
        while pending:
            for dep in pending[-1]:
                if dep not in index:
                    continue
                if colour[dep] == IN_PROGRESS:
                    return path[path.index(dep):] + [dep]
                if colour[dep] == UNVISITED:
                    colour[dep] = IN_PROGRESS
                    path.append(dep)
                    pending.append(iter(index[dep].depends_on))
                    break
            else:
                colour[path.pop()] = DONE
                pending.pop()
    return []


def detect_cycles(steps: Sequence[RemediationStep]) -> None:
    cycle = find_cycle(index_steps(steps))
    if cycle:
        raise CircularDependencyError(cycle)


def sort_steps(steps: Sequence[RemediationStep]) -> List[RemediationStep]:
    """Validate dependencies and return *steps* in a deterministic topological order.

    Every dependency comes before its dependents; otherwise declaration
    order is kept as far as possible.
    """
    index = index_steps(steps)
    derive_output_dependencies(steps)
    check_dependencies(index)

    cycle = find_cycle(index)
    if cycle:
        raise CircularDependencyError(cycle)

    ordered: List[RemediationStep] = []
    visited: set[str] = set()

    # Iterative post-order walk.
    for step in steps:
        if step.id in visited:
            continue
        visited.add(step.id)
        stack: List[Tuple[RemediationStep, Iterator[str]]] = [(step, iter(step.depends_on))]
        while stack:
            current, deps = stack[-1]
            for dep in deps:
                if dep not in visited:
                    visited.add(dep)
                    stack.append((index[dep], iter(index[dep].depends_on)))
                    break
            else:
                stack.pop()
                ordered.append(current)
    return ordered
