"""
Error taxonomy for plan construction and plan execution.

Structural problems found while compiling rules into a plan derive from
``PlanError`` (a ``ValueError``) and abort plan construction.  Problems
found while running an already-valid plan derive from ``ExecutionError``
(a ``RuntimeError``) and are recorded on the offending step.
"""

from __future__ import annotations

from typing import Optional


class PlanError(ValueError):
    """A rule set or plan is structurally invalid."""


class RuleStructureError(PlanError):
    """A rule has no action, steps, or rule reference (or is malformed)."""


class CircularReferenceError(PlanError):
    """A rule file references itself through a chain of rule references."""

    def __init__(self, chain: list[str]):
        self.chain = list(chain)
        super().__init__(f"circular rule reference detected: {' -> '.join(self.chain)}")


class CircularDependencyError(PlanError):
    """Step dependencies form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"circular dependency: {' -> '.join(self.cycle)}")


class MissingParameterError(PlanError):
    """Template placeholders remained after substitution."""

    def __init__(self, placeholders: list[str], where: str = ""):
        self.placeholders = list(placeholders)
        message = f"missing parameter value(s): {', '.join(self.placeholders)}"
        if where:
            message += f" in {where}"
        super().__init__(message)


class MissingDependencyError(PlanError):
    """A step depends on a step id that is not in the plan."""

    def __init__(self, step_id: str, dependency: str):
        self.step_id = step_id
        self.dependency = dependency
        super().__init__(f"step '{step_id}' depends on non-existent step '{dependency}'")


class DuplicateStepError(PlanError):
    """Two steps share the same id."""

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"duplicate step ID: {step_id}")


class ActionResolutionError(PlanError):
    """An action name could not be resolved or its config could not be read."""


class ConditionError(PlanError):
    """A rule condition failed to compile or evaluate."""


class ExecutionError(RuntimeError):
    """Base class for failures while running a plan."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        self.step_id = step_id
        super().__init__(message)


class OutputReferenceError(ExecutionError):
    """A step references an output that is not available."""


class StepExecutionError(ExecutionError):
    """An action failed while executing a step."""


class PlanExecutionError(ExecutionError):
    """One or more steps failed during a plan run."""

    def __init__(self, succeeded: int, failed: int, total: int):
        self.succeeded = succeeded
        self.failed = failed
        self.total = total
        super().__init__(f"{failed} of {total} steps failed during execution")
