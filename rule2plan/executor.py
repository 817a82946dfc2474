"""
Run a remediation plan step by step.

Steps run one at a time in plan order.  Each step goes
``pending -> running -> success | failure``; terminal states are never
retried.  Outputs of successful steps are kept in a plan-scoped table so
later steps can pull them in through ``outputRefs``.

With ``continue_on_error`` a failed step does not stop the run, and steps
that depend on it still run: the plan is executed best-effort and the run
ends with a ``PlanExecutionError`` summarising the failures.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from rule2plan.actions import OutputAction
from rule2plan.errors import ExecutionError, OutputReferenceError, PlanExecutionError, StepExecutionError
from rule2plan.models import FAILURE, RUNNING, SUCCESS, ExecutionOptions, RemediationPlan, RemediationStep

log = logging.getLogger(__name__)


@dataclass
class ExecutionSummary:
    succeeded: int = 0
    failed: int = 0
    total: int = 0


class StepExecutor:
    """Executes single steps and owns the step-id -> outputs table."""

    def __init__(self, resolver: Any, options: Optional[ExecutionOptions] = None):
        self.resolver = resolver
        self.options = options or ExecutionOptions()
        self.step_outputs: Dict[str, Dict[str, Any]] = {}

    def execute_step(self, step: RemediationStep) -> None:
        step.status = RUNNING
        if self.options.verbose_logging:
            print(f"Executing step: {step.id} (Action: {step.action_name})")
            print(f"Reason: {step.reason}")
        log.info("Executing step %s (action %s)", step.id, step.action_name)

        try:
            self.process_output_references(step)

            if self.options.dry_run:
                self._dry_run(step)
                return

            try:
                action = self.resolver.resolve_action(step.action_name)
            except Exception as e:
                raise StepExecutionError(
                    f"error resolving action '{step.action_name}': {e}", step.id
                ) from e
            self._run_action(step, action)
        except ExecutionError as e:
            self._fail(step, e)
            raise

    def process_output_references(self, step: RemediationStep) -> None:
        """Overwrite params with values from earlier steps' outputs."""
        for param, ref in step.output_refs.items():
            parts = ref.split(".")
            if len(parts) != 2 or not all(parts):
                raise OutputReferenceError(f"invalid output reference format: {ref}", step.id)
            source_id, output_name = parts

            outputs = self.step_outputs.get(source_id)
            if outputs is None:
                raise OutputReferenceError(
                    f"referenced step {source_id} not found or has not completed successfully", step.id
                )
            if output_name not in outputs:
                raise OutputReferenceError(f"output {output_name} not found in step {source_id}", step.id)

            step.params[param] = outputs[output_name]
            log.debug("Set parameter %s of %s from %s.%s", param, step.id, source_id, output_name)

    def _dry_run(self, step: RemediationStep) -> None:
        params_json = json.dumps(step.params, indent=2, default=str)
        print(f"  Would execute action '{step.action_name}' with parameters:")
        for line in params_json.splitlines():
            print(f"    {line}")

        step.status = SUCCESS
        if step.outputs is not None:
            self.step_outputs[step.id] = dict(step.outputs)

    def _run_action(self, step: RemediationStep, action: Any) -> None:
        try:
            if isinstance(action, OutputAction):
                captured = action.execute_with_output(step.params)
            else:
                action.execute(step.params)
                captured = None
        except Exception as e:
            raise StepExecutionError(f"execution failed: {e}", step.id) from e

        step.status = SUCCESS
        if captured:
            step.outputs = dict(captured)
        if step.outputs is not None:
            self.step_outputs[step.id] = dict(step.outputs)

        if self.options.verbose_logging and self.step_outputs.get(step.id):
            print("Step completed successfully")
            print(f"  Outputs: {json.dumps(self.step_outputs[step.id], indent=2, default=str)}")

    def _fail(self, step: RemediationStep, error: Exception) -> None:
        step.status = FAILURE
        step.error = str(error)
        log.error("Step %s failed: %s", step.id, error)


class PlanExecutor:
    """Drives a ``StepExecutor`` over every step of a plan."""

    def __init__(self, resolver: Any, options: Optional[ExecutionOptions] = None):
        self.options = options or ExecutionOptions()
        self.step_executor = StepExecutor(resolver, self.options)

    @property
    def step_outputs(self) -> Dict[str, Dict[str, Any]]:
        return self.step_executor.step_outputs

    def execute_plan(self, plan: RemediationPlan) -> ExecutionSummary:
        summary = ExecutionSummary(total=len(plan.steps))
        failures: List[str] = []

        for position, step in enumerate(plan.steps, 1):
            print(f"Executing step {position}/{summary.total}: {step.id}")
            try:
                self.step_executor.execute_step(step)
            except ExecutionError:
                summary.failed += 1
                failures.append(step.id)
                if not self.options.continue_on_error:
                    raise
                continue
            summary.succeeded += 1

        print(
            f"\nExecution summary: {summary.succeeded} successful, {summary.failed} failed "
            f"(out of {summary.total} total steps)"
        )
        if failures:
            log.warning("Failed steps: %s", ", ".join(failures))
            raise PlanExecutionError(summary.succeeded, summary.failed, summary.total)
        return summary
