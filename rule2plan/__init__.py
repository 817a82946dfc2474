"""
rule2plan: compile findings reports into remediation plans and run them.

Rules (YAML) match facts with CEL conditions and expand into a flat,
dependency-sorted list of steps; each step names an action (YAML) that the
executor resolves and runs.
"""

from rule2plan.condition import ConditionEvaluator
from rule2plan.errors import ExecutionError, PlanError
from rule2plan.executor import ExecutionSummary, PlanExecutor, StepExecutor
from rule2plan.expander import RuleExpander
from rule2plan.models import (
    ExecutionOptions,
    MappingConfig,
    MappingRule,
    RemediationPlan,
    RemediationStep,
)
from rule2plan.parameters import materialize_params
from rule2plan.planner import (
    GenerateOptions,
    execute_plan,
    generate_remediation_plan,
    load_plan_file,
    save_plan_to_file,
    validate_plan,
)
from rule2plan.resolver import ActionResolver
from rule2plan.sorter import sort_steps

__version__ = "0.1.0"
