"""
Plan generation and execution entry points.

Typical use::

    report = parse_report_file("report.json")
    plan = generate_remediation_plan(report, "security.yaml", options, resolver)
    save_plan_to_file(plan, "plan.json")
    execute_plan(load_plan_file("plan.json"), ExecutionOptions(dry_run=True), resolver)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from rule2plan.condition import ConditionEvaluator
from rule2plan.errors import PlanError, RuleStructureError
from rule2plan.executor import ExecutionSummary, PlanExecutor
from rule2plan.expander import RuleExpander
from rule2plan.inference import infer_parameters_from_repo
from rule2plan.mappings import MappingLoader, get_required_parameters, load_mapping_config
from rule2plan.models import ExecutionOptions, RemediationPlan
from rule2plan.sorter import check_dependencies, detect_cycles, index_steps, sort_steps

log = logging.getLogger(__name__)

DEFAULTS_CANDIDATES = (
    Path("params.yaml"),
    Path(".rule2plan") / "params.yaml",
    Path("~/.rule2plan/params.yaml"),
)


class GenerateOptions(BaseModel):
    """How facts are gathered and rule references resolved for one plan."""
    defaults_path: str = ""
    repo_path: str = ""
    mappings_dir: str = ""
    extra_params: Dict[str, Any] = Field(default_factory=dict)
    skip_defaults: bool = False
    skip_repo_inference: bool = False
    non_interactive: bool = False
    verbose: bool = False


# ── Inputs ──────────────────────────────────────────────────────────────────

def _read_structured(path: Union[str, Path], what: str) -> Any:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanError(f"error reading {what} file {path}: {e}") from e
    try:
        return json.loads(text)
    except ValueError:
        pass
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PlanError(f"error parsing {what} file {path} (tried JSON and YAML): {e}") from e


def parse_report_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a findings report (JSON, or YAML if it is not JSON) into a fact mapping."""
    data = _read_structured(path, "report")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise PlanError(f"report {path} must contain a mapping of findings")
    return data


def load_extra_parameters(params_file: str = "", params_json: str = "") -> Dict[str, Any]:
    """Parameters from a JSON/YAML file, overridden by an inline JSON object."""
    params: Dict[str, Any] = {}
    if params_file:
        data = _read_structured(params_file, "parameters")
        if data is not None and not isinstance(data, dict):
            raise PlanError(f"parameters file {params_file} must contain a mapping")
        params.update(data or {})
    if params_json:
        try:
            data = json.loads(params_json)
        except ValueError as e:
            raise PlanError(f"error parsing JSON parameters: {e}") from e
        if not isinstance(data, dict):
            raise PlanError("JSON parameters must be an object")
        params.update(data)
    return params


def find_defaults_file() -> Optional[Path]:
    for candidate in DEFAULTS_CANDIDATES:
        path = candidate.expanduser()
        if path.is_file():
            return path
    return None


def load_default_parameters(path: Union[str, Path, None] = None) -> Dict[str, Any]:
    """Read the ``default_parameters:`` mapping; an absent file means no defaults."""
    if not path:
        path = find_defaults_file()
        if path is None:
            return {}
    path = Path(path).expanduser()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise PlanError(f"error loading default parameters from {path}: {e}") from e
    if not isinstance(data, dict):
        raise PlanError(f"default parameters file {path} must contain a mapping")
    defaults = data.get("default_parameters") or {}
    log.debug("Loaded %d default parameter(s) from %s", len(defaults), path)
    return dict(defaults)


def build_fact_set(report: Dict[str, Any], options: GenerateOptions) -> Dict[str, Any]:
    """Merge fact sources; later sources win: defaults, inferred, report, explicit."""
    facts: Dict[str, Any] = {}

    if not options.skip_defaults:
        try:
            facts.update(load_default_parameters(options.defaults_path or None))
        except PlanError as e:
            log.warning("Failed to load default parameters: %s", e)

    if not options.skip_repo_inference:
        try:
            inferred = infer_parameters_from_repo(options.repo_path or None)
        except OSError as e:
            log.warning("Failed to infer parameters from repository: %s", e)
        else:
            facts.update(inferred)
            if options.verbose and inferred:
                print("Inferred parameters from repository:")
                for key, value in inferred.items():
                    print(f"  {key}: {value}")

    facts.update(report)
    facts.update(options.extra_params)
    return facts


def prompt_for_missing_parameters(
    facts: Dict[str, Any],
    required: Iterable[str],
    input_fn: Optional[Callable[[str], str]] = None,
) -> None:
    """Ask for every required parameter that is not in *facts* yet."""
    input_fn = input_fn or input
    for name in required:
        if name in facts:
            continue
        try:
            facts[name] = input_fn(f"Required parameter '{name}' is missing. Please enter a value: ")
        except EOFError as e:
            raise PlanError(f"error reading input for parameter '{name}'") from e


# ── Generation ──────────────────────────────────────────────────────────────

def generate_remediation_plan(
    report: Dict[str, Any],
    mapping_path: Union[str, Path],
    options: Optional[GenerateOptions] = None,
    resolver: Any = None,
    evaluator: Optional[ConditionEvaluator] = None,
) -> RemediationPlan:
    """Compile the rules in *mapping_path* against *report* into a sorted plan."""
    if resolver is None:
        raise PlanError("an action resolver is required to generate a plan")
    options = options or GenerateOptions()

    config = load_mapping_config(mapping_path)
    if not config.mappings:
        raise RuleStructureError(f"mapping file {mapping_path} contains no rules")

    facts = build_fact_set(report, options)
    if not options.non_interactive:
        prompt_for_missing_parameters(facts, get_required_parameters(config))

    mappings_dir = options.mappings_dir or str(Path(mapping_path).parent)
    expander = RuleExpander(resolver, evaluator, MappingLoader(mappings_dir))
    steps = sort_steps(expander.expand_rules(config.mappings, facts))

    plan = RemediationPlan(
        project_name=str(facts.get("project_name") or "Unknown Project"),
        repository=str(facts.get("project_repo") or "Unknown Repository"),
        steps=steps,
    )
    log.info("Generated plan with %d step(s) from %s", len(steps), mapping_path)
    return plan


def validate_plan(plan: RemediationPlan) -> None:
    """Raise ``PlanError`` if *plan* could not be executed as written."""
    if not plan.steps:
        raise PlanError("plan contains no steps")
    for step in plan.steps:
        if not step.id:
            raise PlanError("step has empty ID")
    index = index_steps(plan.steps)
    for step in plan.steps:
        if not step.action_name:
            raise PlanError(f"step '{step.id}' has empty action name")
    check_dependencies(index)
    detect_cycles(plan.steps)


def save_plan_to_file(plan: RemediationPlan, path: Union[str, Path]) -> None:
    try:
        validate_plan(plan)
    except PlanError as e:
        raise PlanError(f"invalid plan: {e}") from e
    Path(path).write_text(plan.to_json() + "\n", encoding="utf-8")
    log.info("Saved plan to %s", path)


def load_plan_file(path: Union[str, Path]) -> RemediationPlan:
    path = Path(path)
    try:
        return RemediationPlan.from_json(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise PlanError(f"error reading plan file {path}: {e}") from e
    except ValidationError as e:
        raise PlanError(f"error parsing plan JSON {path}: {e}") from e


def execute_plan(
    plan: RemediationPlan,
    options: Optional[ExecutionOptions] = None,
    resolver: Any = None,
) -> ExecutionSummary:
    """Run every step of *plan*; see ``PlanExecutor`` for failure handling."""
    if resolver is None:
        raise PlanError("an action resolver is required to execute a plan")
    return PlanExecutor(resolver, options).execute_plan(plan)
