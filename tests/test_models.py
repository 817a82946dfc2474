import json

import pytest
from pydantic import ValidationError

from rule2plan.models import ExecutionOptions, MappingConfig, MappingRule, RemediationPlan, RemediationStep


def test_plan_json_round_trip_preserves_step_fields():
    step = RemediationStep(
        id="commit",
        action_name="git-commit",
        params={"message": "Add docs", "files": ["a", "b"]},
        reason="Commit docs",
        depends_on=["add"],
        outputs={"commit_hash": "abc123"},
        output_refs={"files": "add.files"},
        status="failure",
        error="boom",
    )
    plan = RemediationPlan(project_name="demo", repository="git@example.com:org/demo.git", steps=[step])

    loaded = RemediationPlan.from_json(plan.to_json())

    assert loaded == plan
    assert loaded.steps[0].output_refs == {"files": "add.files"}


def test_plan_json_uses_camel_case_names():
    plan = RemediationPlan(steps=[RemediationStep(id="a", action_name="noop", depends_on=["b"])])
    data = json.loads(plan.to_json())

    assert data["projectName"] == "Unknown Project"
    assert data["repository"] == "Unknown Repository"
    step = data["steps"][0]
    assert step["actionName"] == "noop"
    assert step["dependsOn"] == ["b"]
    assert step["status"] == "pending"
    assert "error" not in step
    assert "outputs" not in step


def test_mapping_rule_accepts_snake_and_legacy_keys():
    config = MappingConfig.model_validate({
        "mappings": [
            {"id": "a", "action": "noop", "depends_on": ["b"], "output_refs": {"x": "b.y"}},
            {"id": "b", "mapping_ref": "other.yaml"},
            {"id": "c", "ruleRef": "third.yaml", "dependsOn": ["a"]},
        ]
    })
    a, b, c = config.mappings

    assert a.depends_on == ["b"]
    assert a.output_refs == {"x": "b.y"}
    assert b.rule_ref == "other.yaml"
    assert b.is_composite
    assert c.rule_ref == "third.yaml"
    assert c.depends_on == ["a"]


def test_nested_steps_are_parsed_recursively():
    rule = MappingRule.model_validate({
        "id": "wf",
        "steps": [{"id": "one", "action": "noop"}, {"id": "two", "steps": [{"id": "x", "action": "noop"}]}],
    })
    assert rule.is_composite
    assert rule.steps[1].steps[0].id == "x"
    assert not rule.steps[0].is_composite


def test_plan_step_lookup():
    plan = RemediationPlan(steps=[RemediationStep(id="a", action_name="noop")])
    assert plan.step("a").action_name == "noop"
    assert plan.step("missing") is None


def test_execution_options_are_frozen():
    options = ExecutionOptions(dry_run=True)
    with pytest.raises(ValidationError):
        options.dry_run = False
    assert options.dry_run is True
