import pytest

from rule2plan.errors import (
    ActionResolutionError,
    CircularReferenceError,
    ConditionError,
    MissingParameterError,
    RuleStructureError,
)
from rule2plan.expander import RuleExpander
from rule2plan.mappings import MappingLoader, load_mapping_config
from rule2plan.models import MappingRule
from rule2plan.sorter import sort_steps


def rules(*dicts):
    return [MappingRule.model_validate(d) for d in dicts]


def test_condition_selects_rule(resolver):
    resolver.add("noop")
    expander = RuleExpander(resolver)
    rule = rules({"id": "a", "condition": "x==1", "action": "noop"})

    assert [s.id for s in expander.expand_rules(rule, {"x": 1})] == ["a"]
    assert expander.expand_rules(rule, {"x": 2}) == []


def test_leaf_step_carries_rule_fields(resolver):
    expander = RuleExpander(resolver)
    [step] = expander.expand_rules(rules({
        "id": "docs",
        "action": "add-security-md",
        "reason": "No security policy",
        "parameters": {"name": "{{.project_name}}", "emails": "{{.contacts}}"},
        "outputs": {"file_path": "SECURITY.md"},
    }), {"project_name": "demo", "contacts": ["sec@demo.io"]})

    assert step.action_name == "add-security-md"
    assert step.reason == "No security policy"
    assert step.params == {"name": "demo", "emails": ["sec@demo.io"]}
    assert step.outputs == {"file_path": "SECURITY.md"}
    assert step.status == "pending"


def test_steps_are_prefixed_and_sequential_by_default(resolver):
    expander = RuleExpander(resolver)
    steps = expander.expand_rules(rules({
        "id": "wf",
        "steps": [
            {"id": "branch", "action": "create-branch"},
            {"id": "add", "action": "git-add"},
            {"id": "commit", "action": "git-commit", "outputRefs": {"files": "add.files"}},
            {"id": "push", "action": "git-push", "dependsOn": ["branch"]},
        ],
    }), {})

    by_id = {s.id: s for s in steps}
    assert list(by_id) == ["wf-branch", "wf-add", "wf-commit", "wf-push"]
    assert by_id["wf-branch"].depends_on == []
    assert by_id["wf-add"].depends_on == ["wf-branch"]
    assert by_id["wf-commit"].depends_on == ["wf-add"]
    assert by_id["wf-commit"].output_refs == {"files": "wf-add.files"}
    assert by_id["wf-push"].depends_on == ["wf-branch"]


def test_skipped_sibling_passes_its_dependencies_through(resolver):
    expander = RuleExpander(resolver)
    steps = expander.expand_rules(rules({
        "id": "wf",
        "steps": [
            {"id": "branch", "action": "create-branch"},
            {"id": "docs", "condition": "needs_docs", "action": "add-security-md"},
            {"id": "add", "action": "git-add"},
        ],
    }), {"needs_docs": False})

    assert [s.id for s in steps] == ["wf-branch", "wf-add"]
    assert steps[1].depends_on == ["wf-branch"]


def test_nested_composite_dependencies(resolver):
    expander = RuleExpander(resolver)
    steps = expander.expand_rules(rules(
        {"id": "setup", "action": "create-branch"},
        {
            "id": "docs",
            "dependsOn": ["setup"],
            "steps": [
                {"id": "write", "action": "add-security-md"},
                {"id": "stage", "action": "git-add"},
            ],
        },
        {"id": "publish", "action": "git-push", "dependsOn": ["docs"]},
    ), {})

    by_id = {s.id: s for s in steps}
    assert by_id["docs-write"].depends_on == ["setup"]
    assert by_id["docs-stage"].depends_on == ["docs-write"]
    assert by_id["publish"].depends_on == ["docs-write", "docs-stage"]
    assert [s.id for s in sort_steps(steps)] == ["setup", "docs-write", "docs-stage", "publish"]


def test_once_keeps_a_single_step_across_paths(resolver):
    expander = RuleExpander(resolver)
    steps = expander.expand_rules(rules(
        {"id": "license", "steps": [
            {"id": "branch", "action": "create-branch", "once": True},
            {"id": "add", "action": "git-add"},
        ]},
        {"id": "policy", "steps": [
            {"id": "branch", "action": "create-branch", "once": True},
            {"id": "commit", "action": "git-commit"},
        ]},
    ), {})

    assert [s.action_name for s in steps].count("create-branch") == 1
    assert [s.id for s in steps] == ["license-branch", "license-add", "policy-commit"]
    assert steps[2].depends_on == []


def test_rule_ref_prefixes_and_overrides(tmp_path, resolver):
    (tmp_path / "child.yaml").write_text(
        "mappings:\n"
        "  - id: branch\n"
        "    action: create-branch\n"
        "    parameters:\n"
        "      branch_name: default-branch\n"
        "  - id: push\n"
        "    action: git-push\n"
        "    dependsOn: [branch]\n"
        "    parameters:\n"
        "      branch_name: default-branch\n",
        encoding="utf-8",
    )
    loader_calls = []

    def loader(ref):
        loader_calls.append(ref)
        return load_mapping_config(tmp_path / ref).mappings

    expander = RuleExpander(resolver, loader=loader)
    steps = expander.expand_rules(rules(
        {"id": "sec", "ruleRef": "child.yaml", "parameters": {"branch_name": "fix-security"}},
    ), {})

    assert loader_calls == ["child.yaml"]
    assert [s.id for s in steps] == ["sec-branch", "sec-push"]
    assert steps[1].depends_on == ["sec-branch"]
    assert all(s.params["branch_name"] == "fix-security" for s in steps)


def test_circular_rule_reference(tmp_path, resolver):
    (tmp_path / "a.yaml").write_text("mappings:\n  - id: to-b\n    ruleRef: b.yaml\n", encoding="utf-8")
    (tmp_path / "b.yaml").write_text("mappings:\n  - id: to-a\n    ruleRef: a.yaml\n", encoding="utf-8")

    expander = RuleExpander(resolver, loader=MappingLoader(tmp_path))
    with pytest.raises(CircularReferenceError) as exc:
        expander.expand_rules(rules({"id": "root", "ruleRef": "a.yaml"}), {})
    assert exc.value.chain == ["a.yaml", "b.yaml", "a.yaml"]


def test_rule_without_action_steps_or_ref(resolver):
    with pytest.raises(RuleStructureError, match="no action, steps, or rule reference"):
        RuleExpander(resolver).expand_rules(rules({"id": "empty"}), {})


def test_rule_ref_without_loader(resolver):
    with pytest.raises(RuleStructureError, match="no rule loader"):
        RuleExpander(resolver).expand_rules(rules({"id": "r", "ruleRef": "x.yaml"}), {})


def test_missing_parameter_aborts_expansion(resolver):
    with pytest.raises(MissingParameterError, match="rule 'pr'") as exc:
        RuleExpander(resolver).expand_rules(rules({
            "id": "pr",
            "action": "create-pr",
            "parameters": {"repo": "{{.organization}}/{{.repo_name}}"},
        }), {"organization": "acme"})
    assert exc.value.placeholders == ["repo_name"]


def test_unknown_action(resolver):
    with pytest.raises(ActionResolutionError, match="rule mystery"):
        RuleExpander(resolver).expand_rules(rules({"id": "mystery", "action": "nope"}), {})


def test_condition_errors_name_the_rule(resolver):
    with pytest.raises(ConditionError, match="rule bad"):
        RuleExpander(resolver).expand_rules(rules({"id": "bad", "condition": "1 +", "action": "git-add"}), {})
