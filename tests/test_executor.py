from unittest.mock import MagicMock

import pytest

from rule2plan.actions import Action
from rule2plan.errors import OutputReferenceError, PlanExecutionError, StepExecutionError
from rule2plan.executor import PlanExecutor, StepExecutor
from rule2plan.models import ExecutionOptions, RemediationPlan, RemediationStep


def make_plan(*steps):
    return RemediationPlan(project_name="demo", steps=list(steps))


def test_output_reference_feeds_later_step(resolver):
    resolver.add("git-commit", outputs={"commit_hash": "abc123"})
    resolver.add("tag")
    a = RemediationStep(id="a", action_name="git-commit", params={"message": "m"})
    b = RemediationStep(id="b", action_name="tag", depends_on=["a"], output_refs={"hash": "a.commit_hash"})

    executor = PlanExecutor(resolver)
    summary = executor.execute_plan(make_plan(a, b))

    assert b.params["hash"] == "abc123"
    assert a.outputs == {"commit_hash": "abc123"}
    assert executor.step_outputs["a"] == {"commit_hash": "abc123"}
    assert (summary.succeeded, summary.failed, summary.total) == (2, 0, 2)
    assert resolver.calls == [("git-commit", {"message": "m"}), ("tag", {"hash": "abc123"})]


def test_dry_run_never_invokes_actions(capsys):
    action = MagicMock()
    resolver = MagicMock()
    resolver.resolve_action.return_value = action
    plan = make_plan(
        RemediationStep(id="a", action_name="create-branch", params={"branch_name": "fix"}),
        RemediationStep(id="b", action_name="git-push", depends_on=["a"]),
    )

    PlanExecutor(resolver, ExecutionOptions(dry_run=True)).execute_plan(plan)

    assert [s.status for s in plan.steps] == ["success", "success"]
    action.execute.assert_not_called()
    action.execute_with_output.assert_not_called()
    out = capsys.readouterr().out
    assert "Would execute action 'create-branch' with parameters:" in out
    assert '"branch_name": "fix"' in out


def test_dry_run_records_static_outputs():
    resolver = MagicMock()
    a = RemediationStep(id="a", action_name="add-security-md", outputs={"file_path": "SECURITY.md"})
    b = RemediationStep(id="b", action_name="git-add", output_refs={"files": "a.file_path"})

    PlanExecutor(resolver, ExecutionOptions(dry_run=True)).execute_plan(make_plan(a, b))

    assert b.params == {"files": "SECURITY.md"}
    assert b.status == "success"


def test_failure_stops_the_run(resolver):
    resolver.add("git-commit", fail=True)
    plan = make_plan(
        RemediationStep(id="a", action_name="git-add"),
        RemediationStep(id="b", action_name="git-commit"),
        RemediationStep(id="c", action_name="git-push"),
    )

    with pytest.raises(StepExecutionError) as exc:
        PlanExecutor(resolver).execute_plan(plan)

    assert exc.value.step_id == "b"
    assert [s.status for s in plan.steps] == ["success", "failure", "pending"]
    assert "git-commit failed" in plan.steps[1].error


def test_continue_on_error_runs_everything_and_reports(resolver):
    resolver.add("git-commit", fail=True)
    plan = make_plan(
        RemediationStep(id="a", action_name="git-commit"),
        RemediationStep(id="b", action_name="git-push", depends_on=["a"]),
        RemediationStep(id="c", action_name="create-pr"),
    )

    with pytest.raises(PlanExecutionError) as exc:
        PlanExecutor(resolver, ExecutionOptions(continue_on_error=True)).execute_plan(plan)

    assert (exc.value.succeeded, exc.value.failed, exc.value.total) == (2, 1, 3)
    assert str(exc.value) == "1 of 3 steps failed during execution"
    # dependents of a failed step still run
    assert [s.status for s in plan.steps] == ["failure", "success", "success"]


def test_unknown_action_fails_the_step(resolver):
    step = RemediationStep(id="a", action_name="does-not-exist")
    with pytest.raises(StepExecutionError, match="error resolving action 'does-not-exist'"):
        StepExecutor(resolver).execute_step(step)
    assert step.status == "failure"


@pytest.mark.parametrize("ref, message", [
    ("no-dot", "invalid output reference format: no-dot"),
    ("a.b.c", "invalid output reference format: a.b.c"),
    ("ghost.value", "referenced step ghost not found or has not completed"),
    ("a.missing", "output missing not found in step a"),
])
def test_output_reference_errors(resolver, ref, message):
    executor = StepExecutor(resolver)
    executor.step_outputs["a"] = {"value": 1}
    step = RemediationStep(id="b", action_name="git-add", output_refs={"x": ref})

    with pytest.raises(OutputReferenceError, match=message):
        executor.execute_step(step)
    assert step.status == "failure"
    assert message in step.error
    assert resolver.calls == []


def test_outputs_only_recorded_after_success(resolver):
    resolver.add("git-commit", outputs={"commit_hash": "abc"}, fail=True)
    executor = StepExecutor(resolver)
    step = RemediationStep(id="a", action_name="git-commit")

    with pytest.raises(StepExecutionError):
        executor.execute_step(step)
    assert "a" not in executor.step_outputs
    assert step.outputs is None


class Exploding(Action):
    def execute(self, params):
        raise RuntimeError("boom")


@pytest.mark.parametrize("continue_on_error, expected", [
    (False, ["failure", "pending"]),
    (True, ["failure", "success"]),
])
def test_unexpected_action_error_fails_the_step(resolver, continue_on_error, expected):
    resolver.actions["git-add"] = Exploding()
    plan = make_plan(
        RemediationStep(id="a", action_name="git-add"),
        RemediationStep(id="b", action_name="git-commit"),
    )

    executor = PlanExecutor(resolver, ExecutionOptions(continue_on_error=continue_on_error))
    error = PlanExecutionError if continue_on_error else StepExecutionError
    with pytest.raises(error):
        executor.execute_plan(plan)

    assert [s.status for s in plan.steps] == expected
    assert plan.steps[0].error == "execution failed: boom"


def test_unexpected_resolver_error_fails_the_step():
    resolver = MagicMock()
    resolver.resolve_action.side_effect = TypeError("bad creator")
    step = RemediationStep(id="a", action_name="git-add")

    with pytest.raises(StepExecutionError, match="error resolving action 'git-add': bad creator"):
        StepExecutor(resolver).execute_step(step)
    assert step.status == "failure"
