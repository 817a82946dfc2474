import pytest

from rule2plan.condition import ConditionEvaluator
from rule2plan.errors import ConditionError


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


def test_simple_comparison(evaluator):
    assert evaluator.evaluate("x == 1", {"x": 1}) is True
    assert evaluator.evaluate("x == 1", {"x": 2}) is False


def test_boolean_facts_and_negation(evaluator):
    facts = {"has_security_md": False, "mfa_enabled": True}
    assert evaluator.evaluate("!has_security_md && mfa_enabled", facts) is True


def test_list_macros(evaluator):
    facts = {"failed_controls": ["OSPS-VM-04.01", "OSPS-GV-03.01"]}
    assert evaluator.evaluate("failed_controls.exists(c, c == 'OSPS-VM-04.01')", facts) is True
    assert evaluator.evaluate("'OSPS-LE-02.01' in failed_controls", facts) is False
    assert evaluator.evaluate("size(failed_controls) == 2", facts) is True


def test_nested_maps(evaluator):
    facts = {"repo": {"settings": {"branch_protection": False}}}
    assert evaluator.evaluate("!repo.settings.branch_protection", facts) is True


def test_non_boolean_result_is_rejected(evaluator):
    with pytest.raises(ConditionError, match="did not evaluate to a boolean"):
        evaluator.evaluate("x + 1", {"x": 1})


def test_parse_error(evaluator):
    with pytest.raises(ConditionError, match="error parsing"):
        evaluator.evaluate("x ==", {"x": 1})


def test_evaluate_array(evaluator):
    facts = {"files": ["SECURITY.md", "README.md"], "extra": "LICENSE"}
    assert evaluator.evaluate_array("files + [extra]", facts) == ["SECURITY.md", "README.md", "LICENSE"]
    assert evaluator.evaluate_array("extra", facts) == ["LICENSE"]
    assert evaluator.evaluate_array("files.filter(f, f.endsWith('.md'))", facts) == ["SECURITY.md", "README.md"]


def test_evaluate_array_rejects_other_types(evaluator):
    with pytest.raises(ConditionError, match="string array"):
        evaluator.evaluate_array("1 + 1", {})
