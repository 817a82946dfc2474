from typing import Any, Dict, List, Optional

import pytest

from rule2plan.actions import Action, ActionConfig, OutputAction
from rule2plan.errors import ActionResolutionError, StepExecutionError


class RecordingAction(Action):
    def __init__(self, name: str, calls: List[tuple], fail: bool = False):
        self.name = name
        self.calls = calls
        self.fail = fail

    def execute(self, params: Dict[str, Any]) -> None:
        self.calls.append((self.name, dict(params)))
        if self.fail:
            raise StepExecutionError(f"{self.name} failed")


class RecordingOutputAction(RecordingAction, OutputAction):
    def __init__(self, name: str, calls: List[tuple], outputs: Dict[str, Any], fail: bool = False):
        super().__init__(name, calls, fail)
        self.outputs = outputs

    def execute_with_output(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.execute(params)
        return dict(self.outputs)


class FakeResolver:
    """In-memory stand-in for ``ActionResolver``.

    Every action listed in *schemas* is known; unknown names raise
    ``ActionResolutionError`` just like the file-backed resolver.
    """

    def __init__(self, schemas: Optional[Dict[str, Dict[str, Any]]] = None):
        self.schemas = schemas or {}
        self.actions: Dict[str, Action] = {}
        self.calls: List[tuple] = []

    def add(self, name: str, schema: Optional[Dict[str, Any]] = None,
            outputs: Optional[Dict[str, Any]] = None, fail: bool = False) -> None:
        self.schemas[name] = schema or {}
        if outputs is not None:
            self.actions[name] = RecordingOutputAction(name, self.calls, outputs, fail)
        else:
            self.actions[name] = RecordingAction(name, self.calls, fail)

    def get_action_config(self, name: str) -> ActionConfig:
        if name not in self.schemas:
            raise ActionResolutionError(f"action '{name}' not found")
        return ActionConfig(name=name, type="fake", schema=self.schemas[name])

    def resolve_action(self, name: str) -> Action:
        self.get_action_config(name)
        if name not in self.actions:
            self.actions[name] = RecordingAction(name, self.calls)
        return self.actions[name]


@pytest.fixture
def resolver():
    r = FakeResolver()
    for name in ("create-branch", "add-security-md", "git-add", "git-commit", "git-push", "create-pr", "enable-mfa"):
        r.add(name)
    r.schemas["add-security-md"] = {
        "type": "object",
        "properties": {"name": {"type": "string"}, "emails": {"type": "array"}},
    }
    return r
