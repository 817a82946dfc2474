"""
Pydantic models for mapping rules and remediation plans.

Serialized field names are camelCase (``actionName``, ``dependsOn``, …);
Python attributes are snake_case.  Both spellings are accepted on load, and
rule files may also use the older ``mapping_ref`` key for ``ruleRef``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StepStatus = Literal["pending", "running", "success", "failure"]

PENDING: StepStatus = "pending"
RUNNING: StepStatus = "running"
SUCCESS: StepStatus = "success"
FAILURE: StepStatus = "failure"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Rule tree ───────────────────────────────────────────────────────────────

class MappingRule(_CamelModel):
    """A node in the rule tree: a condition plus an action, sub-steps or a rule-file reference."""
    id: str = Field(default="", description="Unique within its rule file.")
    condition: str = Field(default="", description="CEL boolean expression; empty always matches.")
    rule_ref: str = Field(
        default="",
        validation_alias=AliasChoices("ruleRef", "rule_ref", "mappingRef", "mapping_ref"),
        description="Another rule file to include in place of this rule.",
    )
    action: str = Field(default="", description="Action to run; required on leaf rules.")
    reason: str = Field(default="", description="Why this remediation is proposed.")
    labels: dict[str, list[str]] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    once: bool = Field(default=False, description="Run this action at most once per plan.")
    steps: list[MappingRule] = Field(default_factory=list)
    output_refs: dict[str, str] = Field(
        default_factory=dict,
        description="param -> '<siblingId>.<outputName>' resolved at execution time.",
    )
    outputs: Optional[dict[str, Any]] = Field(
        default=None,
        description="Statically declared outputs, recorded when the step succeeds.",
    )

    @property
    def is_composite(self) -> bool:
        return bool(self.rule_ref or self.steps)


class MappingConfig(_CamelModel):
    """Contents of one rule file."""
    mappings: list[MappingRule] = Field(default_factory=list)


# ── Plan ────────────────────────────────────────────────────────────────────

class RemediationStep(_CamelModel):
    """One concrete unit of work bound to an action and materialized parameters."""
    id: str
    action_name: str
    params: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    depends_on: list[str] = Field(default_factory=list)
    outputs: Optional[dict[str, Any]] = None
    output_refs: dict[str, str] = Field(default_factory=dict)
    status: StepStatus = PENDING
    error: Optional[str] = None


class RemediationPlan(_CamelModel):
    project_name: str = "Unknown Project"
    repository: str = "Unknown Repository"
    steps: list[RemediationStep] = Field(default_factory=list)

    def step(self, step_id: str) -> Optional[RemediationStep]:
        for candidate in self.steps:
            if candidate.id == step_id:
                return candidate
        return None

    def to_json(self, indent: int = 2) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)

    @classmethod
    def from_json(cls, text: str) -> RemediationPlan:
        return cls.model_validate_json(text)


class ExecutionOptions(_CamelModel):
    """Options for one plan run; immutable once created."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    dry_run: bool = False
    verbose_logging: bool = False
    continue_on_error: bool = False
    working_dir: str = ""
