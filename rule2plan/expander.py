"""
Expand mapping rules into flat remediation steps.

Rules come in three shapes:

* **leaf**   – ``action`` plus ``parameters``; becomes one step.
* **steps**  – an inline sub-workflow; children run sequentially unless
  they declare their own ``dependsOn``.
* **ruleRef** – includes another rule file; this rule's ``parameters``
  override the included rules' parameters.

Children of a composite rule get ``<parentId>-<childId>`` ids, and their
``dependsOn`` / ``outputRefs`` are rewritten the same way, so ids stay
unique however deep the nesting goes.

Within one scope (a rule file, or one composite's children) a dependency on
a sibling is resolved after expansion:

* a sibling that produced several steps stands for all of them;
* a sibling that produced nothing (condition false, or skipped because of
  ``once``) stands for its own dependencies, so sequential chains survive
  a skipped link.

Steps of a composite rule that have no dependency inside the composite
inherit the composite's own dependencies.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from rule2plan.condition import ConditionEvaluator
from rule2plan.errors import (
    ActionResolutionError,
    CircularReferenceError,
    ConditionError,
    MissingParameterError,
    RuleStructureError,
)
from rule2plan.models import MappingRule, RemediationStep
from rule2plan.parameters import materialize_params

log = logging.getLogger(__name__)

RuleLoader = Callable[[str], List[MappingRule]]


def _child_id(parent_id: str, child_id: str) -> str:
    if parent_id and child_id:
        return f"{parent_id}-{child_id}"
    return child_id


def _prefix_output_ref(parent_id: str, ref: str) -> str:
    source, sep, output = ref.partition(".")
    if not sep:
        return ref
    return f"{_child_id(parent_id, source)}.{output}"


def _scoped(child: MappingRule, parent_id: str, depends_on: Optional[List[str]] = None) -> MappingRule:
    """Copy *child* with its id, dependencies and output refs prefixed by *parent_id*."""
    deps = child.depends_on if depends_on is None else depends_on
    return child.model_copy(update={
        "id": _child_id(parent_id, child.id),
        "depends_on": [_child_id(parent_id, dep) for dep in deps],
        "output_refs": {
            param: _prefix_output_ref(parent_id, ref) for param, ref in child.output_refs.items()
        },
    })


def _with_overrides(rule: MappingRule, overrides: Dict[str, Any]) -> MappingRule:
    """Apply *overrides* on top of the parameters of *rule* and all its inline steps."""
    if not overrides:
        return rule
    return rule.model_copy(update={
        "parameters": {**rule.parameters, **overrides},
        "steps": [_with_overrides(step, overrides) for step in rule.steps],
    })


def _merge_unique(*groups: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return merged


def _resolve_aliases(deps: Sequence[str], produced: Dict[str, List[str]]) -> List[str]:
    resolved: List[str] = []

    def visit(dep: str, seen: frozenset) -> None:
        targets = produced.get(dep)
        if targets is None or targets == [dep]:
            if dep not in resolved:
                resolved.append(dep)
            return
        if dep in seen:
            return
        for target in targets:
            visit(target, seen | {dep})

    for dep in deps:
        visit(dep, frozenset())
    return resolved


class RuleExpander:
    """Turns matching rules into remediation steps.

    *resolver* supplies ``get_action_config(name)`` (for parameter schemas),
    *evaluator* evaluates conditions, *loader* loads referenced rule files.
    """

    def __init__(
        self,
        resolver: Any,
        evaluator: Optional[ConditionEvaluator] = None,
        loader: Optional[RuleLoader] = None,
    ):
        self.resolver = resolver
        self.evaluator = evaluator or ConditionEvaluator()
        self.loader = loader

    def expand_rules(self, rules: Sequence[MappingRule], facts: Dict[str, Any]) -> List[RemediationStep]:
        """Expand a root rule set; steps come back in declaration order."""
        dedup: Set[str] = set()
        return self._expand_scope(list(rules), facts, dedup, [])

    def expand(
        self,
        rule: MappingRule,
        facts: Dict[str, Any],
        dedup: Set[str],
        ref_history: List[str],
    ) -> List[RemediationStep]:
        """Expand one rule (and everything under it) against *facts*.

        *dedup* collects action names already planned; *ref_history* is the
        chain of rule files being included.
        """
        if rule.rule_ref and rule.rule_ref in ref_history:
            raise CircularReferenceError([*ref_history, rule.rule_ref])

        if not self._matches(rule, facts):
            log.debug("Rule %s did not match", rule.id or "(anonymous)")
            return []

        if rule.rule_ref:
            return self._expand_reference(rule, facts, dedup, ref_history)

        if rule.steps:
            return self._expand_steps(rule, facts, dedup, ref_history)

        if not rule.action:
            raise RuleStructureError(
                f"rule '{rule.id}' has no action, steps, or rule reference"
            )
        return self._expand_leaf(rule, facts, dedup)

    # ── internals ───────────────────────────────────────────────────────────

    def _matches(self, rule: MappingRule, facts: Dict[str, Any]) -> bool:
        if not rule.condition.strip():
            return True
        try:
            return self.evaluator.evaluate(rule.condition, facts)
        except ConditionError as e:
            raise ConditionError(f"error evaluating rule {rule.id}: {e}") from e

    def _expand_reference(self, rule, facts, dedup, ref_history) -> List[RemediationStep]:
        if self.loader is None:
            raise RuleStructureError(
                f"rule '{rule.id}' references '{rule.rule_ref}' but no rule loader is configured"
            )
        log.info("Processing rule reference: %s", rule.rule_ref)
        children = self.loader(rule.rule_ref)
        scoped = [_scoped(_with_overrides(child, rule.parameters), rule.id) for child in children]
        return self._expand_scope(scoped, facts, dedup, [*ref_history, rule.rule_ref])

    def _expand_steps(self, rule, facts, dedup, ref_history) -> List[RemediationStep]:
        scoped: List[MappingRule] = []
        previous: Optional[MappingRule] = None
        for child in rule.steps:
            deps = None
            if not child.depends_on and previous is not None and previous.id:
                deps = [previous.id]
            scoped.append(_scoped(child, rule.id, deps))
            previous = child
        return self._expand_scope(scoped, facts, dedup, ref_history)

    def _expand_scope(self, children, facts, dedup, ref_history) -> List[RemediationStep]:
        steps: List[RemediationStep] = []
        produced: Dict[str, List[str]] = {}

        for child in children:
            emitted = self.expand(child, facts, dedup, ref_history)
            ids = [step.id for step in emitted]

            if emitted and child.is_composite and child.depends_on:
                inner = set(ids)
                for step in emitted:
                    if not inner.intersection(step.depends_on):
                        step.depends_on = _merge_unique(child.depends_on, step.depends_on)

            if child.id:
                produced[child.id] = ids if emitted else list(child.depends_on)
            steps.extend(emitted)

        for step in steps:
            step.depends_on = _resolve_aliases(step.depends_on, produced)
        return steps

    def _expand_leaf(self, rule: MappingRule, facts: Dict[str, Any], dedup: Set[str]) -> List[RemediationStep]:
        if rule.once and rule.action in dedup:
            log.info("Skipping duplicate action '%s' (once: true)", rule.action)
            return []
        if not rule.id:
            raise RuleStructureError(f"rule for action '{rule.action}' has no id")

        try:
            config = self.resolver.get_action_config(rule.action)
        except ActionResolutionError as e:
            raise ActionResolutionError(f"error getting action config for rule {rule.id}: {e}") from e

        try:
            params = materialize_params(rule.parameters, facts, config.parameter_schema)
        except MissingParameterError as e:
            raise MissingParameterError(e.placeholders, f"rule '{rule.id}'") from e

        dedup.add(rule.action)
        log.debug("Planned step %s (action %s)", rule.id, rule.action)
        return [RemediationStep(
            id=rule.id,
            action_name=rule.action,
            params=params,
            reason=rule.reason,
            depends_on=list(rule.depends_on),
            output_refs=dict(rule.output_refs),
            outputs=dict(rule.outputs) if rule.outputs is not None else None,
        )]
