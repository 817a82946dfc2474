"""
CEL condition gateway.

Rule conditions are CEL expressions evaluated with **celpy** against a flat
fact context: every fact name is a top-level variable, so a finding such as
``{"has_security_md": false}`` is tested with ``!has_security_md``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import celpy
from celpy import celtypes

from rule2plan.errors import ConditionError

log = logging.getLogger(__name__)


def _cel_split(value: Any, separator: Any) -> celtypes.ListType:
    """``"a,b".split(",")`` member function, missing from the CEL standard library."""
    if not isinstance(value, str) or not isinstance(separator, str):
        raise TypeError("split: unexpected type")
    return celtypes.ListType([celtypes.StringType(part) for part in value.split(separator)])


CUSTOM_FUNCTIONS: Dict[str, Any] = {"split": _cel_split}


def _to_cel_value(value: Any) -> Any:
    """Convert a fact value into something ``celpy.json_to_cel`` accepts."""
    if isinstance(value, dict):
        return {str(k): _to_cel_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_cel_value(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _cel_to_python(value: Any) -> Any:
    """Convert celpy result types back to native Python values."""
    if isinstance(value, celtypes.BoolType):
        return bool(value)
    if isinstance(value, celtypes.ListType):
        return [_cel_to_python(item) for item in value]
    if isinstance(value, celtypes.MapType):
        return {_cel_to_python(k): _cel_to_python(v) for k, v in value.items()}
    if isinstance(value, celtypes.StringType):
        return str(value)
    if isinstance(value, celtypes.IntType):
        return int(value)
    if isinstance(value, celtypes.DoubleType):
        return float(value)
    return value


class ConditionEvaluator:
    """Evaluates CEL expressions against a flat variable context."""

    def __init__(self, functions: Optional[Dict[str, Any]] = None):
        self._env = celpy.Environment()
        self._functions = dict(CUSTOM_FUNCTIONS)
        if functions:
            self._functions.update(functions)

    def _run(self, expression: str, context: Dict[str, Any]) -> Any:
        try:
            ast = self._env.compile(expression)
        except celpy.CELParseError as e:
            raise ConditionError(f"error parsing expression {expression!r}: {e}") from e

        program = self._env.program(ast, functions=self._functions)
        activation = {name: celpy.json_to_cel(_to_cel_value(value)) for name, value in context.items()}
        try:
            result = program.evaluate(activation)
        except celpy.CELEvalError as e:
            raise ConditionError(f"error evaluating expression {expression!r}: {e}") from e
        if isinstance(result, celpy.CELEvalError):
            raise ConditionError(f"error evaluating expression {expression!r}: {result}")
        return result

    def evaluate(self, expression: str, context: Dict[str, Any]) -> bool:
        """Evaluate a boolean CEL expression."""
        result = self._run(expression, context)
        if not isinstance(result, celtypes.BoolType):
            raise ConditionError(
                f"expression {expression!r} did not evaluate to a boolean "
                f"(got {type(result).__name__})"
            )
        log.debug("condition %r -> %s", expression, bool(result))
        return bool(result)

    def evaluate_array(self, expression: str, context: Dict[str, Any]) -> List[str]:
        """Evaluate a CEL expression that yields a list of strings (or one string)."""
        result = _cel_to_python(self._run(expression, context))
        if result is None:
            return []
        if isinstance(result, str):
            return [result]
        if isinstance(result, list):
            return [item if isinstance(item, str) else str(item) for item in result]
        raise ConditionError(
            f"expression {expression!r} did not evaluate to a string array or string, "
            f"got: {type(result).__name__}"
        )
