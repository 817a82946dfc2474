"""
Parameter materialization.

Rule parameters may contain ``{{.name}}`` placeholders that are filled in
from the fact set.  When the target action declares a JSON-schema-like
parameter schema, substituted strings are coerced to the declared type
(array / number / integer / boolean) on a best-effort basis: a value that
does not parse is left as a string for the action's own validation.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from rule2plan.errors import MissingParameterError

PLACEHOLDER_RE = re.compile(r"\{\{\.([^}]+)\}\}")

_INT_RE = re.compile(r"^[+-]?\d+$")


def _render(value: Any) -> str:
    """String form of a context value inside a template."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def substitute(template: str, context: Mapping[str, Any]) -> str:
    """Replace every ``{{.key}}`` in *template* with its context value.

    Raises ``MissingParameterError`` naming the placeholders that could not
    be resolved.
    """
    missing: List[str] = []

    def _replace(m: re.Match) -> str:
        key = m.group(1).strip()
        if key not in context:
            if key not in missing:
                missing.append(key)
            return m.group(0)
        return _render(context[key])

    result = PLACEHOLDER_RE.sub(_replace, template)
    if missing:
        raise MissingParameterError(missing, repr(template))
    return result


def extract_placeholders(value: Any) -> List[str]:
    """Return placeholder names used anywhere in a raw parameter tree, in order."""
    found: List[str] = []

    def _walk(item: Any) -> None:
        if isinstance(item, str):
            for name in PLACEHOLDER_RE.findall(item):
                name = name.strip()
                if name not in found:
                    found.append(name)
        elif isinstance(item, dict):
            for sub in item.values():
                _walk(sub)
        elif isinstance(item, list):
            for sub in item:
                _walk(sub)

    _walk(value)
    return found


def coerce_value(value: str, declared_type: Optional[str]) -> Any:
    """Coerce a substituted string to *declared_type*; keep the string if it does not parse."""
    text = value.strip()
    if declared_type == "array":
        if text.startswith("[") and text.endswith("]"):
            try:
                parsed = json.loads(text)
            except ValueError:
                return value
            if isinstance(parsed, list):
                return parsed
        return value
    if declared_type == "integer":
        if _INT_RE.match(text):
            return int(text)
        return value
    if declared_type == "number":
        if _INT_RE.match(text):
            return int(text)
        try:
            return float(text)
        except ValueError:
            return value
    if declared_type == "boolean":
        if text == "true":
            return True
        if text == "false":
            return False
        return value
    return value


def _materialize(value: Any, context: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        return substitute(value, context)
    if isinstance(value, list):
        return [_materialize(item, context) for item in value]
    if isinstance(value, dict):
        return {key: _materialize(item, context) for key, item in value.items()}
    return value


def _schema_type(schema: Optional[Mapping[str, Any]], name: str) -> Optional[str]:
    if not schema:
        return None
    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return None
    prop = properties.get(name)
    if not isinstance(prop, dict):
        return None
    declared = prop.get("type")
    return declared if isinstance(declared, str) else None


def materialize_params(
    params: Mapping[str, Any],
    context: Mapping[str, Any],
    schema: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Substitute placeholders in *params* and coerce top-level strings per *schema*."""
    result: Dict[str, Any] = {}
    for key, value in params.items():
        try:
            materialized = _materialize(value, context)
        except MissingParameterError as e:
            raise MissingParameterError(e.placeholders, f"parameter '{key}'") from e
        if isinstance(value, str):
            materialized = coerce_value(materialized, _schema_type(schema, key))
        result[key] = materialized
    return result
