"""
Loading rule files.

A rule file is YAML (or JSON) with a top-level ``mappings:`` list of
mapping rules.  ``MappingLoader`` resolves rule references relative to a
mappings directory and is what the expander calls for ``ruleRef`` rules.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import yaml
from pydantic import ValidationError

from rule2plan.errors import RuleStructureError
from rule2plan.models import MappingConfig, MappingRule
from rule2plan.parameters import extract_placeholders

log = logging.getLogger(__name__)


def load_mapping_config(path: Union[str, Path]) -> MappingConfig:
    """Read and parse a rule file."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise RuleStructureError(f"error reading mapping file {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as e:
        raise RuleStructureError(f"error parsing mapping file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise RuleStructureError(f"mapping file {path} must contain a 'mappings' list")

    try:
        config = MappingConfig.model_validate(data)
    except ValidationError as e:
        raise RuleStructureError(f"invalid mapping file {path}: {e}") from e

    log.debug("Loaded %d mapping rule(s) from %s", len(config.mappings), path)
    return config


class MappingLoader:
    """Loads referenced rule files, relative to *mappings_dir* unless absolute."""

    def __init__(self, mappings_dir: Optional[Union[str, Path]] = None):
        self.mappings_dir = Path(mappings_dir) if mappings_dir else None

    def resolve_path(self, ref: str) -> Path:
        path = Path(ref).expanduser()
        if not path.is_absolute() and self.mappings_dir is not None:
            path = self.mappings_dir / path
        return path

    def __call__(self, ref: str) -> List[MappingRule]:
        return load_mapping_config(self.resolve_path(ref)).mappings


def _walk_rules(rules: Iterable[MappingRule]) -> Iterable[MappingRule]:
    for rule in rules:
        yield rule
        yield from _walk_rules(rule.steps)


def get_required_parameters(config: MappingConfig) -> List[str]:
    """Sorted names of every ``{{.param}}`` placeholder used by the rules."""
    required: set[str] = set()
    for rule in _walk_rules(config.mappings):
        required.update(extract_placeholders(rule.parameters))
    return sorted(required)
