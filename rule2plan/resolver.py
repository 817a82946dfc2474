"""
Resolve action names to action configs and executable actions.

Actions are looked up as ``<name>.yaml`` in an ordered list of directories;
the first directory containing the file wins.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml
from pydantic import ValidationError

from rule2plan.actions import Action, ActionConfig, ActionFactory
from rule2plan.errors import ActionResolutionError

log = logging.getLogger(__name__)


def load_action_config(path: Union[str, Path]) -> ActionConfig:
    """Read one action YAML file; the name defaults to the file stem."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ActionResolutionError(f"error reading action file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ActionResolutionError(f"action file {path} must contain a mapping")

    try:
        config = ActionConfig.model_validate(data)
    except ValidationError as e:
        raise ActionResolutionError(f"invalid action file {path}: {e}") from e
    if not config.name:
        config.name = path.stem
    return config


class ActionResolver:
    """Finds actions in *search_paths* (highest precedence first)."""

    def __init__(
        self,
        search_paths: Iterable[Union[str, Path]],
        factory: Optional[ActionFactory] = None,
    ):
        self.search_paths: List[Path] = [Path(p) for p in search_paths]
        if factory is None:
            factory = ActionFactory()
            factory.register_default_types()
        self.factory = factory
        self._configs: Dict[str, ActionConfig] = {}

    def _find(self, name: str) -> Optional[Path]:
        for directory in self.search_paths:
            candidate = directory / f"{name}.yaml"
            if candidate.is_file():
                return candidate
        return None

    def get_action_config(self, name: str) -> ActionConfig:
        if name in self._configs:
            return self._configs[name]
        path = self._find(name)
        if path is None:
            searched = ", ".join(str(p) for p in self.search_paths) or "(no action paths)"
            raise ActionResolutionError(f"action '{name}' not found in any configured location: {searched}")
        config = load_action_config(path)
        self._configs[name] = config
        return config

    def resolve_action(self, name: str) -> Action:
        config = self.get_action_config(name)
        try:
            return self.factory.create(config)
        except ActionResolutionError as e:
            raise ActionResolutionError(f"could not resolve action '{name}': {e}") from e

    def list_available_actions(self) -> Dict[str, ActionConfig]:
        actions: Dict[str, ActionConfig] = {}
        for directory in self.search_paths:
            if not directory.is_dir():
                continue
            for path in sorted(directory.glob("*.yaml")):
                try:
                    config = load_action_config(path)
                except ActionResolutionError as e:
                    log.warning("Skipping invalid action config: %s", e)
                    continue
                actions.setdefault(config.name, config)
        return actions
