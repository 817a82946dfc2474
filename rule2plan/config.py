"""
Runtime settings, read from the environment (and a ``.env`` file).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MAPPINGS_DIR = "library/mappings"
DEFAULT_ACTIONS_DIRS = "library/actions"


class Settings(BaseModel):
    mappings_dir: str = DEFAULT_MAPPINGS_DIR
    actions_dirs: List[str] = Field(default_factory=lambda: [DEFAULT_ACTIONS_DIRS])
    defaults_file: str = ""
    log_level: str = "INFO"
    working_dir: str = ""

    def action_paths(self, base: Optional[Path] = None) -> List[Path]:
        """Action directories, relative ones resolved against *base* (the working dir by default)."""
        base = base or Path(self.working_dir or os.getcwd())
        paths = []
        for entry in self.actions_dirs:
            path = Path(entry).expanduser()
            paths.append(path if path.is_absolute() else base / path)
        return paths


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from *env*; with no argument, ``.env`` is loaded into ``os.environ`` first."""
    if env is None:
        load_dotenv()
        env = os.environ

    actions = env.get("RULE2PLAN_ACTIONS_DIRS", DEFAULT_ACTIONS_DIRS)
    return Settings(
        mappings_dir=env.get("RULE2PLAN_MAPPINGS_DIR", DEFAULT_MAPPINGS_DIR),
        actions_dirs=[entry for entry in actions.split(os.pathsep) if entry],
        defaults_file=env.get("RULE2PLAN_DEFAULTS_FILE", ""),
        log_level=env.get("RULE2PLAN_LOG_LEVEL", "INFO").upper(),
        working_dir=env.get("RULE2PLAN_WORKING_DIR", ""),
    )
