"""
Infer plan parameters from a local repository checkout.
"""

from __future__ import annotations

import json
import logging
import subprocess
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union

log = logging.getLogger(__name__)


def _git_remote_url(repo_path: Path) -> Optional[str]:
    try:
        proc = subprocess.run(
            ["git", "config", "--get", "remote.origin.url"],
            cwd=repo_path,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        log.debug("git not available: %s", e)
        return None
    url = proc.stdout.strip()
    if proc.returncode != 0 or not url:
        return None
    return url


def parse_remote_url(url: str) -> Dict[str, str]:
    """Split ``https://host/org/repo.git`` or ``git@host:org/repo.git`` into org and repo name."""
    params: Dict[str, str] = {"project_repo": url}
    parts = url.replace(":", "/").rstrip("/").split("/")
    if len(parts) >= 2:
        params["organization"] = parts[-2]
        params["repo_name"] = parts[-1].removesuffix(".git")
    return params


def _project_name(repo_path: Path) -> Optional[str]:
    package_json = repo_path / "package.json"
    if package_json.is_file():
        try:
            name = json.loads(package_json.read_text(encoding="utf-8")).get("name")
        except (OSError, ValueError, AttributeError) as e:
            log.debug("Could not read %s: %s", package_json, e)
        else:
            if isinstance(name, str) and name:
                return name

    pyproject = repo_path / "pyproject.toml"
    if pyproject.is_file():
        try:
            with open(pyproject, "rb") as f:
                name = tomllib.load(f).get("project", {}).get("name")
        except (OSError, tomllib.TOMLDecodeError) as e:
            log.debug("Could not read %s: %s", pyproject, e)
        else:
            if isinstance(name, str) and name:
                return name
    return None


def infer_parameters_from_repo(repo_path: Union[str, Path, None] = None) -> Dict[str, Any]:
    """Collect ``project_repo``, ``organization``, ``repo_name`` and ``project_name``.

    Anything that cannot be determined is simply left out.
    """
    path = Path(repo_path) if repo_path else Path.cwd()
    if not path.is_dir():
        raise FileNotFoundError(f"repository path does not exist: {path}")

    params: Dict[str, Any] = {}
    url = _git_remote_url(path)
    if url:
        params.update(parse_remote_url(url))

    name = _project_name(path)
    if name:
        params["project_name"] = name

    log.debug("Inferred parameters from %s: %s", path, params)
    return params
