"""
Executable actions and the factory that builds them from action configs.

An action config is a YAML document such as::

    name: create-branch
    type: cli
    command: git
    args: ["checkout", "-b", "{{.branch_name}}"]
    outputs:
      branch_name: {format: text}
    schema:
      type: object
      properties:
        branch_name: {type: string}

Only the ``cli`` type is built in; other types can be registered on an
``ActionFactory``.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rule2plan.errors import ActionResolutionError, MissingParameterError, StepExecutionError
from rule2plan.parameters import substitute

log = logging.getLogger(__name__)


class ActionConfig(BaseModel):
    """Declarative definition of an action, as stored in ``<name>.yaml``."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    type: str = ""
    description: str = ""
    labels: Dict[str, List[str]] = Field(default_factory=dict)
    command: str = ""
    args: List[str] = Field(default_factory=list)
    parameter_schema: Dict[str, Any] = Field(default_factory=dict, alias="schema")
    defaults: Dict[str, Any] = Field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None


class ActionContext(BaseModel):
    """Environment shared by every action a factory creates."""
    working_dir: str = ""
    verbose: bool = False


class Action(ABC):
    """Something a remediation step can run."""

    @abstractmethod
    def execute(self, params: Dict[str, Any]) -> None:
        raise NotImplementedError

    @property
    def description(self) -> str:
        return self.__class__.__name__


class OutputAction(Action):
    """An action that also returns named outputs for later steps."""

    @abstractmethod
    def execute_with_output(self, params: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError


# ── Output parsing ──────────────────────────────────────────────────────────

_INDEX_RE = re.compile(r"^([^\[\]]*)\[(\d+)\]$")


def extract_json_path(obj: Any, path: str) -> Any:
    """Walk a dotted path such as ``items[0].sha`` through parsed JSON."""
    current = obj
    for part in path.split("."):
        m = _INDEX_RE.match(part)
        name, index = (m.group(1), int(m.group(2))) if m else (part, None)
        if name:
            if not isinstance(current, dict):
                raise ValueError(f"not an object at path: {name}")
            current = current.get(name)
        if index is not None:
            if not isinstance(current, list):
                raise ValueError(f"not an array at path: {part}")
            if index >= len(current):
                raise ValueError(f"array index out of bounds: {index}")
            current = current[index]
    return current


def _json_parser(path: str) -> Callable[[str], Any]:
    def parse(text: str) -> Any:
        data = json.loads(text)
        return extract_json_path(data, path) if path else data
    return parse


def _text_parser(pattern: str) -> Callable[[str], Any]:
    def parse(text: str) -> Any:
        if not pattern:
            return text.strip()
        m = re.search(pattern, text)
        if m is None:
            raise ValueError(f"no matches found for pattern: {pattern}")
        return m.group(1) if m.groups() else m.group(0)
    return parse


def build_output_parsers(outputs: Optional[Dict[str, Any]]) -> Dict[str, Callable[[str], Any]]:
    parsers: Dict[str, Callable[[str], Any]] = {}
    for name, definition in (outputs or {}).items():
        if not isinstance(definition, dict):
            continue
        fmt = definition.get("format")
        if fmt == "json":
            parsers[name] = _json_parser(definition.get("path") or "")
        elif fmt == "text":
            parsers[name] = _text_parser(definition.get("pattern") or "")
        else:
            log.warning("Output %s has unsupported format %r; ignoring", name, fmt)
    return parsers


# ── CLI actions ─────────────────────────────────────────────────────────────

class CLIAction(Action):
    """Runs a command line tool with templated arguments."""

    def __init__(self, config: ActionConfig, context: Optional[ActionContext] = None):
        if not config.command:
            raise ActionResolutionError(f"command is required for CLI action '{config.name}'")
        self.config = config
        self.context = context or ActionContext()

    @property
    def description(self) -> str:
        return self.config.description or "Execute a command line tool"

    def build_command(self, params: Dict[str, Any]) -> List[str]:
        values = {**self.config.defaults, **params}
        try:
            command = substitute(self.config.command, values)
            args = [substitute(arg, values) for arg in self.config.args]
        except MissingParameterError as e:
            raise StepExecutionError(f"action '{self.config.name}': {e}") from e
        return [command, *args]

    def _run(self, params: Dict[str, Any]) -> str:
        argv = self.build_command(params)
        log.info("Running: %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                cwd=self.context.working_dir or None,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise StepExecutionError(f"command execution failed: {e}") from e

        if self.context.verbose and proc.stdout:
            print(proc.stdout, end="")
        if proc.returncode != 0:
            detail = proc.stderr.strip() or proc.stdout.strip()
            raise StepExecutionError(
                f"command execution failed: {argv[0]} exited with status {proc.returncode}: {detail}"
            )
        return proc.stdout

    def execute(self, params: Dict[str, Any]) -> None:
        self._run(params)


class OutputCLIAction(CLIAction, OutputAction):
    """A CLI action whose stdout is parsed into named outputs."""

    def __init__(self, config: ActionConfig, context: Optional[ActionContext] = None):
        super().__init__(config, context)
        self.output_parsers = build_output_parsers(config.outputs)

    def execute_with_output(self, params: Dict[str, Any]) -> Dict[str, Any]:
        stdout = self._run(params)
        outputs: Dict[str, Any] = {}
        for name, parser in self.output_parsers.items():
            try:
                outputs[name] = parser(stdout)
            except ValueError as e:
                log.warning("Failed to parse output %s of action %s: %s", name, self.config.name, e)
        return outputs


# ── Factory ─────────────────────────────────────────────────────────────────

ActionCreator = Callable[[ActionConfig, ActionContext], Action]


class ActionFactory:
    """Maps an action config's ``type`` to a creator function."""

    def __init__(self, context: Optional[ActionContext] = None):
        self.context = context or ActionContext()
        self._creators: Dict[str, ActionCreator] = {}

    def register(self, type_name: str, creator: ActionCreator) -> None:
        self._creators[type_name] = creator

    def create(self, config: ActionConfig) -> Action:
        creator = self._creators.get(config.type)
        if creator is None:
            raise ActionResolutionError(f"unknown action type: {config.type!r}")
        return creator(config, self.context)

    def register_default_types(self) -> None:
        def _create_cli(config: ActionConfig, context: ActionContext) -> Action:
            if config.outputs:
                return OutputCLIAction(config, context)
            return CLIAction(config, context)

        self.register("cli", _create_cli)
