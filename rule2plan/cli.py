"""
Command line interface.

Usage:
    rule2plan generate report.json -m library/mappings/security-md-workflow.yaml -o plan.json
    rule2plan validate plan.json
    rule2plan execute plan.json --dry-run
    rule2plan graph plan.json --html plan_graph.html
    rule2plan params --repo . -m library/mappings/security-md-workflow.yaml
    rule2plan actions
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from rule2plan.actions import ActionContext, ActionFactory
from rule2plan.config import Settings, load_settings
from rule2plan.errors import ExecutionError, PlanError
from rule2plan.graph import build_plan_graph, export_plan_graph, print_plan_summary
from rule2plan.inference import infer_parameters_from_repo
from rule2plan.mappings import get_required_parameters, load_mapping_config
from rule2plan.models import ExecutionOptions
from rule2plan.planner import (
    GenerateOptions,
    build_fact_set,
    execute_plan,
    generate_remediation_plan,
    load_extra_parameters,
    load_plan_file,
    parse_report_file,
    save_plan_to_file,
    validate_plan,
)
from rule2plan.resolver import ActionResolver

log = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s  %(levelname)-8s  %(message)s",
        datefmt="%H:%M:%S",
    )


def build_resolver(settings: Settings, working_dir: str = "", verbose: bool = False) -> ActionResolver:
    working_dir = working_dir or settings.working_dir or os.getcwd()
    factory = ActionFactory(ActionContext(working_dir=working_dir, verbose=verbose))
    factory.register_default_types()
    return ActionResolver(settings.action_paths(), factory)


def _parse_param(text: str) -> tuple[str, object]:
    """``key=value``; the value is parsed as JSON when possible, else kept as a string."""
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {text!r}")
    try:
        return key, json.loads(value)
    except ValueError:
        return key, value


# ── Commands ──────────────────────────────────────────────────────────────────

def cmd_generate(args: argparse.Namespace, settings: Settings) -> int:
    report = parse_report_file(args.report)
    extra = load_extra_parameters(args.params_file or "", args.params_json or "")
    extra.update(dict(args.param or []))

    options = GenerateOptions(
        defaults_path=args.defaults or settings.defaults_file,
        repo_path=args.repo or "",
        mappings_dir=args.mappings_dir or settings.mappings_dir,
        extra_params=extra,
        skip_defaults=args.skip_defaults,
        skip_repo_inference=args.skip_inference,
        non_interactive=args.non_interactive,
        verbose=args.verbose,
    )
    resolver = build_resolver(settings, verbose=args.verbose)
    plan = generate_remediation_plan(report, args.mappings, options, resolver)

    if args.output:
        save_plan_to_file(plan, args.output)
        print(f"Remediation plan saved to {args.output} ({len(plan.steps)} steps)")
    else:
        validate_plan(plan)
        print(plan.to_json())
    return 0


def cmd_validate(args: argparse.Namespace, settings: Settings) -> int:
    plan = load_plan_file(args.plan)
    validate_plan(plan)
    print(f"Plan is valid: {len(plan.steps)} steps for {plan.project_name} ({plan.repository})")
    return 0


def cmd_execute(args: argparse.Namespace, settings: Settings) -> int:
    plan = load_plan_file(args.plan)
    validate_plan(plan)

    working_dir = args.working_dir or settings.working_dir
    options = ExecutionOptions(
        dry_run=args.dry_run,
        verbose_logging=args.verbose,
        continue_on_error=args.continue_on_error,
        working_dir=working_dir,
    )
    resolver = build_resolver(settings, working_dir=working_dir, verbose=args.verbose)

    if args.dry_run:
        print(f"Dry run of plan for {plan.project_name} ({len(plan.steps)} steps)")
    try:
        execute_plan(plan, options, resolver)
    finally:
        if args.save_status:
            Path(args.save_status).write_text(plan.to_json() + "\n", encoding="utf-8")
    return 0


def cmd_graph(args: argparse.Namespace, settings: Settings) -> int:
    G = build_plan_graph(load_plan_file(args.plan))
    print_plan_summary(G)
    if args.html:
        export_plan_graph(G, args.html)
    return 0


def cmd_params(args: argparse.Namespace, settings: Settings) -> int:
    options = GenerateOptions(
        defaults_path=args.defaults or settings.defaults_file,
        repo_path=args.repo or "",
    )
    facts = build_fact_set({}, options)
    print("Known parameters:")
    for key in sorted(facts):
        print(f"  {key}: {facts[key]}")

    if args.mappings:
        required = get_required_parameters(load_mapping_config(args.mappings))
        missing = [name for name in required if name not in facts]
        print(f"\nParameters used by {args.mappings}: {', '.join(required) or '(none)'}")
        if missing:
            print(f"Missing: {', '.join(missing)}")
    return 0


def cmd_infer(args: argparse.Namespace, settings: Settings) -> int:
    print(json.dumps(infer_parameters_from_repo(args.repo or None), indent=2))
    return 0


def cmd_actions(args: argparse.Namespace, settings: Settings) -> int:
    resolver = build_resolver(settings)
    actions = resolver.list_available_actions()
    if not actions:
        print("No actions found in: " + ", ".join(str(p) for p in resolver.search_paths))
        return 0
    width = max(len(name) for name in actions)
    for name in sorted(actions):
        config = actions[name]
        print(f"  {name:<{width}}  [{config.type}]  {config.description}")
    return 0


# ── Parser ────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rule2plan",
        description="Compile findings reports into remediation plans and execute them.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output.")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate a remediation plan from a report.")
    gen.add_argument("report", help="Findings report (JSON or YAML).")
    gen.add_argument("--mappings", "-m", required=True, help="Rule file to evaluate.")
    gen.add_argument("--mappings-dir", "-d", default=None,
                     help="Directory for resolving rule references (default: RULE2PLAN_MAPPINGS_DIR).")
    gen.add_argument("--output", "-o", default=None, help="Write the plan here instead of stdout.")
    gen.add_argument("--param", action="append", type=_parse_param, metavar="KEY=VALUE",
                     help="Extra parameter; overrides every other source. May be repeated.")
    gen.add_argument("--params-file", "-p", default=None, help="JSON or YAML file with extra parameters.")
    gen.add_argument("--params-json", default=None, help="JSON object with extra parameters.")
    gen.add_argument("--repo", "-r", default=None, help="Repository to infer parameters from.")
    gen.add_argument("--defaults", default=None, help="Default parameters file.")
    gen.add_argument("--skip-defaults", action="store_true", help="Do not load default parameters.")
    gen.add_argument("--skip-inference", action="store_true", help="Do not infer parameters from the repository.")
    gen.add_argument("--non-interactive", "-n", action="store_true",
                     help="Do not prompt for missing parameters.")
    gen.set_defaults(func=cmd_generate)

    exe = sub.add_parser("execute", help="Execute a remediation plan.")
    exe.add_argument("plan", help="Plan JSON file.")
    exe.add_argument("--dry-run", action="store_true", help="Print what would run without running it.")
    exe.add_argument("--continue-on-error", action="store_true", help="Keep going after a step fails.")
    exe.add_argument("--working-dir", "-w", default=None, help="Directory actions run in.")
    exe.add_argument("--save-status", default=None, metavar="FILE",
                     help="Write the plan with per-step status here after the run.")
    exe.set_defaults(func=cmd_execute)

    val = sub.add_parser("validate", help="Validate a remediation plan.")
    val.add_argument("plan", help="Plan JSON file.")
    val.set_defaults(func=cmd_validate)

    gr = sub.add_parser("graph", help="Summarise a plan's dependency graph.")
    gr.add_argument("plan", help="Plan JSON file.")
    gr.add_argument("--html", default=None, help="Also export an interactive HTML graph.")
    gr.set_defaults(func=cmd_graph)

    par = sub.add_parser("params", help="Show the parameters available to rules.")
    par.add_argument("--repo", "-r", default=None, help="Repository to infer parameters from.")
    par.add_argument("--defaults", default=None, help="Default parameters file.")
    par.add_argument("--mappings", "-m", default=None, help="Also list the parameters this rule file uses.")
    par.set_defaults(func=cmd_params)

    inf = sub.add_parser("infer", help="Print parameters inferred from a repository as JSON.")
    inf.add_argument("repo", nargs="?", default=None, help="Repository path (default: current dir).")
    inf.set_defaults(func=cmd_infer)

    act = sub.add_parser("actions", help="List available actions.")
    act.set_defaults(func=cmd_actions)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    settings = load_settings()
    configure_logging("DEBUG" if args.verbose else settings.log_level)

    try:
        code = args.func(args, settings)
    except (PlanError, ExecutionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
