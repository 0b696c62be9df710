"""Command-line interface router for issue-autopilot."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from issue_autopilot.config import (
    AutopilotSettings,
    ConfigLoadError,
    ConfigValidationError,
    CustomRule,
    dump_effective_config,
    load_config,
    redact_config,
)
from issue_autopilot.control_plane import JsonlRunStore, LoggingNotifier, WorkflowController
from issue_autopilot.domain.models import (
    Analysis,
    ChangeSet,
    WorkflowRecord,
    WorkflowState,
    WorkItem,
)
from issue_autopilot.errors import CollaboratorError, WorkItemValidationError
from issue_autopilot.integration_plane import (
    FileIssueSource,
    GitWorktreeWorkspaceProvider,
    IssueFilter,
    LocalDirectoryWorkspaceProvider,
    LocalJsonPublisher,
    WorkspaceProvider,
)
from issue_autopilot.observability import EventBus, LoggingConfig, configure_logging
from issue_autopilot.synthesis_plane import (
    RecordedOracle,
    ResolutionLoop,
    TranscriptError,
    WorkItemClassifier,
)
from issue_autopilot.verification_plane import ReviewEngine, load_custom_rules

RUN_LOG_FILENAME: Final[str] = "runs.jsonl"
WORKSPACE_KINDS: Final[tuple[str, ...]] = ("local", "git")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="issue-autopilot",
        description=(
            "issue-autopilot: classify, resolve, review and publish fixes for tracked issues.\n\n"
            "Common workflows:\n"
            "  issue-autopilot classify issues.yaml --oracle transcript.yaml\n"
            "  issue-autopilot review change.json\n"
            "  issue-autopilot run issues.yaml --oracle transcript.yaml\n"
            "  issue-autopilot config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to autopilot TOML config (default: ./autopilot.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name (strict, permissive).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log at DEBUG level to stderr.",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # classify ------------------------------------------------------------
    classify_parser = subparsers.add_parser(
        "classify",
        parents=[common],
        help="Analyze work items for automated-resolution feasibility",
    )
    classify_parser.add_argument("issues", help="JSON or YAML file holding work items")
    classify_parser.add_argument(
        "--oracle", dest="transcript", required=True, help="Recorded oracle transcript"
    )
    classify_parser.add_argument(
        "--item", dest="item_ids", action="append", default=[], help="Restrict to an item id"
    )
    classify_parser.set_defaults(handler=_cmd_classify)

    # review --------------------------------------------------------------
    review_parser = subparsers.add_parser(
        "review",
        parents=[common],
        help="Review a change set stored as JSON",
    )
    review_parser.add_argument("change_set", help="JSON file holding a change set")
    review_parser.add_argument(
        "--rules", default=None, help="Extra YAML custom rules file merged into the config rules"
    )
    review_parser.set_defaults(handler=_cmd_review)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Drive work items through the full workflow",
    )
    run_parser.add_argument("issues", help="JSON or YAML file holding work items")
    run_parser.add_argument(
        "--oracle", dest="transcript", required=True, help="Recorded oracle transcript"
    )
    run_parser.add_argument(
        "--item", dest="item_ids", action="append", default=[], help="Run only this item id"
    )
    run_parser.add_argument(
        "--label", dest="labels", action="append", default=[], help="Require this label"
    )
    run_parser.add_argument(
        "--workspace",
        choices=WORKSPACE_KINDS,
        default="local",
        help="Workspace provider: plain directories or git worktrees (default: local).",
    )
    run_parser.add_argument(
        "--repo-root",
        default=".",
        help="Repository root used to seed workspaces (default: current directory).",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective (redacted) configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)
    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_classify(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    settings = AutopilotSettings.from_config(config)
    _configure_logging(args, settings)

    source = FileIssueSource(_existing_file(args.issues, "issues"))
    oracle = _load_oracle(args.transcript)
    classifier = WorkItemClassifier(oracle, settings=settings.classifier)

    async def _classify_all() -> list[tuple[WorkItem, Analysis]]:
        items = await _select_items(source, args.item_ids, IssueFilter(state="all"))
        return [(item, await classifier.classify(item)) for item in items]

    results = asyncio.run(_classify_all())
    if args.json:
        _emit_json(
            {
                "command": "classify",
                "analyses": [
                    {"work_item_id": item.id, "analysis": analysis.to_dict()}
                    for item, analysis in results
                ],
            }
        )
    else:
        for item, analysis in results:
            verdict = "feasible" if analysis.feasible else "not feasible"
            print(
                f"{item.id}: {verdict} "
                f"[{analysis.category.value}/{analysis.complexity.value}] "
                f"confidence={analysis.confidence:.2f}"
            )
            print(f"  {analysis.reasoning}")
    return 0


def _cmd_review(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    settings = AutopilotSettings.from_config(config)
    _configure_logging(args, settings)

    change_set = _load_change_set(_existing_file(args.change_set, "change set"))
    extra_rules: tuple[CustomRule, ...] = ()
    if args.rules is not None:
        try:
            extra_rules = load_custom_rules(_existing_file(args.rules, "rules"))
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=2) from exc

    outcome = ReviewEngine(settings.review, extra_rules=extra_rules).review(change_set)
    if args.json:
        _emit_json({"command": "review", "review": outcome.to_dict()})
    else:
        print(outcome.reasoning)
        for found in outcome.findings:
            location = found.path or "-"
            if found.line is not None:
                location = f"{location}:{found.line}"
            print(f"  [{found.severity.value}] {location} {found.message} ({found.rule})")
        for recommendation in outcome.recommendations:
            print(f"  * {recommendation}")
    return 0 if outcome.approved else 1


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    settings = AutopilotSettings.from_config(config)
    _configure_logging(args, settings)

    source = FileIssueSource(_existing_file(args.issues, "issues"))
    oracle = _load_oracle(args.transcript)
    workspaces = _build_workspaces(args, settings)
    controller = WorkflowController(
        classifier=WorkItemClassifier(oracle, settings=settings.classifier),
        resolver=ResolutionLoop(
            oracle,
            workspaces,
            settings=settings.resolution,
            safety=settings.safety,
        ),
        reviewer=ReviewEngine(settings.review),
        publisher=LocalJsonPublisher(settings.paths.published_dir),
        settings=settings.workflow,
        store=JsonlRunStore(settings.paths.state_dir / RUN_LOG_FILENAME),
        events=EventBus(buffer_size=settings.event_buffer_size),
        notifier=LoggingNotifier(),
    )
    issue_filter = IssueFilter(state="open", labels=frozenset(args.labels))

    async def _run_all() -> list[WorkflowRecord]:
        items = await _select_items(source, args.item_ids, issue_filter)
        run_ids = [controller.submit(item) for item in items]
        try:
            return [await controller.wait(run_id) for run_id in run_ids]
        finally:
            await controller.shutdown(cancel_active=True)

    records = asyncio.run(_run_all())
    if args.json:
        _emit_json(
            {
                "command": "run",
                "runs": [record.to_dict() for record in records],
                "metrics": controller.get_metrics().to_dict(),
            }
        )
    else:
        for record in records:
            print(f"{record.work_item_id}: {record.state.value} ({record.run_id})")
            if record.published is not None:
                print(f"  published: {record.published.location}")
            for error in record.errors:
                print(f"  {error.stage}: {error.kind.value}: {error.message}")
        health = controller.health()
        print(f"health: {health.status.value}")
    return 0 if all(record.state is WorkflowState.COMPLETE for record in records) else 1


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.json:
        _emit_json(
            {
                "command": "config",
                "active_profile": args.profile,
                "config": redact_config(config),
            }
        )
        return 0
    print(f"Active profile: {args.profile or '(default)'}")
    print(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        return load_config(args.config_path, profile=args.profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _configure_logging(args: argparse.Namespace, settings: AutopilotSettings) -> None:
    configure_logging(
        LoggingConfig(
            level="DEBUG" if args.verbose else settings.log_level,
            log_format=settings.log_format,
            log_dir=settings.paths.log_dir,
        )
    )


def _existing_file(raw: str, label: str) -> Path:
    candidate = Path(raw).expanduser().resolve()
    if not candidate.is_file():
        raise CLIError(f"{label} file not found: {candidate}", exit_code=2)
    return candidate


def _load_oracle(raw: str) -> RecordedOracle:
    try:
        return RecordedOracle.from_file(_existing_file(raw, "oracle transcript"))
    except TranscriptError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _load_change_set(path: Path) -> ChangeSet:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CLIError(f"{path}: invalid JSON: {exc}", exit_code=2) from exc
    if not isinstance(payload, Mapping):
        raise CLIError(f"{path}: expected a JSON object", exit_code=2)
    try:
        return ChangeSet.from_dict(payload)
    except ValueError as exc:
        raise CLIError(f"{path}: {exc}", exit_code=2) from exc


async def _select_items(
    source: FileIssueSource,
    item_ids: Sequence[str],
    issue_filter: IssueFilter,
) -> list[WorkItem]:
    try:
        if item_ids:
            return [await source.fetch(item_id) for item_id in item_ids]
        return await source.list(issue_filter)
    except WorkItemValidationError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    except CollaboratorError as exc:
        raise CLIError(exc.detail, exit_code=3) from exc


def _build_workspaces(args: argparse.Namespace, settings: AutopilotSettings) -> WorkspaceProvider:
    repo_root = Path(args.repo_root).expanduser().resolve()
    if not repo_root.is_dir():
        raise CLIError(f"repo root is not a directory: {repo_root}", exit_code=2)
    if args.workspace == "git":
        return GitWorktreeWorkspaceProvider(repo_root, settings.paths.workspace_root)
    return LocalDirectoryWorkspaceProvider(settings.paths.workspace_root, seed_dir=repo_root)


__all__ = ["CLIError", "build_parser", "run_cli"]
