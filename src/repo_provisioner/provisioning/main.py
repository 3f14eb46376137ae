"""CLI entrypoint for the provisioner.

Exit codes:
- 0: success
- 1: a stage failed, or an unexpected error
- 2: configuration error
- 3: cancelled (SIGINT) or deadline exceeded
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from types import FrameType
from typing import Any

from pydantic import ValidationError

from repo_provisioner import __version__
from repo_provisioner.provisioning.config import ProvisionerSettings
from repo_provisioner.provisioning.github.client import GitHubClient
from repo_provisioner.provisioning.github.retry import RetryingClient
from repo_provisioner.provisioning.logging import configure_logging
from repo_provisioner.provisioning.orchestrator import (
    DependencyOrchestrator,
    ProvisioningReport,
)
from repo_provisioner.provisioning.plan import ProvisioningPlan, Stage
from repo_provisioner.provisioning.summary import RepositoryReader
from repo_provisioner.provisioning.workflow.state_machine import RunStateStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_CANCELLED = 3

# Flags whose dest matches a plan field; they override only when given.
_PLAN_FLAGS: tuple[str, ...] = (
    "owner",
    "repo",
    "visibility",
    "description",
    "project_owner",
    "issue_title",
    "issue_body",
    "branch",
    "base_branch",
    "file_path",
    "commit_headline",
    "pr_title",
    "pr_body",
    "project_title",
    "commit_strategy",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-provisioner",
        description="Idempotently provision a GitHub repository, issue, pull request and project",
    )
    parser.add_argument("--version", action="version", version=f"repo-provisioner {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    provision = subparsers.add_parser(
        "provision",
        help="Ensure the repository, issue, pull request and project exist",
    )
    provision.add_argument("--plan", type=Path, default=None, help="JSON plan file")
    provision.add_argument("--owner", default=None, help="Repository owner (user or organization)")
    provision.add_argument("--repo", default=None, help="Repository name")
    provision.add_argument(
        "--visibility", choices=["private", "public", "internal"], default=None
    )
    provision.add_argument("--description", default=None, help="Repository description")
    provision.add_argument(
        "--project-owner",
        default=None,
        help="Login that owns the project board (defaults to --owner)",
    )
    provision.add_argument("--issue-title", default=None)
    provision.add_argument("--issue-body", default=None)
    provision.add_argument("--branch", default=None, help="Feature branch for the pull request")
    provision.add_argument(
        "--base-branch",
        default=None,
        help="Base branch (defaults to the repository default branch)",
    )
    provision.add_argument("--file-path", default=None, help="File written on the feature branch")
    provision.add_argument(
        "--file-content",
        type=Path,
        default=None,
        help="Read the file content from this local path",
    )
    provision.add_argument("--commit-headline", default=None)
    provision.add_argument("--pr-title", default=None)
    provision.add_argument("--pr-body", default=None)
    provision.add_argument("--project-title", default=None)
    provision.add_argument("--commit-strategy", choices=["atomic", "git-data"], default=None)
    provision.add_argument(
        "--skip",
        action="append",
        choices=[s.value for s in Stage],
        default=[],
        help="Deselect a stage (repeatable); the repository stage always runs",
    )
    provision.add_argument(
        "--deadline-seconds",
        type=float,
        default=None,
        help="Stop at the next stage boundary once this much time has passed",
    )

    show = subparsers.add_parser(
        "show", help="Print a repository with its first issues and pull requests"
    )
    show.add_argument(
        "--repo",
        "--repository",
        dest="repository",
        required=True,
        help="Repository in the form 'owner/repo'",
    )
    show.add_argument("--limit", type=int, default=10, help="Issues and pull requests to list")

    subparsers.add_parser("status", help="Print the snapshot of the last provisioning run")

    return parser


def plan_from_args(args: argparse.Namespace) -> ProvisioningPlan:
    overrides: dict[str, object] = {
        name: getattr(args, name) for name in _PLAN_FLAGS if getattr(args, name) is not None
    }
    if args.file_content is not None:
        overrides["file_content"] = args.file_content.read_text(encoding="utf-8")
    if args.skip:
        overrides["skip"] = sorted(set(args.skip))

    if args.plan is not None:
        return ProvisioningPlan.from_file(args.plan, **overrides)
    return ProvisioningPlan.model_validate(overrides)


def _print_report(report: ProvisioningReport) -> None:
    for outcome in report.outcomes:
        line = f"{outcome.stage.value}: {outcome.status}"
        if outcome.result is not None:
            line += f" {outcome.result.ref.url}"
        if outcome.link is not None:
            line += " (linked)" if outcome.link.created else " (already linked)"
        print(line)

    if report.failure is not None:
        print(
            f"FAILED at {report.failure.stage.value}: {report.failure.message}",
            file=sys.stderr,
        )
    elif report.cancelled:
        print(f"CANCELLED: {report.cancel_reason}", file=sys.stderr)
    else:
        print(f"{report.final_state.value}")


def _install_sigint(cancel: threading.Event) -> Any:
    def _handler(signum: int, frame: FrameType | None) -> None:
        if cancel.is_set():
            # Second Ctrl-C: stop waiting for the stage boundary.
            raise KeyboardInterrupt
        cancel.set()
        logger.warning("Cancellation requested; stopping after the current stage")

    return signal.signal(signal.SIGINT, _handler)


def _provision(args: argparse.Namespace, settings: ProvisionerSettings) -> int:
    try:
        plan = plan_from_args(args)
    except (ValidationError, ValueError, OSError) as e:
        print("Invalid provisioning plan:", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG
    if args.deadline_seconds is not None and args.deadline_seconds <= 0:
        print("--deadline-seconds must be > 0", file=sys.stderr)
        return EXIT_CONFIG

    cancel = threading.Event()
    previous_handler = _install_sigint(cancel)

    github = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
        timeout_seconds=settings.request_timeout_seconds,
    )
    try:
        client = RetryingClient(
            github,
            max_attempts=settings.max_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        )
        orchestrator = DependencyOrchestrator(
            client=client,
            store=RunStateStore(settings.run_state_path),
            cancel_event=cancel,
            deadline_seconds=args.deadline_seconds,
        )
        report = orchestrator.run(plan)
    finally:
        github.close()
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    _print_report(report)
    if report.succeeded:
        return EXIT_OK
    if report.cancelled:
        return EXIT_CANCELLED
    return EXIT_FAILED


def _show(args: argparse.Namespace, settings: ProvisionerSettings) -> int:
    reader = RepositoryReader(token=settings.github_token, base_url=settings.github_base_url)
    try:
        summary = reader.summary(args.repository, limit=args.limit)
    finally:
        reader.close()
    print(summary.render())
    return EXIT_OK


def _status(settings: ProvisionerSettings) -> int:
    snapshot = RunStateStore(settings.run_state_path).load()
    if snapshot is None:
        print(f"No run recorded at {settings.run_state_path}")
        return EXIT_OK
    print(json.dumps(snapshot.to_json(), indent=2, ensure_ascii=False))
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ProvisionerSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.log_level)

    try:
        if args.command == "provision":
            return _provision(args, settings)
        if args.command == "show":
            return _show(args, settings)
        if args.command == "status":
            return _status(settings)
        raise ValueError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_CANCELLED
    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
