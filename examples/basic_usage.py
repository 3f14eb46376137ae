#!/usr/bin/env python3
"""Programmatic provisioning example.

This demonstrates using the provisioning components directly:

* load settings from `.env`
* ensure a repository and an issue exist (pull request and project skipped)
* print what was created and what was found

Running it twice creates nothing the second time.
"""

from __future__ import annotations

import argparse
from typing import Sequence

from repo_provisioner.provisioning.config import ProvisionerSettings
from repo_provisioner.provisioning.github.client import GitHubClient
from repo_provisioner.provisioning.github.retry import RetryingClient
from repo_provisioner.provisioning.logging import configure_logging
from repo_provisioner.provisioning.orchestrator import DependencyOrchestrator
from repo_provisioner.provisioning.plan import ProvisioningPlan, Stage


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision a repository and an issue.")
    parser.add_argument("--owner", required=True, help="Repository owner")
    parser.add_argument("--repo", required=True, help="Repository name")
    parser.add_argument("--issue-title", default="First Issue", help="Issue title")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = ProvisionerSettings()
    configure_logging(settings.log_level)

    plan = ProvisioningPlan(
        owner=args.owner,
        repo=args.repo,
        issue_title=args.issue_title,
        skip=frozenset({Stage.PULL_REQUEST, Stage.PROJECT}),
    )

    github = GitHubClient(token=settings.github_token, base_url=settings.github_base_url)
    try:
        report = DependencyOrchestrator(client=RetryingClient(github)).run(plan)
    finally:
        github.close()

    for outcome in report.outcomes:
        print(f"{outcome.stage.value}: {outcome.status}")
    if report.failure is not None:
        print(f"Failed at {report.failure.stage.value}: {report.failure.message}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
