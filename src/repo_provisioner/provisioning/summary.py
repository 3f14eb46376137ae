"""Read-only summary of a provisioned repository, via PyGithub."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from github import Auth, Github
from github.Repository import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ItemSummary:
    number: int
    title: str
    state: str
    url: str


@dataclass(frozen=True, slots=True)
class RepositorySummary:
    name_with_owner: str
    url: str
    description: str
    default_branch: str
    private: bool
    issues: tuple[ItemSummary, ...]
    pull_requests: tuple[ItemSummary, ...]

    def render(self) -> str:
        lines = [
            f"{self.name_with_owner} ({'private' if self.private else 'public'})",
            f"  url: {self.url}",
            f"  default branch: {self.default_branch}",
        ]
        if self.description:
            lines.append(f"  description: {self.description}")
        lines.append(f"  issues ({len(self.issues)}):")
        lines.extend(f"    #{i.number} [{i.state}] {i.title}" for i in self.issues)
        lines.append(f"  pull requests ({len(self.pull_requests)}):")
        lines.extend(f"    #{p.number} [{p.state}] {p.title}" for p in self.pull_requests)
        return "\n".join(lines)


def summarize_repository(repo: Repository, *, limit: int = 10) -> RepositorySummary:
    """Collect the repository and its first `limit` issues and pull requests."""

    issues: list[ItemSummary] = []
    for issue in repo.get_issues(state="all", direction="asc"):
        # The issues endpoint also lists pull requests.
        if issue.pull_request is not None:
            continue
        issues.append(
            ItemSummary(number=issue.number, title=issue.title, state=issue.state, url=issue.html_url)
        )
        if len(issues) >= limit:
            break

    pulls = [
        ItemSummary(number=pr.number, title=pr.title, state=pr.state, url=pr.html_url)
        for pr in repo.get_pulls(state="all", direction="asc")[:limit]
    ]

    return RepositorySummary(
        name_with_owner=repo.full_name,
        url=repo.html_url,
        description=repo.description or "",
        default_branch=repo.default_branch,
        private=repo.private,
        issues=tuple(issues),
        pull_requests=tuple(pulls),
    )


class RepositoryReader:
    """Thin PyGithub wrapper used by the `show` command."""

    def __init__(self, *, token: str, base_url: str = "https://api.github.com") -> None:
        if not token:
            raise ValueError("GitHub token is required")
        self._gh = Github(auth=Auth.Token(token), base_url=base_url)

    def summary(self, name_with_owner: str, *, limit: int = 10) -> RepositorySummary:
        logger.debug("Fetching repository summary", extra={"repository": name_with_owner})
        return summarize_repository(self._gh.get_repo(name_with_owner), limit=limit)

    def close(self) -> None:
        self._gh.close()
