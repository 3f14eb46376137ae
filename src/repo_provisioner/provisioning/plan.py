"""What a provisioning run should ensure exists.

A plan is built from CLI flags or loaded from a JSON file and is turned into
the immutable descriptors the provisioners consume. Refs never live here:
they are produced by the run itself.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from repo_provisioner.provisioning.models import (
    BranchChange,
    RepositoryRef,
    ResourceDescriptor,
    ResourceKind,
)
from repo_provisioner.provisioning.provisioners import CommitStrategy

Visibility = Literal["private", "public", "internal"]


class Stage(str, Enum):
    """Stages a caller may deselect. The repository stage always runs."""

    ISSUE = "issue"
    PULL_REQUEST = "pull-request"
    PROJECT = "project"


class ProvisioningPlan(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    visibility: Visibility = "private"
    description: str = "Created via GitHub API"
    has_issues: bool = True
    has_projects: bool = True

    issue_title: str = "First Issue"
    issue_body: str = "Created via GitHub API"

    branch: str = "update-readme"
    base_branch: str | None = None
    file_path: str = "README.md"
    # None renders a small deterministic README, so re-runs find it unchanged.
    file_content: str | None = None
    commit_headline: str = "Update README.md"
    commit_strategy: CommitStrategy = "atomic"
    pr_title: str = "Update README"
    pr_body: str = "Automated PR from GitHub API"

    project_owner: str | None = None
    project_title: str = "API Managed Project"

    skip: frozenset[Stage] = frozenset()

    @field_validator("owner", "repo", "branch", "issue_title", "pr_title", "project_title")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("repo")
    @classmethod
    def _bare_repo_name(cls, value: str) -> str:
        if "/" in value:
            raise ValueError("repo must be a bare name; use owner for the account")
        return value

    @classmethod
    def from_file(cls, path: Path, **overrides: object) -> ProvisioningPlan:
        """Load a JSON plan; non-None `overrides` (typically CLI flags) win."""

        raw = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError(f"Plan file must contain a JSON object: {path}")
        raw.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(raw)

    @property
    def project_owner_login(self) -> str:
        return self.project_owner or self.owner

    @property
    def name_with_owner(self) -> str:
        return f"{self.owner}/{self.repo}"

    def runs(self, stage: Stage) -> bool:
        return stage not in self.skip

    def repository_descriptor(self) -> ResourceDescriptor:
        return ResourceDescriptor(
            kind=ResourceKind.REPOSITORY,
            owner_login=self.owner,
            name=self.repo,
            description=self.description,
        )

    def issue_descriptor(self, repository: RepositoryRef) -> ResourceDescriptor:
        return ResourceDescriptor(
            kind=ResourceKind.ISSUE,
            owner_login=self.owner,
            name=self.issue_title,
            parent=repository,
            description=self.issue_body,
        )

    def pull_request_descriptor(self, repository: RepositoryRef) -> ResourceDescriptor:
        return ResourceDescriptor(
            kind=ResourceKind.PULL_REQUEST,
            owner_login=self.owner,
            name=self.pr_title,
            parent=repository,
            description=self.pr_body,
        )

    def branch_change(self) -> BranchChange:
        content = self.file_content
        if content is None:
            content = f"# {self.repo}\n\nManaged by repo-provisioner.\n"
        return BranchChange(
            branch=self.branch,
            file_path=self.file_path,
            file_content=content,
            commit_headline=self.commit_headline,
            base_branch=self.base_branch,
        )

    def project_descriptor(self) -> ResourceDescriptor:
        return ResourceDescriptor(
            kind=ResourceKind.PROJECT,
            owner_login=self.project_owner_login,
            name=self.project_title,
        )
