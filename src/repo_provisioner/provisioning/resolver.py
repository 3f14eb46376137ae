"""Read-only existence checks.

`resolve` answers "does this resource already exist?" with either a
`ProvisioningResult(created=False)` or a `NotFound` value. Any other failure
is raised: the caller must not treat an auth or network failure as absence.
"""

from __future__ import annotations

import logging
from typing import Any

from repo_provisioner.provisioning.errors import NotFoundError, TransientError
from repo_provisioner.provisioning.github import operations as ops
from repo_provisioner.provisioning.github.api import RemoteAPIClient
from repo_provisioner.provisioning.github.payloads import (
    as_dict,
    next_cursor,
    nodes,
    required_str,
)
from repo_provisioner.provisioning.models import (
    NotFound,
    ProvisioningResult,
    RepositoryRef,
    ResourceDescriptor,
    ResourceKind,
    ResourceRef,
    require_repository,
)

logger = logging.getLogger(__name__)


def parse_repository(obj: dict[str, Any]) -> RepositoryRef:
    """Build a RepositoryRef from a GraphQL repository node."""

    default_ref = as_dict(obj.get("defaultBranchRef"))
    default_branch = default_ref.get("name") if default_ref is not None else None
    return RepositoryRef(
        kind=ResourceKind.REPOSITORY,
        id=required_str(obj, "id", context="repository"),
        url=required_str(obj, "url", context="repository"),
        name_with_owner=required_str(obj, "nameWithOwner", context="repository"),
        default_branch=default_branch if isinstance(default_branch, str) else None,
    )


def parse_ref(obj: dict[str, Any], *, kind: ResourceKind) -> ResourceRef:
    return ResourceRef(
        kind=kind,
        id=required_str(obj, "id", context=kind.value),
        url=required_str(obj, "url", context=kind.value),
    )


class ExistenceResolver:
    """Per-kind existence queries against the remote system."""

    def __init__(
        self,
        *,
        client: RemoteAPIClient,
        max_issue_pages: int = 10,
        max_project_pages: int = 10,
    ) -> None:
        self._client = client
        self._max_issue_pages = max_issue_pages
        self._max_project_pages = max_project_pages

    def resolve(
        self,
        descriptor: ResourceDescriptor,
        *,
        head_branch: str | None = None,
        base_branch: str | None = None,
    ) -> ProvisioningResult | NotFound:
        """Return the existing resource for `descriptor`, or `NotFound`.

        Pull requests are identified by their branches rather than their title,
        so `head_branch` and `base_branch` are required for that kind.
        """

        if descriptor.kind is ResourceKind.REPOSITORY:
            ref: ResourceRef | None = self._repository(descriptor)
        elif descriptor.kind is ResourceKind.ISSUE:
            ref = self._issue(descriptor)
        elif descriptor.kind is ResourceKind.PULL_REQUEST:
            if not head_branch or not base_branch:
                raise ValueError("head_branch and base_branch are required for pull requests")
            ref = self._pull_request(descriptor, head=head_branch, base=base_branch)
        elif descriptor.kind is ResourceKind.PROJECT:
            ref = self._project(descriptor)
        else:
            raise ValueError(f"Unsupported resource kind: {descriptor.kind}")

        if ref is None:
            logger.debug(
                "Resource not found",
                extra={"kind": descriptor.kind.value, "resource_name": descriptor.name},
            )
            return NotFound(descriptor)

        logger.info(
            "Resource found",
            extra={"kind": ref.kind.value, "id": ref.id, "url": ref.url},
        )
        return ProvisioningResult(ref=ref, created=False)

    def _repository(self, descriptor: ResourceDescriptor) -> RepositoryRef | None:
        try:
            data = self._client.query(
                ops.repository_lookup(owner=descriptor.owner_login, name=descriptor.name)
            )
        except NotFoundError:
            return None
        repo = as_dict(data.get("repository"))
        if repo is None:
            return None
        return parse_repository(repo)

    def _issue(self, descriptor: ResourceDescriptor) -> ResourceRef | None:
        # NOT_FOUND here refers to the parent repository, so it propagates.
        repository = require_repository(descriptor.parent)
        wanted = descriptor.name.strip()
        cursor: str | None = None
        matches: list[tuple[int, dict[str, Any]]] = []

        for _page in range(self._max_issue_pages):
            data = self._client.query(
                ops.issues_page(owner=repository.owner, name=repository.name, cursor=cursor)
            )
            repo = as_dict(data.get("repository"))
            if repo is None:
                raise TransientError("Malformed issues response: missing repository")
            issues = as_dict(repo.get("issues")) or {}
            for node in nodes(issues):
                title = node.get("title")
                number = node.get("number")
                if isinstance(title, str) and title.strip() == wanted and isinstance(number, int):
                    matches.append((number, node))

            cursor = next_cursor(issues)
            if cursor is None:
                break
        else:
            logger.warning(
                "Issue scan stopped at page limit",
                extra={"repository": repository.name_with_owner, "pages": self._max_issue_pages},
            )

        if not matches:
            return None
        # Pick the lowest-number match for determinism.
        _number, node = min(matches, key=lambda m: m[0])
        return parse_ref(node, kind=ResourceKind.ISSUE)

    def _pull_request(
        self, descriptor: ResourceDescriptor, *, head: str, base: str
    ) -> ResourceRef | None:
        repository = require_repository(descriptor.parent)
        data = self._client.query(
            ops.pull_request_by_branches(
                owner=repository.owner, name=repository.name, head=head, base=base
            )
        )
        repo = as_dict(data.get("repository"))
        if repo is None:
            raise TransientError("Malformed pull request response: missing repository")
        # Closed and merged pull requests count: the branch pair was already used.
        pulls = nodes(repo.get("pullRequests"))
        if not pulls:
            return None
        open_pulls = [p for p in pulls if p.get("state") == "OPEN"]
        return parse_ref((open_pulls or pulls)[0], kind=ResourceKind.PULL_REQUEST)

    def _project(self, descriptor: ResourceDescriptor) -> ResourceRef | None:
        # The `query` argument is a fuzzy search, so every page is checked for
        # an exact title.
        wanted = descriptor.name.strip()
        cursor: str | None = None

        for _page in range(self._max_project_pages):
            data = self._client.query(
                ops.projects_by_title(
                    login=descriptor.owner_login, title=descriptor.name, cursor=cursor
                )
            )
            owner = as_dict(data.get("repositoryOwner"))
            if owner is None:
                raise NotFoundError(f"Project owner not found: {descriptor.owner_login}")
            projects = as_dict(owner.get("projectsV2")) or {}
            for node in nodes(projects):
                title = node.get("title")
                if isinstance(title, str) and title.strip() == wanted:
                    return parse_ref(node, kind=ResourceKind.PROJECT)

            cursor = next_cursor(projects)
            if cursor is None:
                return None

        logger.warning(
            "Project scan stopped at page limit",
            extra={"owner": descriptor.owner_login, "pages": self._max_project_pages},
        )
        return None
