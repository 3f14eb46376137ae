"""Create-if-absent provisioning, one class per resource kind.

Every provisioner follows the same shape: resolve, return the existing ref
when found, otherwise issue the create mutation and return the ref from its
response. Only the "already exists" conflicts enumerated below are absorbed;
every other error propagates to the orchestrator.
"""

from __future__ import annotations

import logging
from typing import Literal

from repo_provisioner.provisioning.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    TransientError,
)
from repo_provisioner.provisioning.github import operations as ops
from repo_provisioner.provisioning.github.api import RemoteAPIClient
from repo_provisioner.provisioning.github.payloads import (
    as_dict,
    next_cursor,
    nodes,
    required_str,
)
from repo_provisioner.provisioning.models import (
    BranchChange,
    BranchState,
    LinkResult,
    OwnerIdentity,
    ProvisioningResult,
    RepositoryRef,
    ResourceDescriptor,
    ResourceKind,
    ResourceRef,
    require_kind,
    require_repository,
)
from repo_provisioner.provisioning.resolver import ExistenceResolver, parse_ref

logger = logging.getLogger(__name__)

CommitStrategy = Literal["atomic", "git-data"]
DEFAULT_BASE_BRANCH = "main"


def _require_kind(descriptor: ResourceDescriptor, kind: ResourceKind) -> None:
    if descriptor.kind is not kind:
        raise ValueError(f"Expected a {kind.value} descriptor, got {descriptor.kind.value}")


def _log_created(ref: ResourceRef) -> None:
    logger.info("Resource created", extra={"kind": ref.kind.value, "id": ref.id, "url": ref.url})


def resolve_owner(client: RemoteAPIClient, login: str) -> OwnerIdentity:
    """Resolve an account login to its node id and type.

    Raises:
        NotFoundError: if no user or organization has this login.
    """

    data = client.query(ops.owner_lookup(login=login))
    owner = as_dict(data.get("repositoryOwner"))
    if owner is None:
        raise NotFoundError(f"Owner not found: {login}")
    viewer = as_dict(data.get("viewer")) or {}
    return OwnerIdentity(
        login=required_str(owner, "login", context="owner"),
        id=required_str(owner, "id", context="owner"),
        is_organization=owner.get("__typename") == "Organization",
        viewer_login=required_str(viewer, "login", context="viewer"),
    )


class RepositoryProvisioner:
    def __init__(
        self,
        *,
        client: RemoteAPIClient,
        resolver: ExistenceResolver,
        visibility: str = "private",
        has_issues: bool = True,
        has_projects: bool = True,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._visibility = visibility
        self._has_issues = has_issues
        self._has_projects = has_projects

    def provision(self, descriptor: ResourceDescriptor) -> ProvisioningResult:
        _require_kind(descriptor, ResourceKind.REPOSITORY)
        outcome = self._resolver.resolve(descriptor)
        if isinstance(outcome, ProvisioningResult):
            return outcome

        owner = resolve_owner(self._client, descriptor.owner_login)
        if not owner.is_organization and not owner.is_viewer:
            raise ValueError(
                f"Cannot create a repository for user {owner.login!r} while authenticated "
                f"as {owner.viewer_login!r}"
            )

        data = self._client.mutate(
            ops.create_repository(
                owner=owner.login,
                owner_is_organization=owner.is_organization,
                name=descriptor.name,
                description=descriptor.description,
                visibility=self._visibility,
                has_issues=self._has_issues,
                has_projects=self._has_projects,
            )
        )
        default_branch = data.get("default_branch")
        ref = RepositoryRef(
            kind=ResourceKind.REPOSITORY,
            id=required_str(data, "node_id", context="create repository"),
            url=required_str(data, "html_url", context="create repository"),
            name_with_owner=required_str(data, "full_name", context="create repository"),
            default_branch=default_branch if isinstance(default_branch, str) else None,
        )
        _log_created(ref)
        return ProvisioningResult(ref=ref, created=True)


class IssueProvisioner:
    def __init__(self, *, client: RemoteAPIClient, resolver: ExistenceResolver) -> None:
        self._client = client
        self._resolver = resolver

    def provision(self, descriptor: ResourceDescriptor) -> ProvisioningResult:
        _require_kind(descriptor, ResourceKind.ISSUE)
        repository = require_repository(descriptor.parent)
        outcome = self._resolver.resolve(descriptor)
        if isinstance(outcome, ProvisioningResult):
            return outcome

        data = self._client.mutate(
            ops.create_issue(
                repository_id=repository.id,
                title=descriptor.name,
                body=descriptor.description,
            )
        )
        payload = as_dict(data.get("createIssue")) or {}
        issue = as_dict(payload.get("issue"))
        if issue is None:
            raise TransientError("Malformed create issue response: missing issue")
        ref = parse_ref(issue, kind=ResourceKind.ISSUE)
        _log_created(ref)
        return ProvisioningResult(ref=ref, created=True)


class PullRequestProvisioner:
    """Branch -> commit -> pull request, each step fed by the previous one's output.

    Re-running is safe at any point: an existing branch is reused at its current
    tip, an unchanged file is not committed again, and an existing open pull
    request between the same branches is returned as found.
    """

    def __init__(
        self,
        *,
        client: RemoteAPIClient,
        resolver: ExistenceResolver,
        commit_strategy: CommitStrategy = "atomic",
    ) -> None:
        if commit_strategy not in ("atomic", "git-data"):
            raise ValueError(f"Unknown commit strategy: {commit_strategy}")
        self._client = client
        self._resolver = resolver
        self._commit_strategy = commit_strategy

    def provision(self, descriptor: ResourceDescriptor, change: BranchChange) -> ProvisioningResult:
        _require_kind(descriptor, ResourceKind.PULL_REQUEST)
        repository = require_repository(descriptor.parent)
        base = change.base_branch or repository.default_branch or DEFAULT_BASE_BRANCH
        if base == change.branch:
            raise ValueError(f"Feature branch must differ from base branch {base!r}")

        base_head = self.read_base_head(repository, base)
        branch, branch_created = self.ensure_branch(repository, change.branch, base_head)
        self.commit_change(repository, branch, change, branch_created=branch_created)
        return self._ensure_pull_request(descriptor, repository, head=branch.name, base=base)

    def _branch_state(self, repository: RepositoryRef, branch: str) -> BranchState | None:
        data = self._client.query(
            ops.branch_head(owner=repository.owner, name=repository.name, branch=branch)
        )
        repo = as_dict(data.get("repository"))
        if repo is None:
            raise TransientError("Malformed branch response: missing repository")
        ref = as_dict(repo.get("ref"))
        if ref is None:
            return None
        target = as_dict(ref.get("target")) or {}
        return BranchState(name=branch, head_commit_id=required_str(target, "oid", context="ref"))

    def read_base_head(self, repository: RepositoryRef, base: str) -> str:
        """Return the commit the base branch points at. A missing base branch is fatal."""

        state = self._branch_state(repository, base)
        if state is None:
            raise NotFoundError(
                f"Base branch {base!r} not found in {repository.name_with_owner}"
            )
        return state.head_commit_id

    def ensure_branch(
        self, repository: RepositoryRef, branch: str, base_head: str
    ) -> tuple[BranchState, bool]:
        """Create `branch` at `base_head`, or reuse it (without moving its tip) if present."""

        existing = self._branch_state(repository, branch)
        if existing is not None:
            logger.info(
                "Reusing existing branch",
                extra={"branch": branch, "head": existing.head_commit_id},
            )
            return existing, False

        try:
            data = self._client.mutate(
                ops.create_ref(repository_id=repository.id, branch=branch, oid=base_head)
            )
        except ConflictError:
            # Created concurrently since the check above.
            existing = self._branch_state(repository, branch)
            if existing is None:
                raise
            logger.info(
                "Branch already exists; reusing",
                extra={"branch": branch, "head": existing.head_commit_id},
            )
            return existing, False

        payload = as_dict(data.get("createRef")) or {}
        ref = as_dict(payload.get("ref")) or {}
        target = as_dict(ref.get("target")) or {}
        head = target.get("oid")
        state = BranchState(name=branch, head_commit_id=head if isinstance(head, str) else base_head)
        logger.info("Branch created", extra={"branch": branch, "head": state.head_commit_id})
        return state, True

    def _current_file_text(self, repository: RepositoryRef, branch: str, path: str) -> str | None:
        data = self._client.query(
            ops.file_text(owner=repository.owner, name=repository.name, branch=branch, path=path)
        )
        repo = as_dict(data.get("repository")) or {}
        blob = as_dict(repo.get("object"))
        if blob is None:
            return None
        text = blob.get("text")
        return text if isinstance(text, str) else None

    def commit_change(
        self,
        repository: RepositoryRef,
        branch: BranchState,
        change: BranchChange,
        *,
        branch_created: bool,
    ) -> str:
        """Commit the file on top of `branch.head_commit_id`; return the resulting head.

        Raises:
            PreconditionFailedError: if the branch moved since it was read.
        """

        if not branch_created:
            current = self._current_file_text(repository, branch.name, change.file_path)
            if current == change.file_content:
                logger.info(
                    "Branch already carries the change; skipping commit",
                    extra={"branch": branch.name, "path": change.file_path},
                )
                return branch.head_commit_id

        if self._commit_strategy == "atomic":
            new_head = self._commit_atomic(repository, branch, change)
        else:
            new_head = self._commit_git_data(repository, branch, change)
        logger.info(
            "Change committed",
            extra={
                "branch": branch.name,
                "path": change.file_path,
                "parent": branch.head_commit_id,
                "commit": new_head,
                "strategy": self._commit_strategy,
            },
        )
        return new_head

    def _commit_atomic(
        self, repository: RepositoryRef, branch: BranchState, change: BranchChange
    ) -> str:
        data = self._client.mutate(
            ops.create_commit_on_branch(
                name_with_owner=repository.name_with_owner,
                branch=branch.name,
                expected_head_oid=branch.head_commit_id,
                headline=change.commit_headline,
                path=change.file_path,
                content=change.file_content,
            )
        )
        payload = as_dict(data.get("createCommitOnBranch")) or {}
        commit = as_dict(payload.get("commit")) or {}
        return required_str(commit, "oid", context="create commit")

    def _commit_git_data(
        self, repository: RepositoryRef, branch: BranchState, change: BranchChange
    ) -> str:
        # Blob, tree and commit objects are content-addressed; recreating them
        # after an interruption is harmless. Only the ref update advances state.
        nwo = repository.name_with_owner
        parent = self._client.query(ops.get_commit(name_with_owner=nwo, sha=branch.head_commit_id))
        tree = as_dict(parent.get("tree")) or {}
        base_tree = required_str(tree, "sha", context="commit")

        blob = self._client.mutate(ops.create_blob(name_with_owner=nwo, content=change.file_content))
        new_tree = self._client.mutate(
            ops.create_tree(
                name_with_owner=nwo,
                base_tree=base_tree,
                path=change.file_path,
                blob_sha=required_str(blob, "sha", context="blob"),
            )
        )
        commit = self._client.mutate(
            ops.create_git_commit(
                name_with_owner=nwo,
                message=change.commit_headline,
                tree_sha=required_str(new_tree, "sha", context="tree"),
                parent_sha=branch.head_commit_id,
            )
        )
        commit_sha = required_str(commit, "sha", context="git commit")

        ref = self._client.query(ops.get_branch_ref(name_with_owner=nwo, branch=branch.name))
        current = required_str(as_dict(ref.get("object")) or {}, "sha", context="ref")
        if current != branch.head_commit_id:
            raise PreconditionFailedError(
                f"Branch {branch.name!r} moved from {branch.head_commit_id} to {current}"
            )
        self._client.mutate(
            ops.update_branch_ref(name_with_owner=nwo, branch=branch.name, sha=commit_sha)
        )
        return commit_sha

    def _ensure_pull_request(
        self,
        descriptor: ResourceDescriptor,
        repository: RepositoryRef,
        *,
        head: str,
        base: str,
    ) -> ProvisioningResult:
        outcome = self._resolver.resolve(descriptor, head_branch=head, base_branch=base)
        if isinstance(outcome, ProvisioningResult):
            return outcome

        try:
            data = self._client.mutate(
                ops.create_pull_request(
                    repository_id=repository.id,
                    head=head,
                    base=base,
                    title=descriptor.name,
                    body=descriptor.description,
                )
            )
        except ConflictError:
            again = self._resolver.resolve(descriptor, head_branch=head, base_branch=base)
            if isinstance(again, ProvisioningResult):
                logger.info(
                    "Pull request already exists; reusing",
                    extra={"id": again.ref.id, "url": again.ref.url},
                )
                return again
            raise

        payload = as_dict(data.get("createPullRequest")) or {}
        pull = as_dict(payload.get("pullRequest"))
        if pull is None:
            raise TransientError("Malformed create pull request response: missing pullRequest")
        ref = parse_ref(pull, kind=ResourceKind.PULL_REQUEST)
        _log_created(ref)
        return ProvisioningResult(ref=ref, created=True)


class ProjectProvisioner:
    """Projects V2 board scoped to an owner, plus its link to a repository."""

    def __init__(self, *, client: RemoteAPIClient, resolver: ExistenceResolver) -> None:
        self._client = client
        self._resolver = resolver

    def provision(self, descriptor: ResourceDescriptor) -> ProvisioningResult:
        _require_kind(descriptor, ResourceKind.PROJECT)
        owner = resolve_owner(self._client, descriptor.owner_login)
        outcome = self._resolver.resolve(descriptor)
        if isinstance(outcome, ProvisioningResult):
            return outcome

        data = self._client.mutate(ops.create_project(owner_id=owner.id, title=descriptor.name))
        payload = as_dict(data.get("createProjectV2")) or {}
        project = as_dict(payload.get("projectV2"))
        if project is None:
            raise TransientError("Malformed create project response: missing projectV2")
        ref = parse_ref(project, kind=ResourceKind.PROJECT)
        _log_created(ref)
        return ProvisioningResult(ref=ref, created=True)

    def _linked_repository_ids(self, project: ResourceRef) -> set[str]:
        ids: set[str] = set()
        cursor: str | None = None
        while True:
            data = self._client.query(ops.project_repositories(project_id=project.id, cursor=cursor))
            node = as_dict(data.get("node"))
            if node is None:
                raise NotFoundError(f"Project not found: {project.id}")
            repositories = as_dict(node.get("repositories")) or {}
            for repo in nodes(repositories):
                repo_id = repo.get("id")
                if isinstance(repo_id, str):
                    ids.add(repo_id)
            cursor = next_cursor(repositories)
            if cursor is None:
                return ids

    def link(self, project: ResourceRef, repository: ResourceRef) -> LinkResult:
        """Link `project` to `repository`; an existing link is a no-op."""

        require_kind(project, ResourceKind.PROJECT)
        repo = require_repository(repository)

        if repo.id in self._linked_repository_ids(project):
            logger.info(
                "Project already linked to repository",
                extra={"project_id": project.id, "repository": repo.name_with_owner},
            )
            return LinkResult(project=project, repository=repo, created=False)

        try:
            self._client.mutate(
                ops.link_project_to_repository(project_id=project.id, repository_id=repo.id)
            )
        except ConflictError:
            logger.info(
                "Project link reported as existing",
                extra={"project_id": project.id, "repository": repo.name_with_owner},
            )
            return LinkResult(project=project, repository=repo, created=False)

        logger.info(
            "Project linked to repository",
            extra={"project_id": project.id, "repository": repo.name_with_owner},
        )
        return LinkResult(project=project, repository=repo, created=True)
