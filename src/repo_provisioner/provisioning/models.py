"""Descriptors and references for remote resources.

A descriptor says what should exist; a ref says what does exist. Refs are only
ever produced from remote responses (resolve or create) and are threaded into
later steps as foreign identifiers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ResourceKind(str, Enum):
    REPOSITORY = "repository"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    PROJECT = "project"


@dataclass(frozen=True, slots=True)
class ResourceRef:
    """Opaque remote identifier (GraphQL node id) plus canonical URL."""

    kind: ResourceKind
    id: str
    url: str

    def to_json(self) -> dict[str, object]:
        return {"kind": self.kind.value, "id": self.id, "url": self.url}

    @staticmethod
    def from_json(obj: dict[str, object]) -> ResourceRef | None:
        kind_raw = obj.get("kind")
        id_raw = obj.get("id")
        url_raw = obj.get("url")
        if not isinstance(id_raw, str) or not isinstance(url_raw, str):
            return None
        try:
            kind = ResourceKind(kind_raw)
        except ValueError:
            return None
        if kind is ResourceKind.REPOSITORY:
            nwo = obj.get("name_with_owner")
            branch = obj.get("default_branch")
            return RepositoryRef(
                kind=kind,
                id=id_raw,
                url=url_raw,
                name_with_owner=nwo if isinstance(nwo, str) else "",
                default_branch=branch if isinstance(branch, str) else None,
            )
        return ResourceRef(kind=kind, id=id_raw, url=url_raw)


@dataclass(frozen=True, slots=True)
class RepositoryRef(ResourceRef):
    """A repository ref also carries what sub-resource lookups need."""

    name_with_owner: str = ""
    default_branch: str | None = None

    @property
    def owner(self) -> str:
        return self.name_with_owner.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.name_with_owner.split("/", 1)[-1]

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"kind": self.kind.value, "id": self.id, "url": self.url}
        out["name_with_owner"] = self.name_with_owner
        if self.default_branch is not None:
            out["default_branch"] = self.default_branch
        return out


@dataclass(frozen=True, slots=True)
class ResourceDescriptor:
    """Caller-supplied description of a resource that should exist.

    `name` is the repository name, or the title of an issue, pull request or
    project. Sub-resources (issue, pull request) carry their repository as
    `parent`.
    """

    kind: ResourceKind
    owner_login: str
    name: str
    parent: ResourceRef | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.owner_login.strip():
            raise ValueError("owner_login is required")
        if not self.name.strip():
            raise ValueError(f"{self.kind.value} name/title is required")
        if self.kind in {ResourceKind.ISSUE, ResourceKind.PULL_REQUEST}:
            require_repository(self.parent)


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    ref: ResourceRef
    created: bool


@dataclass(frozen=True, slots=True)
class NotFound:
    """The resolver's "resource absent" outcome. Drives the create path."""

    descriptor: ResourceDescriptor


@dataclass(frozen=True, slots=True)
class BranchState:
    """A branch as read from the remote; discarded once the PR exists."""

    name: str
    head_commit_id: str


@dataclass(frozen=True, slots=True)
class BranchChange:
    """The change a pull request proposes: one file written on a feature branch."""

    branch: str
    file_path: str
    file_content: str
    commit_headline: str
    base_branch: str | None = None

    def __post_init__(self) -> None:
        if not self.branch.strip():
            raise ValueError("branch is required")
        if not self.file_path.strip("/ "):
            raise ValueError("file_path is required")
        if not self.commit_headline.strip():
            raise ValueError("commit_headline is required")


def require_kind(ref: ResourceRef | None, kind: ResourceKind) -> ResourceRef:
    """Reject refs that were not produced for `kind`."""

    if ref is None:
        raise ValueError(f"A resolved {kind.value} ref is required")
    if ref.kind is not kind:
        raise ValueError(f"Expected a {kind.value} ref, got {ref.kind.value}")
    return ref


def require_repository(ref: ResourceRef | None) -> RepositoryRef:
    require_kind(ref, ResourceKind.REPOSITORY)
    if not isinstance(ref, RepositoryRef) or not ref.name_with_owner:
        raise ValueError("Repository ref is missing its owner/name")
    return ref


@dataclass(frozen=True, slots=True)
class OwnerIdentity:
    """An account as resolved by login; repository and project owners are looked up separately."""

    login: str
    id: str
    is_organization: bool
    viewer_login: str

    @property
    def is_viewer(self) -> bool:
        return self.login.lower() == self.viewer_login.lower()


@dataclass(frozen=True, slots=True)
class LinkResult:
    """Outcome of linking a project to a repository; `created=False` means already linked."""

    project: ResourceRef
    repository: RepositoryRef
    created: bool
