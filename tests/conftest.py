"""Test configuration and fixtures.

`FakeGitHub` is an in-memory `RemoteAPIClient`: it answers the GraphQL and
REST operations the provisioners send, keyed by operation name, and records
every call so tests can assert what was (and was not) mutated.
"""

from __future__ import annotations

import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from repo_provisioner.provisioning.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
)
from repo_provisioner.provisioning.github.api import GraphQLRequest, RemoteRequest, RestRequest
from repo_provisioner.provisioning.models import RepositoryRef, ResourceKind
from repo_provisioner.provisioning.plan import ProvisioningPlan


@dataclass
class FakeRepo:
    id: str
    name_with_owner: str
    default_branch: str = "main"
    branches: dict[str, str] = field(default_factory=dict)
    # commit sha -> (parent sha | None, {path: text})
    commits: dict[str, tuple[str | None, dict[str, str]]] = field(default_factory=dict)
    issues: list[dict[str, Any]] = field(default_factory=list)
    pulls: list[dict[str, Any]] = field(default_factory=list)

    @property
    def url(self) -> str:
        return f"https://github.com/{self.name_with_owner}"

    def files_at(self, branch: str) -> dict[str, str]:
        return self.commits[self.branches[branch]][1]


@dataclass
class FakeProject:
    id: str
    owner_login: str
    title: str
    number: int
    repository_ids: list[str] = field(default_factory=list)

    @property
    def url(self) -> str:
        return f"https://github.com/users/{self.owner_login}/projects/{self.number}"


class FakeGitHub:
    """In-memory GitHub answering the provisioners' operations."""

    def __init__(
        self, *, viewer: str = "octocat", issues_page_size: int = 100, projects_page_size: int = 20
    ) -> None:
        self.viewer = viewer
        self.issues_page_size = issues_page_size
        self.projects_page_size = projects_page_size
        self.owners: dict[str, tuple[str, str]] = {}
        self.repos: dict[str, FakeRepo] = {}
        self.projects: list[FakeProject] = []
        self.calls: list[tuple[str, str]] = []
        self.hooks: dict[str, Callable[[FakeGitHub], None]] = {}
        self._failures: dict[str, list[Exception]] = {}
        self._logins: dict[str, str] = {}
        self._blobs: dict[str, str] = {}
        self._trees: dict[str, tuple[str, dict[str, str]]] = {}
        self._counter = 0
        self.closed = False
        self.add_user(viewer)

    # -- setup helpers -----------------------------------------------------

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter}"

    def _sha(self) -> str:
        self._counter += 1
        return f"{self._counter:040x}"

    def add_user(self, login: str) -> None:
        self.owners[login.lower()] = (self._next("U"), "User")
        self._logins[login.lower()] = login

    def add_org(self, login: str) -> None:
        self.owners[login.lower()] = (self._next("O"), "Organization")
        self._logins[login.lower()] = login

    def add_repo(
        self, name_with_owner: str, *, default_branch: str = "main", files: dict[str, str] | None = None
    ) -> FakeRepo:
        repo = FakeRepo(
            id=self._next("R"), name_with_owner=name_with_owner, default_branch=default_branch
        )
        root = self._sha()
        repo.commits[root] = (None, dict(files or {"README.md": "# init\n"}))
        repo.branches[default_branch] = root
        self.repos[name_with_owner.lower()] = repo
        return repo

    def add_issue(self, name_with_owner: str, title: str) -> dict[str, Any]:
        repo = self.repos[name_with_owner.lower()]
        number = len(repo.issues) + len(repo.pulls) + 1
        issue = {
            "id": self._next("I"),
            "number": number,
            "title": title,
            "url": f"{repo.url}/issues/{number}",
        }
        repo.issues.append(issue)
        return issue

    def advance_branch(self, name_with_owner: str, branch: str) -> str:
        """Simulate someone else pushing a commit to `branch`."""

        repo = self.repos[name_with_owner.lower()]
        parent = repo.branches[branch]
        files = dict(repo.commits[parent][1])
        files["OTHER.md"] = f"pushed by someone else {self._counter}\n"
        sha = self._sha()
        repo.commits[sha] = (parent, files)
        repo.branches[branch] = sha
        return sha

    def fail(self, operation: str, *errors: Exception) -> None:
        """Raise `errors` (one per call, in order) for the next calls of `operation`."""

        self._failures.setdefault(operation, []).extend(errors)

    def mutations(self) -> list[str]:
        return [op for kind, op in self.calls if kind == "mutate"]

    def count(self, operation: str) -> int:
        return sum(1 for _kind, op in self.calls if op == operation)

    def repo(self, name_with_owner: str) -> FakeRepo:
        return self.repos[name_with_owner.lower()]

    # -- RemoteAPIClient ---------------------------------------------------

    def query(self, request: RemoteRequest) -> dict[str, Any]:
        return self._dispatch("query", request)

    def mutate(self, request: RemoteRequest) -> dict[str, Any]:
        return self._dispatch("mutate", request)

    def close(self) -> None:
        self.closed = True

    def _dispatch(self, kind: str, request: RemoteRequest) -> dict[str, Any]:
        op = request.operation_name
        self.calls.append((kind, op))
        hook = self.hooks.pop(op, None)
        if hook is not None:
            hook(self)
        pending = self._failures.get(op)
        if pending:
            raise pending.pop(0)
        handler = getattr(self, f"_op_{op}")
        if isinstance(request, GraphQLRequest):
            return handler(request.variables)
        assert isinstance(request, RestRequest)
        return handler(request.method, request.path, request.body or {})

    # -- lookups -----------------------------------------------------------

    def _repo(self, owner: str, name: str) -> FakeRepo:
        repo = self.repos.get(f"{owner}/{name}".lower())
        if repo is None:
            raise NotFoundError(f"Could not resolve to a Repository with the name '{owner}/{name}'.")
        return repo

    def _repo_by_id(self, repo_id: str) -> FakeRepo:
        for repo in self.repos.values():
            if repo.id == repo_id:
                return repo
        raise NotFoundError(f"Could not resolve to a node with the global id of '{repo_id}'")

    def _repo_by_path(self, path: str) -> FakeRepo:
        # /repos/{owner}/{name}/git/...
        parts = path.strip("/").split("/")
        return self._repo(parts[1], parts[2])

    def _owner(self, login: str) -> tuple[str, str, str]:
        found = self.owners.get(login.lower())
        if found is None:
            raise NotFoundError(f"Could not resolve to a User with the login of '{login}'.")
        return found[0], found[1], self._logins[login.lower()]

    # -- queries -----------------------------------------------------------

    def _op_RepositoryLookup(self, v: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo(v["owner"], v["name"])
        return {
            "repository": {
                "id": repo.id,
                "url": repo.url,
                "nameWithOwner": repo.name_with_owner,
                "defaultBranchRef": {"name": repo.default_branch},
            }
        }

    def _op_OwnerLookup(self, v: dict[str, Any]) -> dict[str, Any]:
        owner_id, typename, login = self._owner(v["login"])
        return {
            "repositoryOwner": {"__typename": typename, "id": owner_id, "login": login},
            "viewer": {"login": self.viewer},
        }

    def _op_IssuesPage(self, v: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo(v["owner"], v["name"])
        start = int(v["cursor"]) if v.get("cursor") else 0
        end = start + self.issues_page_size
        page = repo.issues[start:end]
        has_next = end < len(repo.issues)
        return {
            "repository": {
                "issues": {
                    "nodes": [dict(i) for i in page],
                    "pageInfo": {"hasNextPage": has_next, "endCursor": str(end) if page else None},
                }
            }
        }

    def _op_BranchHead(self, v: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo(v["owner"], v["name"])
        branch = v["qualifiedName"].removeprefix("refs/heads/")
        oid = repo.branches.get(branch)
        ref = None if oid is None else {"name": branch, "target": {"oid": oid}}
        return {"repository": {"ref": ref}}

    def _op_FileText(self, v: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo(v["owner"], v["name"])
        branch, path = v["expression"].split(":", 1)
        oid = repo.branches.get(branch)
        text = None if oid is None else repo.commits[oid][1].get(path)
        return {"repository": {"object": None if text is None else {"text": text}}}

    def _op_PullRequestByBranches(self, v: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo(v["owner"], v["name"])
        matches = [
            {"id": p["id"], "number": p["number"], "state": p["state"], "url": p["url"]}
            for p in repo.pulls
            if p["head"] == v["head"] and p["base"] == v["base"]
        ]
        return {"repository": {"pullRequests": {"nodes": matches}}}

    def _op_ProjectsByTitle(self, v: dict[str, Any]) -> dict[str, Any]:
        _owner_id, _type, login = self._owner(v["login"])
        # The platform's `query` argument is a fuzzy search; exact matching is
        # the caller's job.
        wanted = v["title"].lower()
        matches = [
            {"id": p.id, "title": p.title, "url": p.url}
            for p in self.projects
            if p.owner_login.lower() == login.lower() and wanted in p.title.lower()
        ]
        start = int(v["cursor"]) if v.get("cursor") else 0
        end = start + self.projects_page_size
        page = matches[start:end]
        has_next = end < len(matches)
        return {
            "repositoryOwner": {
                "projectsV2": {
                    "nodes": page,
                    "pageInfo": {"hasNextPage": has_next, "endCursor": str(end) if page else None},
                }
            }
        }

    def _op_ProjectRepositories(self, v: dict[str, Any]) -> dict[str, Any]:
        project = self._project(v["projectId"])
        return {
            "node": {
                "repositories": {
                    "nodes": [{"id": rid} for rid in project.repository_ids],
                    "pageInfo": {"hasNextPage": False, "endCursor": None},
                }
            }
        }

    def _op_GetCommit(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo_by_path(path)
        sha = path.rsplit("/", 1)[-1]
        if sha not in repo.commits:
            raise NotFoundError("Not Found", status=404)
        return {"sha": sha, "tree": {"sha": f"tree-of-{sha}"}}

    def _op_GetBranchRef(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo_by_path(path)
        branch = path.split("/ref/heads/", 1)[1]
        if branch not in repo.branches:
            raise NotFoundError("Not Found", status=404)
        return {"ref": f"refs/heads/{branch}", "object": {"sha": repo.branches[branch]}}

    # -- mutations ---------------------------------------------------------

    def _op_CreateRepository(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if path == "/user/repos":
            owner = self.viewer
        else:
            owner = path.strip("/").split("/")[1]
        name_with_owner = f"{owner}/{body['name']}"
        if name_with_owner.lower() in self.repos:
            raise ConflictError("Repository creation failed.; name already exists on this account")
        repo = self.add_repo(name_with_owner)
        return {
            "node_id": repo.id,
            "html_url": repo.url,
            "full_name": repo.name_with_owner,
            "default_branch": repo.default_branch,
            "private": body.get("private", True),
        }

    def _op_CreateIssue(self, v: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo_by_id(v["input"]["repositoryId"])
        issue = self.add_issue(repo.name_with_owner, v["input"]["title"])
        return {"createIssue": {"issue": {k: issue[k] for k in ("id", "number", "url")}}}

    def _op_CreateRef(self, v: dict[str, Any]) -> dict[str, Any]:
        data = v["input"]
        repo = self._repo_by_id(data["repositoryId"])
        branch = data["name"].removeprefix("refs/heads/")
        if branch in repo.branches:
            raise ConflictError(f"A ref named \"{data['name']}\" already exists in the repository.")
        repo.branches[branch] = data["oid"]
        return {"createRef": {"ref": {"name": branch, "target": {"oid": data["oid"]}}}}

    def _op_CreateCommitOnBranch(self, v: dict[str, Any]) -> dict[str, Any]:
        data = v["input"]
        repo = self.repos[data["branch"]["repositoryNameWithOwner"].lower()]
        branch = data["branch"]["branchName"]
        head = repo.branches[branch]
        if head != data["expectedHeadOid"]:
            raise PreconditionFailedError(
                f"Expected branch to point to \"{data['expectedHeadOid']}\" but it did not"
            )
        files = dict(repo.commits[head][1])
        for addition in data["fileChanges"]["additions"]:
            files[addition["path"]] = base64.b64decode(addition["contents"]).decode("utf-8")
        sha = self._sha()
        repo.commits[sha] = (head, files)
        repo.branches[branch] = sha
        return {"createCommitOnBranch": {"commit": {"oid": sha, "url": f"{repo.url}/commit/{sha}"}}}

    def _op_CreateBlob(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        self._repo_by_path(path)
        sha = f"blob-{self._sha()}"
        self._blobs[sha] = body["content"]
        return {"sha": sha}

    def _op_CreateTree(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        self._repo_by_path(path)
        sha = f"tree-{self._sha()}"
        base = body["base_tree"].removeprefix("tree-of-")
        self._trees[sha] = (base, {e["path"]: self._blobs[e["sha"]] for e in body["tree"]})
        return {"sha": sha}

    def _op_CreateGitCommit(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo_by_path(path)
        base_commit, changes = self._trees[body["tree"]]
        files = dict(repo.commits[base_commit][1])
        files.update(changes)
        sha = self._sha()
        repo.commits[sha] = (body["parents"][0], files)
        return {"sha": sha}

    def _op_UpdateBranchRef(self, method: str, path: str, body: dict[str, Any]) -> dict[str, Any]:
        repo = self._repo_by_path(path)
        branch = path.split("/refs/heads/", 1)[1]
        parent, _files = repo.commits[body["sha"]]
        if not body.get("force") and parent != repo.branches[branch]:
            raise PreconditionFailedError("Update is not a fast forward", status=422)
        repo.branches[branch] = body["sha"]
        return {"ref": f"refs/heads/{branch}", "object": {"sha": body["sha"]}}

    def _op_CreatePullRequest(self, v: dict[str, Any]) -> dict[str, Any]:
        data = v["input"]
        repo = self._repo_by_id(data["repositoryId"])
        for p in repo.pulls:
            if p["head"] == data["headRefName"] and p["base"] == data["baseRefName"]:
                if p["state"] == "OPEN":
                    raise ConflictError(
                        f"A pull request already exists for {repo.name_with_owner}:{p['head']}."
                    )
        number = len(repo.issues) + len(repo.pulls) + 1
        pull = {
            "id": self._next("PR"),
            "number": number,
            "url": f"{repo.url}/pull/{number}",
            "title": data["title"],
            "head": data["headRefName"],
            "base": data["baseRefName"],
            "state": "OPEN",
        }
        repo.pulls.append(pull)
        return {"createPullRequest": {"pullRequest": {k: pull[k] for k in ("id", "number", "url")}}}

    def _op_CreateProject(self, v: dict[str, Any]) -> dict[str, Any]:
        data = v["input"]
        login = next(
            self._logins[key] for key, (oid, _t) in self.owners.items() if oid == data["ownerId"]
        )
        project = FakeProject(
            id=self._next("PVT"),
            owner_login=login,
            title=data["title"],
            number=len(self.projects) + 1,
        )
        self.projects.append(project)
        return {"createProjectV2": {"projectV2": {"id": project.id, "url": project.url}}}

    def _project(self, project_id: str) -> FakeProject:
        for project in self.projects:
            if project.id == project_id:
                return project
        raise NotFoundError(f"Could not resolve to a node with the global id of '{project_id}'")

    def _op_LinkProjectToRepository(self, v: dict[str, Any]) -> dict[str, Any]:
        data = v["input"]
        project = self._project(data["projectId"])
        repo = self._repo_by_id(data["repositoryId"])
        if repo.id not in project.repository_ids:
            project.repository_ids.append(repo.id)
        return {"linkProjectV2ToRepository": {"repository": {"id": repo.id}}}


def repository_ref(repo: FakeRepo) -> RepositoryRef:
    return RepositoryRef(
        kind=ResourceKind.REPOSITORY,
        id=repo.id,
        url=repo.url,
        name_with_owner=repo.name_with_owner,
        default_branch=repo.default_branch,
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    """A fake GitHub where the viewer `octocat` exists and owns nothing yet."""

    return FakeGitHub()


@pytest.fixture
def plan() -> ProvisioningPlan:
    """The default plan for `octocat/demo`."""

    return ProvisioningPlan(owner="octocat", repo="demo")


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PROVISIONER_GITHUB_TOKEN",
        "GITHUB_BASE_URL",
        "LOG_LEVEL",
        "PROVISIONER_RUN_STATE_PATH",
        "PROVISIONER_MAX_ATTEMPTS",
        "PROVISIONER_RETRY_BACKOFF_SECONDS",
        "PROVISIONER_REQUEST_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
