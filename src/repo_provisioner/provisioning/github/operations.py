"""GraphQL documents and REST calls used by the provisioners.

Each builder maps explicit arguments onto a request value. Documents are
constants; only `variables` vary per call.
"""

from __future__ import annotations

import base64
from typing import Any
from urllib.parse import quote

from .api import GraphQLRequest, RestRequest

REPOSITORY_LOOKUP = """
query RepositoryLookup($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    id
    url
    nameWithOwner
    defaultBranchRef {
      name
    }
  }
}
"""

OWNER_LOOKUP = """
query OwnerLookup($login: String!) {
  repositoryOwner(login: $login) {
    __typename
    id
    login
  }
  viewer {
    login
  }
}
"""

ISSUES_PAGE = """
query IssuesPage($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    issues(
      first: 100
      after: $cursor
      states: [OPEN, CLOSED]
      orderBy: {field: CREATED_AT, direction: ASC}
    ) {
      nodes {
        id
        number
        title
        url
      }
      pageInfo {
        hasNextPage
        endCursor
      }
    }
  }
}
"""

CREATE_ISSUE = """
mutation CreateIssue($input: CreateIssueInput!) {
  createIssue(input: $input) {
    issue {
      id
      number
      url
    }
  }
}
"""

BRANCH_HEAD = """
query BranchHead($owner: String!, $name: String!, $qualifiedName: String!) {
  repository(owner: $owner, name: $name) {
    ref(qualifiedName: $qualifiedName) {
      name
      target {
        oid
      }
    }
  }
}
"""

CREATE_REF = """
mutation CreateRef($input: CreateRefInput!) {
  createRef(input: $input) {
    ref {
      name
      target {
        oid
      }
    }
  }
}
"""

FILE_TEXT = """
query FileText($owner: String!, $name: String!, $expression: String!) {
  repository(owner: $owner, name: $name) {
    object(expression: $expression) {
      ... on Blob {
        text
      }
    }
  }
}
"""

CREATE_COMMIT_ON_BRANCH = """
mutation CreateCommitOnBranch($input: CreateCommitOnBranchInput!) {
  createCommitOnBranch(input: $input) {
    commit {
      oid
      url
    }
  }
}
"""

PULL_REQUEST_BY_BRANCHES = """
query PullRequestByBranches($owner: String!, $name: String!, $head: String!, $base: String!) {
  repository(owner: $owner, name: $name) {
    pullRequests(
      first: 20
      headRefName: $head
      baseRefName: $base
      states: [OPEN, CLOSED, MERGED]
      orderBy: {field: CREATED_AT, direction: ASC}
    ) {
      nodes {
        id
        number
        state
        url
      }
    }
  }
}
"""

CREATE_PULL_REQUEST = """
mutation CreatePullRequest($input: CreatePullRequestInput!) {
  createPullRequest(input: $input) {
    pullRequest {
      id
      number
      url
    }
  }
}
"""

PROJECTS_BY_TITLE = """
query ProjectsByTitle($login: String!, $title: String!, $cursor: String) {
  repositoryOwner(login: $login) {
    ... on ProjectV2Owner {
      projectsV2(first: 20, after: $cursor, query: $title) {
        nodes {
          id
          title
          url
        }
        pageInfo {
          hasNextPage
          endCursor
        }
      }
    }
  }
}
"""

CREATE_PROJECT = """
mutation CreateProject($input: CreateProjectV2Input!) {
  createProjectV2(input: $input) {
    projectV2 {
      id
      url
    }
  }
}
"""

PROJECT_REPOSITORIES = """
query ProjectRepositories($projectId: ID!, $cursor: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      repositories(first: 100, after: $cursor) {
        nodes {
          id
        }
        pageInfo {
          hasNextPage
          endCursor
        }
      }
    }
  }
}
"""

LINK_PROJECT_TO_REPOSITORY = """
mutation LinkProjectToRepository($input: LinkProjectV2ToRepositoryInput!) {
  linkProjectV2ToRepository(input: $input) {
    repository {
      id
    }
  }
}
"""


def repository_lookup(*, owner: str, name: str) -> GraphQLRequest:
    return GraphQLRequest("RepositoryLookup", REPOSITORY_LOOKUP, {"owner": owner, "name": name})


def owner_lookup(*, login: str) -> GraphQLRequest:
    return GraphQLRequest("OwnerLookup", OWNER_LOOKUP, {"login": login})


def create_repository(
    *,
    owner: str,
    owner_is_organization: bool,
    name: str,
    description: str,
    visibility: str,
    has_issues: bool = True,
    has_projects: bool = True,
) -> RestRequest:
    """REST create with `auto_init` so the default branch exists immediately."""

    body: dict[str, Any] = {
        "name": name,
        "description": description,
        "private": visibility != "public",
        "auto_init": True,
        "has_issues": has_issues,
        "has_projects": has_projects,
    }
    if owner_is_organization:
        # Only organizations support the "internal" visibility value.
        body["visibility"] = visibility
        path = f"/orgs/{quote(owner, safe='')}/repos"
    else:
        path = "/user/repos"
    return RestRequest("CreateRepository", "POST", path, body)


def issues_page(*, owner: str, name: str, cursor: str | None = None) -> GraphQLRequest:
    return GraphQLRequest(
        "IssuesPage", ISSUES_PAGE, {"owner": owner, "name": name, "cursor": cursor}
    )


def create_issue(*, repository_id: str, title: str, body: str) -> GraphQLRequest:
    return GraphQLRequest(
        "CreateIssue",
        CREATE_ISSUE,
        {"input": {"repositoryId": repository_id, "title": title, "body": body}},
    )


def branch_head(*, owner: str, name: str, branch: str) -> GraphQLRequest:
    return GraphQLRequest(
        "BranchHead",
        BRANCH_HEAD,
        {"owner": owner, "name": name, "qualifiedName": f"refs/heads/{branch}"},
    )


def create_ref(*, repository_id: str, branch: str, oid: str) -> GraphQLRequest:
    return GraphQLRequest(
        "CreateRef",
        CREATE_REF,
        {"input": {"repositoryId": repository_id, "name": f"refs/heads/{branch}", "oid": oid}},
    )


def file_text(*, owner: str, name: str, branch: str, path: str) -> GraphQLRequest:
    return GraphQLRequest(
        "FileText",
        FILE_TEXT,
        {"owner": owner, "name": name, "expression": f"{branch}:{path.lstrip('/')}"},
    )


def create_commit_on_branch(
    *,
    name_with_owner: str,
    branch: str,
    expected_head_oid: str,
    headline: str,
    path: str,
    content: str,
) -> GraphQLRequest:
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    return GraphQLRequest(
        "CreateCommitOnBranch",
        CREATE_COMMIT_ON_BRANCH,
        {
            "input": {
                "branch": {"repositoryNameWithOwner": name_with_owner, "branchName": branch},
                "message": {"headline": headline},
                "fileChanges": {"additions": [{"path": path.lstrip("/"), "contents": encoded}]},
                "expectedHeadOid": expected_head_oid,
            }
        },
    )


def _git_path(name_with_owner: str, suffix: str) -> str:
    return f"/repos/{name_with_owner}/git/{suffix}"


def get_commit(*, name_with_owner: str, sha: str) -> RestRequest:
    return RestRequest("GetCommit", "GET", _git_path(name_with_owner, f"commits/{sha}"))


def create_blob(*, name_with_owner: str, content: str) -> RestRequest:
    return RestRequest(
        "CreateBlob",
        "POST",
        _git_path(name_with_owner, "blobs"),
        {"content": content, "encoding": "utf-8"},
    )


def create_tree(*, name_with_owner: str, base_tree: str, path: str, blob_sha: str) -> RestRequest:
    return RestRequest(
        "CreateTree",
        "POST",
        _git_path(name_with_owner, "trees"),
        {
            "base_tree": base_tree,
            "tree": [
                {"path": path.lstrip("/"), "mode": "100644", "type": "blob", "sha": blob_sha}
            ],
        },
    )


def create_git_commit(
    *, name_with_owner: str, message: str, tree_sha: str, parent_sha: str
) -> RestRequest:
    return RestRequest(
        "CreateGitCommit",
        "POST",
        _git_path(name_with_owner, "commits"),
        {"message": message, "tree": tree_sha, "parents": [parent_sha]},
    )


def get_branch_ref(*, name_with_owner: str, branch: str) -> RestRequest:
    return RestRequest(
        "GetBranchRef", "GET", _git_path(name_with_owner, f"ref/heads/{quote(branch, safe='/')}")
    )


def update_branch_ref(*, name_with_owner: str, branch: str, sha: str) -> RestRequest:
    """Non-forced update: the platform rejects it unless it fast-forwards."""

    return RestRequest(
        "UpdateBranchRef",
        "PATCH",
        _git_path(name_with_owner, f"refs/heads/{quote(branch, safe='/')}"),
        {"sha": sha, "force": False},
    )


def pull_request_by_branches(*, owner: str, name: str, head: str, base: str) -> GraphQLRequest:
    return GraphQLRequest(
        "PullRequestByBranches",
        PULL_REQUEST_BY_BRANCHES,
        {"owner": owner, "name": name, "head": head, "base": base},
    )


def create_pull_request(
    *, repository_id: str, head: str, base: str, title: str, body: str
) -> GraphQLRequest:
    return GraphQLRequest(
        "CreatePullRequest",
        CREATE_PULL_REQUEST,
        {
            "input": {
                "repositoryId": repository_id,
                "baseRefName": base,
                "headRefName": head,
                "title": title,
                "body": body,
                "maintainerCanModify": True,
            }
        },
    )


def projects_by_title(*, login: str, title: str, cursor: str | None = None) -> GraphQLRequest:
    return GraphQLRequest(
        "ProjectsByTitle",
        PROJECTS_BY_TITLE,
        {"login": login, "title": title, "cursor": cursor},
    )


def create_project(*, owner_id: str, title: str) -> GraphQLRequest:
    return GraphQLRequest(
        "CreateProject", CREATE_PROJECT, {"input": {"ownerId": owner_id, "title": title}}
    )


def project_repositories(*, project_id: str, cursor: str | None = None) -> GraphQLRequest:
    return GraphQLRequest(
        "ProjectRepositories",
        PROJECT_REPOSITORIES,
        {"projectId": project_id, "cursor": cursor},
    )


def link_project_to_repository(*, project_id: str, repository_id: str) -> GraphQLRequest:
    return GraphQLRequest(
        "LinkProjectToRepository",
        LINK_PROJECT_TO_REPOSITORY,
        {"input": {"projectId": project_id, "repositoryId": repository_id}},
    )
