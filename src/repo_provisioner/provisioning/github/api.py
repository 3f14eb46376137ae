"""The remote API seam the provisioning core depends on.

Requests are structured values (document + variables, or method + path +
body); nothing is string-interpolated into a query body. The concrete
transport decides how to execute them and maps failures onto the typed errors
in `repo_provisioner.provisioning.errors`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class GraphQLRequest:
    """A GraphQL operation. `operation_name` must match the name in `document`."""

    operation_name: str
    document: str
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RestRequest:
    """A REST call relative to the API base URL, e.g. ``POST /user/repos``."""

    operation_name: str
    method: str
    path: str
    body: dict[str, Any] | None = None


RemoteRequest = GraphQLRequest | RestRequest


class RemoteAPIClient(Protocol):
    """Executes one blocking request/response per call, with no implicit retry.

    `query` returns the GraphQL `data` object (or the REST JSON body) and raises
    `NotFoundError` for a definitively absent resource. `mutate` returns the
    same shape and raises `ConflictError` / `PreconditionFailedError` where the
    platform reports them. Both raise `TransientError` for everything else.
    """

    def query(self, request: RemoteRequest) -> dict[str, Any]: ...

    def mutate(self, request: RemoteRequest) -> dict[str, Any]: ...
