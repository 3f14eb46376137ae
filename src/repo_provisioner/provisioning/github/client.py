"""GitHub transport implementing `RemoteAPIClient`.

GraphQL and REST requests share one `requests.Session`. Failures are mapped
onto the typed errors the provisioning core understands, so that a
definitively absent resource is never confused with an auth or network
failure.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse, urlunparse

import requests

from repo_provisioner.provisioning.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    RemoteAPIError,
    TransientError,
)

from .api import GraphQLRequest, RemoteRequest, RestRequest

logger = logging.getLogger(__name__)

_CONFLICT_MARKERS = (
    "already exists",
    "reference already exists",
    "name already exists on this account",
    "already linked",
)
_PRECONDITION_MARKERS = (
    "expected branch to point to",
    "expectedheadoid",
    "update is not a fast forward",
)
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _looks_like(message: str, markers: tuple[str, ...]) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in markers)


class GitHubClient:
    """Executes structured requests against GitHub's REST and GraphQL APIs."""

    def __init__(
        self,
        *,
        token: str,
        base_url: str = "https://api.github.com",
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")

        self._rest_base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "repo-provisioner",
            }
        )

    def query(self, request: RemoteRequest) -> dict[str, Any]:
        return self._execute(request, mutation=False)

    def mutate(self, request: RemoteRequest) -> dict[str, Any]:
        return self._execute(request, mutation=True)

    def _execute(self, request: RemoteRequest, *, mutation: bool) -> dict[str, Any]:
        if not isinstance(request, (GraphQLRequest, RestRequest)):
            raise TypeError(f"Unsupported request type: {type(request).__name__}")
        logger.debug(
            "Executing remote request",
            extra={"operation": request.operation_name, "mutation": mutation},
        )
        if isinstance(request, GraphQLRequest):
            return self._graphql(request)
        return self._rest(request)

    def _rest_url(self, path: str) -> str:
        return f"{self._rest_base_url}/{path.lstrip('/')}"

    def _graphql_url(self) -> str:
        """Derive the GitHub GraphQL endpoint from the configured REST base URL.

        GitHub.com:
            REST: https://api.github.com
            GQL:  https://api.github.com/graphql

        GitHub Enterprise typically exposes REST as:
            https://github.example.com/api/v3
        and GraphQL as:
            https://github.example.com/api/graphql
        """

        parsed = urlparse(self._rest_base_url)
        path = parsed.path.rstrip("/")

        if path.endswith("/api/v3"):
            path = path[: -len("/api/v3")] + "/api/graphql"
        elif path.endswith("/api"):
            path = path + "/graphql"
        elif path == "":
            path = "/graphql"
        else:
            path = path + "/graphql"

        return urlunparse(parsed._replace(path=path))

    def _send(self, method: str, url: str, *, json_body: Any, operation: str) -> requests.Response:
        try:
            return self._session.request(method, url, json=json_body, timeout=self._timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientError(f"{operation}: network failure: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise TransientError(f"{operation}: request failed: {e}") from e

    @staticmethod
    def _json(resp: requests.Response, *, operation: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise TransientError(
                f"{operation}: malformed response (HTTP {resp.status_code})",
                status=resp.status_code,
            ) from e

    @staticmethod
    def _rest_error_message(resp: requests.Response) -> str:
        try:
            payload = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        if not isinstance(payload, dict):
            return f"HTTP {resp.status_code}"

        parts: list[str] = []
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            parts.append(message)
        errors = payload.get("errors")
        if isinstance(errors, list):
            for item in errors:
                if isinstance(item, dict):
                    detail = item.get("message")
                    if isinstance(detail, str) and detail.strip():
                        parts.append(detail)
                elif isinstance(item, str):
                    parts.append(item)
        return "; ".join(parts) or f"HTTP {resp.status_code}"

    @staticmethod
    def _is_rate_limited(resp: requests.Response, message: str) -> bool:
        if resp.headers.get("X-RateLimit-Remaining") == "0":
            return True
        return "rate limit" in message.lower()

    def _raise_for_status(self, resp: requests.Response, *, operation: str) -> None:
        status = resp.status_code
        if status < 400:
            return

        message = f"{operation}: {self._rest_error_message(resp)}"
        if status == 404:
            raise NotFoundError(message, status=status)
        if status == 409:
            raise ConflictError(message, status=status)
        if status == 422:
            if _looks_like(message, _PRECONDITION_MARKERS):
                raise PreconditionFailedError(message, status=status)
            if _looks_like(message, _CONFLICT_MARKERS):
                raise ConflictError(message, status=status)
            raise TransientError(message, status=status)
        if status in {401, 403}:
            raise TransientError(
                message, status=status, retryable=self._is_rate_limited(resp, message)
            )
        raise TransientError(message, status=status, retryable=status in _RETRYABLE_STATUS)

    def _rest(self, request: RestRequest) -> dict[str, Any]:
        url = self._rest_url(request.path)
        resp = self._send(
            request.method.upper(), url, json_body=request.body, operation=request.operation_name
        )
        self._raise_for_status(resp, operation=request.operation_name)
        if resp.status_code == 204 or not resp.content:
            return {}
        payload = self._json(resp, operation=request.operation_name)
        if not isinstance(payload, dict):
            raise TransientError(f"{request.operation_name}: unexpected response shape")
        return payload

    def _graphql(self, request: GraphQLRequest) -> dict[str, Any]:
        url = self._graphql_url()
        resp = self._send(
            "POST",
            url,
            json_body={
                "query": request.document,
                "operationName": request.operation_name,
                "variables": request.variables,
            },
            operation=request.operation_name,
        )
        self._raise_for_status(resp, operation=request.operation_name)
        payload = self._json(resp, operation=request.operation_name)
        if not isinstance(payload, dict):
            raise TransientError(f"{request.operation_name}: unexpected response shape")

        errors = payload.get("errors")
        if errors:
            raise self._graphql_error(errors, operation=request.operation_name)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise TransientError(f"{request.operation_name}: response is missing data")
        return data

    @staticmethod
    def _graphql_error(errors: object, *, operation: str) -> RemoteAPIError:
        types: list[str] = []
        messages: list[str] = []
        if isinstance(errors, list):
            for item in errors:
                if not isinstance(item, dict):
                    continue
                kind = item.get("type")
                if isinstance(kind, str):
                    types.append(kind)
                msg = item.get("message")
                if isinstance(msg, str):
                    messages.append(msg)

        # Keep the message small and actionable.
        message = f"{operation}: " + ("; ".join(messages) if messages else "Unknown GraphQL error")
        if "NOT_FOUND" in types:
            return NotFoundError(message)
        if "RATE_LIMITED" in types:
            return TransientError(message, retryable=True)
        if _looks_like(message, _PRECONDITION_MARKERS) and operation == "CreateCommitOnBranch":
            return PreconditionFailedError(message)
        if _looks_like(message, _CONFLICT_MARKERS):
            return ConflictError(message)
        return TransientError(message)

    def close(self) -> None:
        self._session.close()
