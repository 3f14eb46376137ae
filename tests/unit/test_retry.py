"""Unit tests for the bounded retry wrapper."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from repo_provisioner.provisioning.errors import (
    ConflictError,
    NotFoundError,
    PreconditionFailedError,
    TransientError,
)
from repo_provisioner.provisioning.github import operations as ops
from repo_provisioner.provisioning.github.api import RemoteAPIClient
from repo_provisioner.provisioning.github.retry import RetryingClient

REQUEST = ops.repository_lookup(owner="o", name="r")


def _retrying(inner: Mock, **kwargs: object) -> tuple[RetryingClient, list[float]]:
    delays: list[float] = []
    client = RetryingClient(inner, sleep=delays.append, **kwargs)  # type: ignore[arg-type]
    return client, delays


def test_retryable_query_is_retried_with_exponential_backoff() -> None:
    inner = Mock(spec=RemoteAPIClient)
    inner.query.side_effect = [
        TransientError("timeout", retryable=True),
        TransientError("502", status=502, retryable=True),
        {"repository": None},
    ]
    client, delays = _retrying(inner, max_attempts=3, backoff_seconds=0.5)

    assert client.query(REQUEST) == {"repository": None}
    assert delays == [0.5, 1.0]
    assert inner.query.call_count == 3


def test_gives_up_after_max_attempts() -> None:
    inner = Mock(spec=RemoteAPIClient)
    inner.query.side_effect = TransientError("timeout", retryable=True)
    client, delays = _retrying(inner, max_attempts=2, backoff_seconds=1.0)

    with pytest.raises(TransientError):
        client.query(REQUEST)
    assert inner.query.call_count == 2
    assert delays == [1.0]


@pytest.mark.parametrize(
    "error",
    [
        TransientError("bad credentials", status=401),
        NotFoundError("missing"),
        ConflictError("exists"),
        PreconditionFailedError("moved"),
    ],
)
def test_non_retryable_errors_are_raised_immediately(error: Exception) -> None:
    inner = Mock(spec=RemoteAPIClient)
    inner.query.side_effect = error
    client, delays = _retrying(inner, max_attempts=5)

    with pytest.raises(type(error)):
        client.query(REQUEST)
    assert inner.query.call_count == 1
    assert delays == []


def test_mutations_are_never_retried() -> None:
    inner = Mock(spec=RemoteAPIClient)
    inner.mutate.side_effect = TransientError("timeout", retryable=True)
    client, delays = _retrying(inner, max_attempts=5)
    request = ops.create_issue(repository_id="R_1", title="t", body="b")

    with pytest.raises(TransientError):
        client.mutate(request)
    assert inner.mutate.call_count == 1
    assert delays == []


def test_invalid_arguments() -> None:
    inner = Mock(spec=RemoteAPIClient)
    with pytest.raises(ValueError):
        RetryingClient(inner, max_attempts=0)
    with pytest.raises(ValueError):
        RetryingClient(inner, backoff_seconds=-1)
