"""Typed failures raised by a RemoteAPIClient.

Provisioners only swallow `ConflictError` where an "already exists" answer is
the idempotent re-run case (branch, pull request, project link). Everything
else reaches the orchestrator, which attaches the stage being attempted.
"""

from __future__ import annotations


class RemoteAPIError(Exception):
    """Base class for errors reported by the remote API collaborator."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(RemoteAPIError):
    """The resource is definitively absent (404 or GraphQL NOT_FOUND)."""


class ConflictError(RemoteAPIError):
    """The resource already exists or is already in the requested state."""


class PreconditionFailedError(RemoteAPIError):
    """An optimistic-concurrency check failed (the branch moved since it was read).

    Must not be retried with the stale expected head.
    """


class TransientError(RemoteAPIError):
    """Any other failure: auth, network, rate limit, malformed or rejected request.

    `retryable` is True only for failures where replaying a read is safe and may
    succeed (timeouts, connection errors, 5xx, rate limits).
    """

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = False) -> None:
        super().__init__(message, status=status)
        self.retryable = retryable
