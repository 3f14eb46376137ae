"""Bounded retry around retryable transient failures.

Only read queries are replayed. A mutation that timed out may still have been
applied, so mutations pass straight through; re-running the idempotent
workflow is the recovery path for those.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from repo_provisioner.provisioning.errors import TransientError

from .api import RemoteAPIClient, RemoteRequest

logger = logging.getLogger(__name__)


class RetryingClient:
    """Wraps a `RemoteAPIClient`, retrying queries with exponential backoff.

    The delay before retry N (1-based) is ``backoff_seconds * 2 ** (N - 1)``.
    NotFound, conflict, precondition and non-retryable transient errors are
    raised immediately.
    """

    def __init__(
        self,
        inner: RemoteAPIClient,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")
        self._inner = inner
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._sleep = sleep

    def query(self, request: RemoteRequest) -> dict[str, Any]:
        attempt = 1
        while True:
            try:
                return self._inner.query(request)
            except TransientError as e:
                if not e.retryable or attempt >= self._max_attempts:
                    if e.retryable:
                        logger.error(
                            "Query failed after retries",
                            extra={"operation": request.operation_name, "attempts": attempt},
                        )
                    raise
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Retrying query after transient failure",
                    extra={
                        "operation": request.operation_name,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                        "delay_seconds": delay,
                        "error": str(e),
                    },
                )
                self._sleep(delay)
                attempt += 1

    def mutate(self, request: RemoteRequest) -> dict[str, Any]:
        return self._inner.mutate(request)
