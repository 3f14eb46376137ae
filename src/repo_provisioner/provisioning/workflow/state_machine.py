from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from repo_provisioner.provisioning.models import ResourceRef


class ProvisioningState(str, Enum):
    START = "start"
    REPOSITORY_READY = "repository_ready"
    ISSUE_CREATED = "issue_created"
    PULL_REQUEST_READY = "pull_request_ready"
    PROJECT_LINKED = "project_linked"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Stage order; each state is reached by completing (or skipping) one stage.
STAGE_ORDER: tuple[ProvisioningState, ...] = (
    ProvisioningState.REPOSITORY_READY,
    ProvisioningState.ISSUE_CREATED,
    ProvisioningState.PULL_REQUEST_READY,
    ProvisioningState.PROJECT_LINKED,
)

TERMINAL_STATES: frozenset[ProvisioningState] = frozenset(
    {ProvisioningState.DONE, ProvisioningState.FAILED, ProvisioningState.CANCELLED}
)

_HALT = {ProvisioningState.FAILED, ProvisioningState.CANCELLED}

ALLOWED_TRANSITIONS: dict[ProvisioningState, set[ProvisioningState]] = {
    ProvisioningState.START: {ProvisioningState.REPOSITORY_READY, *_HALT},
    ProvisioningState.REPOSITORY_READY: {ProvisioningState.ISSUE_CREATED, *_HALT},
    ProvisioningState.ISSUE_CREATED: {ProvisioningState.PULL_REQUEST_READY, *_HALT},
    ProvisioningState.PULL_REQUEST_READY: {ProvisioningState.PROJECT_LINKED, *_HALT},
    ProvisioningState.PROJECT_LINKED: {ProvisioningState.DONE, *_HALT},
    ProvisioningState.DONE: set(),
    ProvisioningState.FAILED: set(),
    ProvisioningState.CANCELLED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(frozen=True, slots=True)
class RunSnapshot:
    """Where a run is, what it has produced so far, and why it stopped.

    `failed_stage` is the stage being attempted when the run failed, expressed
    as the state that stage would have reached.
    """

    state: ProvisioningState
    repository: str | None = None
    refs: dict[str, ResourceRef] = field(default_factory=dict)
    failed_stage: ProvisioningState | None = None
    cause: str | None = None
    updated_at: str = field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def with_ref(self, key: str, ref: ResourceRef) -> RunSnapshot:
        return replace(self, refs={**self.refs, key: ref}, updated_at=_now())

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "state": self.state.value,
            "refs": {key: ref.to_json() for key, ref in self.refs.items()},
            "updated_at": self.updated_at,
        }
        if self.repository is not None:
            out["repository"] = self.repository
        if self.failed_stage is not None:
            out["failed_stage"] = self.failed_stage.value
        if self.cause is not None:
            out["cause"] = self.cause
        return out

    @staticmethod
    def from_json(obj: dict[str, object]) -> RunSnapshot:
        def _state(v: object) -> ProvisioningState | None:
            if not isinstance(v, str):
                return None
            try:
                return ProvisioningState(v)
            except ValueError:
                return None

        refs: dict[str, ResourceRef] = {}
        refs_raw = obj.get("refs")
        if isinstance(refs_raw, dict):
            for key, value in refs_raw.items():
                if isinstance(key, str) and isinstance(value, dict):
                    ref = ResourceRef.from_json(value)
                    if ref is not None:
                        refs[key] = ref

        repo_raw = obj.get("repository")
        cause_raw = obj.get("cause")
        updated_raw = obj.get("updated_at")
        return RunSnapshot(
            state=_state(obj.get("state")) or ProvisioningState.START,
            repository=repo_raw if isinstance(repo_raw, str) else None,
            refs=refs,
            failed_stage=_state(obj.get("failed_stage")),
            cause=cause_raw if isinstance(cause_raw, str) else None,
            updated_at=updated_raw if isinstance(updated_raw, str) else _now(),
        )


def transition(*, current: RunSnapshot, to: ProvisioningState) -> RunSnapshot:
    allowed = ALLOWED_TRANSITIONS.get(current.state, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.state.value} -> {to.value}")
    return replace(current, state=to, updated_at=_now())


def fail(*, current: RunSnapshot, stage: ProvisioningState, cause: str) -> RunSnapshot:
    """Move to FAILED, recording the stage being attempted and the cause."""

    failed = transition(current=current, to=ProvisioningState.FAILED)
    return replace(failed, failed_stage=stage, cause=cause)


class RunStateStore:
    """Persist the snapshot of the last run for inspection.

    Observational only: a new run starts from START and re-resolves every
    resource remotely, whatever the stored snapshot says.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> RunSnapshot | None:
        if not self._path.exists():
            return None
        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            return None
        return RunSnapshot.from_json(raw)

    def save(self, snapshot: RunSnapshot) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(snapshot.to_json(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
