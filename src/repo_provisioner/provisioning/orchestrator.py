"""Sequences the provisioners in dependency order.

repository -> issue -> pull request (branch + commit + PR) -> project + link.

Identifiers produced by a stage are threaded forward through an explicit
`StageContext`; nothing else is shared between stages. The first failure
halts the run and is reported with the stage being attempted. Completed
stages are not rolled back: re-running the plan finds them.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from repo_provisioner.provisioning.errors import RemoteAPIError
from repo_provisioner.provisioning.github.api import RemoteAPIClient
from repo_provisioner.provisioning.models import (
    LinkResult,
    ProvisioningResult,
    RepositoryRef,
    ResourceRef,
    require_repository,
)
from repo_provisioner.provisioning.plan import ProvisioningPlan, Stage
from repo_provisioner.provisioning.provisioners import (
    IssueProvisioner,
    ProjectProvisioner,
    PullRequestProvisioner,
    RepositoryProvisioner,
)
from repo_provisioner.provisioning.resolver import ExistenceResolver
from repo_provisioner.provisioning.workflow.state_machine import (
    STAGE_ORDER,
    ProvisioningState,
    RunSnapshot,
    RunStateStore,
    fail,
    transition,
)

logger = logging.getLogger(__name__)

# Deselectable stages, by the state each one reaches.
_SELECTABLE: dict[ProvisioningState, Stage] = {
    ProvisioningState.ISSUE_CREATED: Stage.ISSUE,
    ProvisioningState.PULL_REQUEST_READY: Stage.PULL_REQUEST,
    ProvisioningState.PROJECT_LINKED: Stage.PROJECT,
}

OutcomeStatus = Literal["created", "found", "skipped"]


@dataclass(slots=True)
class StageContext:
    """Refs produced so far in this run, read by the later stages."""

    repository: RepositoryRef | None = None
    issue: ResourceRef | None = None
    pull_request: ResourceRef | None = None
    project: ResourceRef | None = None

    def require_repository(self) -> RepositoryRef:
        return require_repository(self.repository)


@dataclass(frozen=True, slots=True)
class StageOutcome:
    stage: ProvisioningState
    result: ProvisioningResult | None = None
    link: LinkResult | None = None

    @property
    def status(self) -> OutcomeStatus:
        if self.result is None:
            return "skipped"
        return "created" if self.result.created else "found"


@dataclass(frozen=True, slots=True)
class StageFailure:
    """The stage being attempted when the run halted, and why."""

    stage: ProvisioningState
    cause: Exception

    @property
    def message(self) -> str:
        return f"{type(self.cause).__name__}: {self.cause}"


@dataclass(frozen=True, slots=True)
class ProvisioningReport:
    final_state: ProvisioningState
    outcomes: tuple[StageOutcome, ...] = ()
    failure: StageFailure | None = None
    cancel_reason: str | None = None
    refs: dict[str, ResourceRef] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.final_state is ProvisioningState.DONE

    @property
    def cancelled(self) -> bool:
        return self.final_state is ProvisioningState.CANCELLED


class DependencyOrchestrator:
    """Runs a `ProvisioningPlan` against a `RemoteAPIClient`.

    Cancellation (the `cancel_event`, or the deadline measured from the start
    of `run`) is only checked between stages; a mutation in flight is never
    interrupted.
    """

    def __init__(
        self,
        *,
        client: RemoteAPIClient,
        store: RunStateStore | None = None,
        cancel_event: threading.Event | None = None,
        deadline_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_issue_pages: int = 10,
    ) -> None:
        if deadline_seconds is not None and deadline_seconds <= 0:
            raise ValueError("deadline_seconds must be > 0")
        self._client = client
        self._store = store
        self._cancel_event = cancel_event or threading.Event()
        self._deadline_seconds = deadline_seconds
        self._clock = clock
        self._resolver = ExistenceResolver(client=client, max_issue_pages=max_issue_pages)

    def run(self, plan: ProvisioningPlan) -> ProvisioningReport:
        deadline = (
            self._clock() + self._deadline_seconds if self._deadline_seconds is not None else None
        )
        snapshot = RunSnapshot(state=ProvisioningState.START, repository=plan.name_with_owner)
        self._save(snapshot)
        context = StageContext()
        outcomes: list[StageOutcome] = []

        logger.info(
            "Provisioning run started",
            extra={
                "repository": plan.name_with_owner,
                "skip": sorted(s.value for s in plan.skip),
                "commit_strategy": plan.commit_strategy,
            },
        )

        for stage in STAGE_ORDER:
            reason = self._cancel_reason(deadline)
            if reason is not None:
                snapshot = transition(current=snapshot, to=ProvisioningState.CANCELLED)
                self._save(snapshot)
                logger.warning(
                    "Provisioning run cancelled",
                    extra={"next_stage": stage.value, "reason": reason},
                )
                return self._report(snapshot, outcomes, cancel_reason=reason)

            selectable = _SELECTABLE.get(stage)
            if selectable is not None and not plan.runs(selectable):
                logger.info("Stage skipped", extra={"stage": stage.value})
                outcomes.append(StageOutcome(stage=stage))
                snapshot = transition(current=snapshot, to=stage)
                self._save(snapshot)
                continue

            logger.info("Stage started", extra={"stage": stage.value})
            try:
                outcome = self._run_stage(stage, plan, context)
            except (RemoteAPIError, ValueError) as e:
                return self._halt(snapshot, outcomes, stage, e)
            except Exception as e:
                logger.exception("Unexpected error", extra={"stage": stage.value})
                return self._halt(snapshot, outcomes, stage, e)

            outcomes.append(outcome)
            snapshot = transition(current=snapshot, to=stage)
            if outcome.result is not None:
                snapshot = snapshot.with_ref(outcome.result.ref.kind.value, outcome.result.ref)
            self._save(snapshot)
            self._log_outcome(outcome)

        snapshot = transition(current=snapshot, to=ProvisioningState.DONE)
        self._save(snapshot)
        logger.info("Provisioning run finished", extra={"repository": plan.name_with_owner})
        return self._report(snapshot, outcomes)

    def _run_stage(
        self, stage: ProvisioningState, plan: ProvisioningPlan, context: StageContext
    ) -> StageOutcome:
        if stage is ProvisioningState.REPOSITORY_READY:
            provisioner = RepositoryProvisioner(
                client=self._client,
                resolver=self._resolver,
                visibility=plan.visibility,
                has_issues=plan.has_issues,
                has_projects=plan.has_projects,
            )
            result = provisioner.provision(plan.repository_descriptor())
            context.repository = require_repository(result.ref)
            return StageOutcome(stage=stage, result=result)

        repository = context.require_repository()

        if stage is ProvisioningState.ISSUE_CREATED:
            issues = IssueProvisioner(client=self._client, resolver=self._resolver)
            result = issues.provision(plan.issue_descriptor(repository))
            context.issue = result.ref
            return StageOutcome(stage=stage, result=result)

        if stage is ProvisioningState.PULL_REQUEST_READY:
            pulls = PullRequestProvisioner(
                client=self._client,
                resolver=self._resolver,
                commit_strategy=plan.commit_strategy,
            )
            result = pulls.provision(plan.pull_request_descriptor(repository), plan.branch_change())
            context.pull_request = result.ref
            return StageOutcome(stage=stage, result=result)

        if stage is ProvisioningState.PROJECT_LINKED:
            projects = ProjectProvisioner(client=self._client, resolver=self._resolver)
            result = projects.provision(plan.project_descriptor())
            context.project = result.ref
            link = projects.link(result.ref, repository)
            return StageOutcome(stage=stage, result=result, link=link)

        raise ValueError(f"Unknown stage: {stage.value}")

    def _halt(
        self,
        snapshot: RunSnapshot,
        outcomes: list[StageOutcome],
        stage: ProvisioningState,
        cause: Exception,
    ) -> ProvisioningReport:
        failure = StageFailure(stage=stage, cause=cause)
        snapshot = fail(current=snapshot, stage=stage, cause=failure.message)
        self._save(snapshot)
        logger.error(
            "Stage failed",
            extra={
                "stage": stage.value,
                "error_type": type(cause).__name__,
                "cause": str(cause),
                "retryable": getattr(cause, "retryable", False),
            },
        )
        return self._report(snapshot, outcomes, failure=failure)

    def _cancel_reason(self, deadline: float | None) -> str | None:
        if self._cancel_event.is_set():
            return "cancelled"
        if deadline is not None and self._clock() >= deadline:
            return "deadline exceeded"
        return None

    def _save(self, snapshot: RunSnapshot) -> None:
        if self._store is not None:
            self._store.save(snapshot)

    @staticmethod
    def _log_outcome(outcome: StageOutcome) -> None:
        if outcome.result is None:
            return
        ref = outcome.result.ref
        extra: dict[str, object] = {
            "stage": outcome.stage.value,
            "kind": ref.kind.value,
            "id": ref.id,
            "url": ref.url,
            "resource_created": outcome.result.created,
        }
        if outcome.link is not None:
            extra["link_created"] = outcome.link.created
        logger.info("Stage completed", extra=extra)

    @staticmethod
    def _report(
        snapshot: RunSnapshot,
        outcomes: list[StageOutcome],
        *,
        failure: StageFailure | None = None,
        cancel_reason: str | None = None,
    ) -> ProvisioningReport:
        return ProvisioningReport(
            final_state=snapshot.state,
            outcomes=tuple(outcomes),
            failure=failure,
            cancel_reason=cancel_reason,
            refs=dict(snapshot.refs),
        )
