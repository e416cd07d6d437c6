# =============================================================================
# Durable Workflow Engine — Persisted Runs, Step Markers, Retry Policy
# =============================================================================
#
# Runs a workflow definition as a sequence of named steps whose results are
# committed to the `workflow_runs` table as they complete. The same code runs
# under Celery, the local thread pool, or directly in a test.
#
# RUN LIFECYCLE:
#
#   start()    insert run row (pending) if absent          [idempotent]
#   execute()  claim lease (compare-and-set) → run steps → persisted
#                                                       └─→ failed
#   reset()    failed → pending, keeping committed step results
#
# DELIVERY GUARANTEES:
# - At-least-once delivery is expected. A duplicate execute() for a run that
#   is persisted returns the stored outcome; for a run held by a live lease
#   it returns immediately without touching anything, with `retry_in` set to
#   the seconds left on that lease so the caller can redeliver after it.
# - A step found in step_results is never executed again; its stored result
#   is returned instead. Only the lease holder writes step results.
# - An executor that dies mid-run leaves its lease to expire. The delivery
#   rescheduled for that moment (Celery retry, or the local queue timer)
#   reclaims the run and resumes after the last committed step.
# - unfinished_runs() lists pending and summarizing runs for the startup
#   sweep of the local backend.
#
# RETRIES:
# Each step call is retried in-process by tenacity, configured from
# RetryPolicy: exponential backoff, raised to a rate limit's retry_after.
# Only transient errors are retried (PaperChatError.transient, or a
# SQLAlchemy OperationalError). Anything else, or running out of attempts,
# raises WorkflowStepError and the run is marked failed.
# =============================================================================

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from paperchat.db.engine import SessionFactory, session_scope
from paperchat.db.models import WorkflowRun, WorkflowState
from paperchat.errors import PaperChatError, RateLimitError, WorkflowStepError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Retry Policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff, handed to tenacity by call_with_retry().

    With the defaults a step is tried 3 times, waiting 2s then 4s.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    retry_on: tuple[type[BaseException], ...] = (OperationalError,)

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, PaperChatError):
            return exc.transient
        return isinstance(exc, self.retry_on)

    def wait_strategy(self) -> Callable[[RetryCallState], float]:
        """
        tenacity wait: base_delay * multiplier ** (n - 1), at least a rate
        limit's retry_after, never more than max_delay.
        """
        backoff = wait_exponential(
            multiplier=self.base_delay,
            exp_base=self.multiplier,
            max=self.max_delay,
        )

        def wait(retry_state: RetryCallState) -> float:
            delay = backoff(retry_state)
            outcome = retry_state.outcome
            exc = outcome.exception() if outcome is not None else None
            if isinstance(exc, RateLimitError) and exc.retry_after:
                delay = max(delay, exc.retry_after)
            return min(delay, self.max_delay)

        return wait


# ---------------------------------------------------------------------------
# Run Persistence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunSnapshot:
    run_id: str
    workflow: str
    document_id: str
    state: WorkflowState
    payload: dict
    step_results: dict = field(default_factory=dict)
    attempts: int = 0
    error_message: str | None = None
    lease_expires_at: datetime | None = None

    @classmethod
    def from_row(cls, row: WorkflowRun) -> RunSnapshot:
        return cls(
            run_id=row.id,
            workflow=row.workflow,
            document_id=row.document_id,
            state=WorkflowState(row.state),
            payload=dict(row.payload or {}),
            step_results=dict(row.step_results or {}),
            attempts=row.attempts,
            error_message=row.error_message,
            lease_expires_at=_as_utc(row.lease_expires_at),
        )


def _as_utc(moment: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; every stored value is UTC.
    if moment is not None and moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


class WorkflowRunStore:
    """SQLAlchemy persistence for workflow runs."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, run_id: str) -> RunSnapshot | None:
        with session_scope(self._session_factory) as session:
            row = session.get(WorkflowRun, run_id)
            return RunSnapshot.from_row(row) if row else None

    def unfinished_runs(self) -> list[RunSnapshot]:
        """Runs that are pending or summarizing, oldest first."""
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(WorkflowRun)
                .where(
                    WorkflowRun.state.in_(
                        [WorkflowState.PENDING, WorkflowState.SUMMARIZING]
                    )
                )
                .order_by(WorkflowRun.created_at, WorkflowRun.id)
            ).all()
            return [RunSnapshot.from_row(row) for row in rows]

    def create_if_absent(
        self,
        run_id: str,
        workflow: str,
        document_id: str,
        payload: dict,
    ) -> tuple[RunSnapshot, bool]:
        """
        Insert a pending run. Returns (run, created).
        """
        try:
            with session_scope(self._session_factory) as session:
                row = WorkflowRun(
                    id=run_id,
                    workflow=workflow,
                    document_id=document_id,
                    state=WorkflowState.PENDING,
                    payload=payload,
                    step_results={},
                    attempts=0,
                )
                session.add(row)
                session.flush()
                return RunSnapshot.from_row(row), True
        except IntegrityError:
            existing = self.get(run_id)
            if existing is None:
                raise
            return existing, False

    def claim(self, run_id: str, lease_seconds: int) -> RunSnapshot | None:
        """
        Take the run's lease if it is pending, or running with an expired
        lease. Returns the claimed run, or None if someone else holds it or
        it is already terminal.
        """
        now = datetime.now(UTC)
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(WorkflowRun)
                .where(
                    WorkflowRun.id == run_id,
                    or_(
                        WorkflowRun.state == WorkflowState.PENDING,
                        (WorkflowRun.state == WorkflowState.SUMMARIZING)
                        & (WorkflowRun.lease_expires_at < now),
                    ),
                )
                .values(
                    state=WorkflowState.SUMMARIZING,
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    attempts=WorkflowRun.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            row = session.scalars(
                select(WorkflowRun).where(WorkflowRun.id == run_id)
            ).one()
            return RunSnapshot.from_row(row)

    def record_step(
        self,
        run_id: str,
        step: str,
        result: Any,
        lease_seconds: int,
    ) -> None:
        """Commit a step result and extend the lease."""
        with session_scope(self._session_factory) as session:
            row = session.get(WorkflowRun, run_id, with_for_update=True)
            if row is None:
                raise LookupError(f"Workflow run '{run_id}' disappeared")
            row.step_results = {**(row.step_results or {}), step: result}
            row.lease_expires_at = datetime.now(UTC) + timedelta(seconds=lease_seconds)

    def finish(self, run_id: str) -> None:
        self._set_terminal(run_id, WorkflowState.PERSISTED, None)

    def fail(self, run_id: str, error_message: str) -> None:
        self._set_terminal(run_id, WorkflowState.FAILED, error_message[:1000])

    def reset(self, run_id: str) -> bool:
        """failed → pending. Returns False if the run was not failed."""
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(WorkflowRun)
                .where(
                    WorkflowRun.id == run_id,
                    WorkflowRun.state == WorkflowState.FAILED,
                )
                .values(
                    state=WorkflowState.PENDING,
                    error_message=None,
                    lease_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def _set_terminal(
        self,
        run_id: str,
        state: WorkflowState,
        error_message: str | None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                update(WorkflowRun)
                .where(WorkflowRun.id == run_id)
                .values(
                    state=state,
                    error_message=error_message,
                    lease_expires_at=None,
                )
                .execution_options(synchronize_session=False)
            )


# ---------------------------------------------------------------------------
# Workflow Definition Protocol
# ---------------------------------------------------------------------------


class WorkflowDefinition(Protocol):
    """A named sequence of steps, driven through a StepContext."""

    name: str

    def run_id_for(self, document_id: str) -> str:
        ...

    async def run(self, ctx: StepContext, payload: dict) -> dict:
        ...

    async def on_failure(self, run: RunSnapshot, error: WorkflowStepError) -> None:
        ...


@dataclass
class RunOutcome:
    """What a single execute() call did."""

    run_id: str
    state: WorkflowState
    executed: bool  # False when skipped (terminal, or leased elsewhere)
    result: dict | None = None
    error: str | None = None
    # Set only when another executor holds the lease: seconds until it lapses.
    retry_in: float | None = None

    @property
    def leased_elsewhere(self) -> bool:
        return self.retry_in is not None

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "executed": self.executed,
            "result": self.result,
            "error": self.error,
            "retry_in": self.retry_in,
        }


def _seconds_until(moment: datetime | None, minimum: float = 1.0) -> float:
    if moment is None:
        return minimum
    return max((moment - datetime.now(UTC)).total_seconds(), minimum)


# ---------------------------------------------------------------------------
# Step Context
# ---------------------------------------------------------------------------


class StepContext:
    """Handed to WorkflowDefinition.run(); memoizes steps in the run row."""

    def __init__(self, engine: WorkflowEngine, run: RunSnapshot) -> None:
        self._engine = engine
        self.run = run
        self.results: dict[str, Any] = dict(run.step_results)

    async def step(self, name: str, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Run `fn(*args)` as step `name`, or return its committed result.

        `fn` may be sync or async. Its return value must be JSON-serializable.
        """
        if name in self.results:
            logger.info(
                "[%s] Step '%s' already committed, skipping", self.run.run_id, name,
            )
            return self.results[name]

        result = await self._engine.call_with_retry(self.run.run_id, name, fn, *args)
        self._engine.store.record_step(
            self.run.run_id, name, result, self._engine.lease_seconds,
        )
        self.results[name] = result
        logger.info("[%s] Step '%s' committed", self.run.run_id, name)
        return result


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class WorkflowEngine:
    def __init__(
        self,
        store: WorkflowRunStore,
        retry_policy: RetryPolicy | None = None,
        lease_seconds: int = 600,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.lease_seconds = lease_seconds
        self._sleep = sleep

    def start(
        self,
        definition: WorkflowDefinition,
        document_id: str,
        payload: dict,
    ) -> RunSnapshot:
        """Persist a pending run for `document_id` (no-op if it exists)."""
        run_id = definition.run_id_for(document_id)
        run, created = self.store.create_if_absent(
            run_id, definition.name, document_id, payload,
        )
        if created:
            logger.info("Created workflow run %s", run_id)
        else:
            logger.info("Workflow run %s already exists (state=%s)", run_id, run.state.value)
        return run

    async def execute(
        self,
        definition: WorkflowDefinition,
        document_id: str,
        payload: dict,
    ) -> RunOutcome:
        """
        Deliver one trigger to the run for `document_id`.

        Safe to call any number of times for the same trigger.
        """
        run = self.start(definition, document_id, payload)
        claimed = self.store.claim(run.run_id, self.lease_seconds)

        if claimed is None:
            current = self.store.get(run.run_id) or run
            retry_in = None
            if current.state in (WorkflowState.PENDING, WorkflowState.SUMMARIZING):
                retry_in = _seconds_until(current.lease_expires_at)
            logger.info(
                "Skipping delivery for run %s (state=%s, retry_in=%s)",
                run.run_id, current.state.value, retry_in,
            )
            return RunOutcome(
                run_id=run.run_id,
                state=current.state,
                executed=False,
                result=(
                    current.step_results
                    if current.state is WorkflowState.PERSISTED
                    else None
                ),
                error=current.error_message,
                retry_in=retry_in,
            )

        logger.info(
            "Executing run %s (attempt %d, committed steps: %s)",
            claimed.run_id, claimed.attempts, sorted(claimed.step_results) or "none",
        )
        ctx = StepContext(self, claimed)

        try:
            result = await definition.run(ctx, claimed.payload)
        except WorkflowStepError as exc:
            logger.error("Run %s failed: %s", claimed.run_id, exc)
            self.store.fail(claimed.run_id, str(exc))
            await definition.on_failure(claimed, exc)
            return RunOutcome(
                run_id=claimed.run_id,
                state=WorkflowState.FAILED,
                executed=True,
                error=str(exc),
            )

        self.store.finish(claimed.run_id)
        logger.info("Run %s persisted", claimed.run_id)
        return RunOutcome(
            run_id=claimed.run_id,
            state=WorkflowState.PERSISTED,
            executed=True,
            result=result,
        )

    def reset(self, run_id: str) -> bool:
        reset = self.store.reset(run_id)
        if reset:
            logger.info("Run %s reset to pending", run_id)
        return reset

    async def call_with_retry(
        self,
        run_id: str,
        step: str,
        fn: Callable[..., Any],
        *args: Any,
    ) -> Any:
        policy = self.retry_policy

        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            logger.warning(
                "[%s] Step '%s' attempt %d/%d failed (%s: %s); retrying in %.1fs",
                run_id, step, retry_state.attempt_number, policy.max_attempts,
                type(exc).__name__, exc, retry_state.next_action.sleep,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=policy.wait_strategy(),
            retry=retry_if_exception(policy.is_retryable),
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    result = fn(*args)
                    if inspect.isawaitable(result):
                        result = await result
        except Exception as exc:
            logger.exception("[%s] Step '%s' failed", run_id, step)
            raise WorkflowStepError(step, f"{type(exc).__name__}: {exc}") from exc
        return result
