"""Plan applier -- executes a ReconciliationPlan against a Tracker.

Operations run one at a time, in a fixed phase order:

1. creates (new items show up first),
2. title updates,
3. reopens and other state changes (uncomplete, complete),
4. closes last, so nothing user-visible is retired before its
   replacements exist.

Each mutation is retried with exponential backoff and jitter on transient
failures.  Permanent failures are recorded and the run moves on, unless
strict mode is on, in which case the run stops after the first one.  A
cancellation token is polled between operations and before every retry
sleep.

The applier never raises: the returned :class:`ApplyReport` carries every
outcome as data.

Typical usage::

    applier = PlanApplier(tracker, retry_policy=config.retry_policy())
    report = applier.apply("PARENT-1", plan)
    sys.exit(report.exit_code())
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from foundry_mcp.models.plan import ReconciliationPlan
from foundry_mcp.models.report import (
    ApplyReport,
    ErrorKind,
    OperationKind,
    OperationOutcome,
    OutcomeStatus,
)
from foundry_mcp.models.tasks import ExistingSubIssue, IssueState
from foundry_mcp.reconcile.markers import fqid
from foundry_mcp.tracker.base import Tracker, TrackerError, TransientTrackerError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], None]

# Built-in exceptions a tracker may leak that still mean "try again".
_TRANSIENT_BUILTINS = (TimeoutError, ConnectionError)


# ---------------------------------------------------------------------------
# Retry policy and cancellation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with relative jitter.

    The delay before retry *n* (1-based) is
    ``base_delay * multiplier ** (n - 1)``, scaled by a random factor in
    ``[1 - jitter, 1 + jitter]``.
    """

    max_attempts: int = 5
    base_delay: float = 0.25
    multiplier: float = 2.0
    jitter: float = 0.2

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")

    def delay_for(self, retry_number: int, rng: random.Random) -> float:
        delay = self.base_delay * (self.multiplier ** (retry_number - 1))
        if self.jitter:
            delay *= 1.0 + rng.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


class CancellationToken:
    """Thread-safe cancellation flag polled by the applier."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; return early (True) on cancellation."""
        return self._event.wait(timeout)


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


@dataclass
class _Operation:
    kind: OperationKind
    target: str
    issue_id: Optional[str]
    call: Callable[[], Optional[str]]


class PlanApplier:
    """Applies plans to a tracker, one operation at a time.

    Parameters
    ----------
    tracker:
        Any object satisfying the :class:`Tracker` protocol.
    retry_policy:
        Backoff settings for transient failures.
    strict:
        Default for :meth:`apply`'s ``strict`` argument.
    sleeper:
        Replacement for the backoff sleep (tests pass a recorder).  When
        *None*, the applier sleeps on the cancellation token so that a
        cancel cuts a backoff short.
    rng:
        Random source for jitter.
    """

    def __init__(
        self,
        tracker: Tracker,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        strict: bool = False,
        sleeper: Optional[SleepFn] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.tracker = tracker
        self.retry_policy = retry_policy or RetryPolicy()
        self.strict = strict
        self._sleeper = sleeper
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(
        self,
        parent_id: str,
        plan: ReconciliationPlan,
        *,
        cancel_token: Optional[CancellationToken] = None,
        strict: Optional[bool] = None,
    ) -> ApplyReport:
        """Execute *plan* under *parent_id* and report every outcome."""
        strict = self.strict if strict is None else strict
        report = ApplyReport()
        operations = self._operations(parent_id, plan)

        logger.info(
            "Applying plan to %s: %d operation(s)%s.",
            fqid(parent_id),
            len(operations),
            " (strict)" if strict else "",
        )

        for index, operation in enumerate(operations):
            if cancel_token is not None and cancel_token.cancelled:
                report.cancelled = True
                self._skip_rest(report, operations[index:], "Cancelled before start.")
                break

            outcome = report.record(self._execute(operation, cancel_token))

            if cancel_token is not None and cancel_token.cancelled:
                report.cancelled = True
                self._skip_rest(report, operations[index + 1:], "Cancelled before start.")
                break

            if (
                strict
                and outcome.status == OutcomeStatus.FAILED
                and outcome.error_kind == ErrorKind.PERMANENT
            ):
                report.aborted = True
                logger.warning(
                    "Strict mode: aborting after permanent failure on %s %s.",
                    operation.kind.value,
                    operation.target,
                )
                self._skip_rest(
                    report,
                    operations[index + 1:],
                    "Not attempted: strict mode aborted the run.",
                )
                break

        logger.info(
            "Apply finished for %s: %d succeeded, %d failed, %d skipped%s.",
            fqid(parent_id),
            report.count(OutcomeStatus.SUCCEEDED),
            report.count(OutcomeStatus.FAILED),
            report.count(OutcomeStatus.SKIPPED),
            " (cancelled)" if report.cancelled else "",
        )
        return report

    def fetch_children(
        self,
        parent_id: str,
        *,
        cancel_token: Optional[CancellationToken] = None,
    ) -> list[ExistingSubIssue]:
        """List *parent_id*'s sub-issues, retrying transient failures.

        Raises
        ------
        TrackerError
            The last error, once retries are exhausted or on a permanent
            failure.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return self.tracker.list_children(parent_id)
            except (TransientTrackerError, *_TRANSIENT_BUILTINS) as exc:
                if attempt >= self.retry_policy.max_attempts or (
                    cancel_token is not None and cancel_token.cancelled
                ):
                    if isinstance(exc, TrackerError):
                        raise
                    raise TransientTrackerError(str(exc)) from exc
                delay = self._backoff(attempt, exc)
                logger.info(
                    "Listing children of %s failed (attempt %d/%d): %s. Retrying in %.2fs.",
                    fqid(parent_id),
                    attempt,
                    self.retry_policy.max_attempts,
                    exc,
                    delay,
                )
                self._sleep(delay, cancel_token)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _operations(self, parent_id: str, plan: ReconciliationPlan) -> list[_Operation]:
        tracker = self.tracker
        ops: list[_Operation] = []

        for create in plan.to_create:
            ops.append(
                _Operation(
                    kind=OperationKind.CREATE,
                    target=create.task_key,
                    issue_id=None,
                    call=lambda c=create: tracker.create_subissue(
                        parent_id, c.title, c.task_key, c.completed
                    ),
                )
            )
        for update in plan.to_update:
            ops.append(
                _Operation(
                    kind=OperationKind.UPDATE,
                    target=update.id,
                    issue_id=update.id,
                    call=lambda u=update: tracker.update_title(u.id, u.new_title),
                )
            )

        state_phases = (
            (OperationKind.REOPEN, plan.to_reopen, IssueState.OPEN),
            (OperationKind.UNCOMPLETE, plan.to_uncomplete, IssueState.OPEN),
            (OperationKind.COMPLETE, plan.to_complete, IssueState.COMPLETED),
            (OperationKind.CLOSE, plan.to_close, IssueState.CANCELED),
        )
        for kind, issue_ids, state in state_phases:
            for issue_id in issue_ids:
                ops.append(
                    _Operation(
                        kind=kind,
                        target=issue_id,
                        issue_id=issue_id,
                        call=lambda i=issue_id, s=state: tracker.set_state(i, s),
                    )
                )
        return ops

    def _execute(
        self,
        operation: _Operation,
        cancel_token: Optional[CancellationToken],
    ) -> OperationOutcome:
        """Run one operation with retries and turn the result into an outcome."""
        label = self._describe(operation)
        max_attempts = self.retry_policy.max_attempts
        attempt = 0

        while True:
            attempt += 1
            try:
                result = operation.call()
            except (TransientTrackerError, *_TRANSIENT_BUILTINS) as exc:
                message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
                if attempt >= max_attempts:
                    logger.warning(
                        "%s failed after %d attempt(s): %s", label, attempt, message
                    )
                    return self._failed(operation, attempt, ErrorKind.TRANSIENT, message)

                if cancel_token is not None and cancel_token.cancelled:
                    return self._skipped(operation, attempt, "Cancelled before retry.")

                delay = self._backoff(attempt, exc)
                logger.info(
                    "%s failed transiently (attempt %d/%d): %s. Retrying in %.2fs.",
                    label,
                    attempt,
                    max_attempts,
                    message,
                    delay,
                )
                self._sleep(delay, cancel_token)

                if cancel_token is not None and cancel_token.cancelled:
                    return self._skipped(operation, attempt, "Cancelled before retry.")
                continue
            except TrackerError as exc:
                logger.warning("%s failed permanently: %s", label, exc.message)
                return self._failed(operation, attempt, ErrorKind.PERMANENT, exc.message)
            except Exception as exc:
                logger.exception("%s raised an unexpected error.", label)
                return self._failed(
                    operation,
                    attempt,
                    ErrorKind.PERMANENT,
                    f"{type(exc).__name__}: {exc}",
                )

            issue_id = result if operation.kind == OperationKind.CREATE else operation.issue_id
            logger.info(
                "%s succeeded%s.",
                label,
                f" as {fqid(issue_id)}" if operation.kind == OperationKind.CREATE and issue_id else "",
            )
            return OperationOutcome(
                kind=operation.kind,
                target=operation.target,
                status=OutcomeStatus.SUCCEEDED,
                attempts=attempt,
                issue_id=issue_id,
            )

    def _backoff(self, attempt: int, exc: BaseException) -> float:
        delay = self.retry_policy.delay_for(attempt, self._rng)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, float(retry_after))
        return delay

    def _sleep(self, delay: float, cancel_token: Optional[CancellationToken]) -> None:
        if self._sleeper is not None:
            self._sleeper(delay)
        elif cancel_token is not None:
            cancel_token.wait(delay)
        else:
            time.sleep(delay)

    @staticmethod
    def _describe(operation: _Operation) -> str:
        if operation.kind == OperationKind.CREATE:
            return f"create [{operation.target}]"
        return f"{operation.kind.value} {fqid(operation.target)}"

    @staticmethod
    def _failed(
        operation: _Operation,
        attempts: int,
        error_kind: ErrorKind,
        message: str,
    ) -> OperationOutcome:
        return OperationOutcome(
            kind=operation.kind,
            target=operation.target,
            status=OutcomeStatus.FAILED,
            attempts=attempts,
            issue_id=operation.issue_id,
            error_kind=error_kind,
            message=message,
        )

    @staticmethod
    def _skipped(operation: _Operation, attempts: int, message: str) -> OperationOutcome:
        return OperationOutcome(
            kind=operation.kind,
            target=operation.target,
            status=OutcomeStatus.SKIPPED,
            attempts=attempts,
            issue_id=operation.issue_id,
            message=message,
        )

    def _skip_rest(
        self,
        report: ApplyReport,
        operations: list[_Operation],
        message: str,
    ) -> None:
        for operation in operations:
            report.record(self._skipped(operation, 0, message))
