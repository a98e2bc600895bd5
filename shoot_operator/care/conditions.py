"""
Condition state machine.

Turns a new (failed or healthy) observation into the next condition value.
Thresholds give every condition type a grace period: a failing check first
reports Progressing and only escalates to False once the failure outlived
the threshold. All functions are pure given their inputs and the clock.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping, Optional, Sequence

from shoot_operator.models import (
    Condition,
    ConditionStatus,
    LastError,
    LastOperation,
    LastOperationState,
    LastOperationType,
)

Clock = Callable[[], datetime]

REASON_CHECK_ERROR = "ConditionCheckError"

UNSTABLE_OPERATION_TYPES = frozenset({LastOperationType.CREATE, LastOperationType.DELETE})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def init_condition(condition_type: str, now: Optional[datetime] = None) -> Condition:
    now = now or utcnow()
    return Condition(type=condition_type, lastTransitionTime=now, lastUpdateTime=now)


def updated_condition(
    condition: Condition,
    status: ConditionStatus,
    reason: str,
    message: str,
    codes: Sequence[str] = (),
    now: Optional[datetime] = None,
) -> Condition:
    """Return `condition` with new status/reason/message; the transition time moves only on status change."""
    now = now or utcnow()
    update = {
        "status": status,
        "reason": reason,
        "message": message,
        "codes": tuple(codes),
        "lastUpdateTime": now,
    }
    if condition.status != status or condition.lastTransitionTime is None:
        update["lastTransitionTime"] = now
    return condition.model_copy(update=update)


def updated_condition_unknown_error_message(
    condition: Condition, message: str, codes: Sequence[str] = (), now: Optional[datetime] = None,
) -> Condition:
    return updated_condition(condition, ConditionStatus.UNKNOWN, REASON_CHECK_ERROR, message, codes, now)


def updated_condition_unknown_error(
    condition: Condition, err: Optional[Exception], now: Optional[datetime] = None,
) -> Condition:
    message = str(err) if err is not None else "condition check did not produce a result"
    return updated_condition_unknown_error_message(condition, message, now=now)


def new_condition_or_error(
    old: Condition, new: Optional[Condition], err: Optional[Exception], now: Optional[datetime] = None,
) -> Condition:
    if err is not None or new is None:
        return updated_condition_unknown_error(old, err, now)
    return new


class ConditionStateMachine:
    """
    Threshold-driven transitions for failing observations.

    thresholds     -- max time a condition type may stay Progressing
    last_operation -- the shoot's last operation; a recently succeeded operation
                      keeps failing conditions lenient for one threshold window
    """

    def __init__(
        self,
        thresholds: Mapping[str, timedelta],
        last_operation: Optional[LastOperation] = None,
        clock: Clock = utcnow,
    ):
        self.thresholds = dict(thresholds)
        self.last_operation = last_operation
        self.clock = clock

    def _succeeded_within(self, now: datetime, threshold: timedelta) -> bool:
        op = self.last_operation
        return (
            op is not None
            and op.state == LastOperationState.SUCCEEDED
            and now - as_utc(op.lastUpdateTime) < threshold
        )

    def advance(
        self, condition: Condition, reason: str, message: str, codes: Sequence[str] = (),
    ) -> Condition:
        """Next value of `condition` given a failed observation."""
        now = self.clock()
        threshold = self.thresholds.get(condition.type)

        def to(status: ConditionStatus) -> Condition:
            return updated_condition(condition, status, reason, message, codes, now)

        if condition.status == ConditionStatus.TRUE:
            return to(ConditionStatus.FALSE if threshold is None else ConditionStatus.PROGRESSING)

        if condition.status == ConditionStatus.PROGRESSING:
            if threshold is None:
                return to(ConditionStatus.FALSE)
            if self._succeeded_within(now, threshold):
                return to(ConditionStatus.PROGRESSING)
            since = condition.lastTransitionTime
            if since is not None and now - as_utc(since) < threshold:
                return to(ConditionStatus.PROGRESSING)
            return to(ConditionStatus.FALSE)

        if condition.status == ConditionStatus.FALSE and threshold is not None:
            if self._succeeded_within(now, threshold) or reason != condition.reason:
                return to(ConditionStatus.PROGRESSING)

        return to(ConditionStatus.FALSE)

    def healthy(self, condition: Condition, reason: str, message: str) -> Condition:
        return updated_condition(condition, ConditionStatus.TRUE, reason, message, (), self.clock())


def is_unstable_last_operation(last_operation: LastOperation, last_errors: Sequence[LastError]) -> bool:
    if last_errors:
        return False
    if last_operation.type in UNSTABLE_OPERATION_TYPES and last_operation.state != LastOperationState.SUCCEEDED:
        return True
    return last_operation.state == LastOperationState.PROCESSING


def pardon_condition(
    condition: Condition,
    last_operation: Optional[LastOperation],
    last_errors: Sequence[LastError] = (),
    now: Optional[datetime] = None,
) -> Condition:
    """Downgrade False to Progressing while the shoot is legitimately in flux."""
    if condition.status != ConditionStatus.FALSE:
        return condition
    if last_operation is None or is_unstable_last_operation(last_operation, last_errors):
        return updated_condition(
            condition, ConditionStatus.PROGRESSING, condition.reason, condition.message, condition.codes, now,
        )
    return condition


def pardon_conditions(
    conditions: Iterable[Condition],
    last_operation: Optional[LastOperation],
    last_errors: Sequence[LastError] = (),
    now: Optional[datetime] = None,
) -> list[Condition]:
    return [pardon_condition(c, last_operation, last_errors, now) for c in conditions]
