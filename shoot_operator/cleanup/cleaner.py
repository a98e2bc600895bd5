"""
Cleaner — deletes every object of a kind matching a selector and waits
until they are gone.

Phase 1 deletes each matching object that is not terminating yet, with the
configured grace period. Phase 2 (only with finalize_after) handles objects
stuck in termination: once an object has been terminating for the
effective finalize threshold, it is deleted again with grace period 0 and
its finalizers are stripped.

Objects still remaining are a minor error and polled again; every other
error aborts the stage.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from shoot_operator import flow, retry
from shoot_operator.care.conditions import Clock, as_utc, utcnow
from shoot_operator.cleanup.kinds import ResourceKind
from shoot_operator.errors import (
    CleanupError,
    MinorError,
    MultiError,
    ObjectsRemainingError,
    SevereError,
)
from shoot_operator.selectors import CLEANUP_EXCLUSIONS, EVERYTHING, Selector

logger = logging.getLogger("shoot-cleanup")


@dataclass(frozen=True)
class CleanupAttributes:
    selector: Selector = EVERYTHING
    field_selector: Selector = EVERYTHING
    grace_period: Optional[int] = None
    finalize_after: Optional[timedelta] = None


@dataclass(frozen=True)
class CleanupStage:
    """A named group of kinds cleaned together; kinds inside a stage run concurrently."""
    name: str
    targets: Tuple[Tuple[ResourceKind, CleanupAttributes], ...]

    @classmethod
    def of(cls, name: str, kinds: Sequence[ResourceKind], attributes: CleanupAttributes) -> "CleanupStage":
        return cls(name, tuple((kind, attributes) for kind in kinds))

    @property
    def kinds(self) -> List[str]:
        return [kind.kind for kind, _ in self.targets]


def effective_finalize_after(
    finalize_after: Optional[timedelta], deadline: Optional[retry.Deadline],
) -> Optional[timedelta]:
    """finalize_after, capped at half of the time left until the deadline."""
    if finalize_after is None:
        return None
    if deadline is None:
        return finalize_after
    return min(finalize_after, timedelta(seconds=deadline.remaining() / 2))


class Cleaner:
    def __init__(self, interval: float = 5.0, clock: Clock = utcnow):
        self.interval = interval
        self.clock = clock

    async def clean_once(
        self,
        kind: ResourceKind,
        attributes: CleanupAttributes,
        finalize_after: Optional[timedelta] = None,
    ) -> None:
        """
        One pass over the matching objects. Returns when none are left,
        raises ObjectsRemainingError otherwise.
        """
        objects = await kind.list(attributes.selector & CLEANUP_EXCLUSIONS, attributes.field_selector)
        if not objects:
            return

        now = self.clock()
        for obj in objects:
            if not obj.terminating:
                await kind.delete(obj, attributes.grace_period)
                continue
            if finalize_after is None:
                continue
            since = as_utc(obj.deletion_timestamp)
            if now - since >= finalize_after:
                logger.info(f"Finalizing {kind.kind} {obj.key} (terminating for {now - since})")
                await kind.delete(obj, 0)
                await kind.finalize(obj)

        raise ObjectsRemainingError(kind.kind, [o.key for o in objects])

    async def clean(
        self, kind: ResourceKind, attributes: CleanupAttributes, deadline: Optional[retry.Deadline] = None,
    ) -> None:
        """Poll clean_once until nothing matches anymore or the deadline passes."""
        finalize_after = effective_finalize_after(attributes.finalize_after, deadline)

        async def attempt() -> bool:
            try:
                await self.clean_once(kind, attributes, finalize_after)
            except ObjectsRemainingError as e:
                raise MinorError(e)
            except Exception as e:
                logger.error(f"Cleanup of {kind.kind} failed: {e}")
                raise SevereError(e)
            return True

        await retry.until(attempt, self.interval, deadline)
        logger.info(f"Cleanup of {kind.kind} finished")

    async def clean_stage(self, stage: CleanupStage, deadline: Optional[retry.Deadline] = None) -> None:
        _reject_overlaps([stage])
        await flow.parallel_or_error(
            {kind.kind: (lambda k=kind, a=attributes: self.clean(k, a, deadline)) for kind, attributes in stage.targets},
            MultiError,
        )

    async def clean_stages(self, stages: Sequence[CleanupStage], deadline: Optional[retry.Deadline] = None) -> None:
        """
        Run `stages` concurrently. A failing stage never cancels the others;
        CleanupError names every stage that did not converge.
        """
        _reject_overlaps(stages)
        await flow.parallel_or_error(
            {stage.name: (lambda s=stage: self.clean_stage(s, deadline)) for stage in stages},
            CleanupError,
        )


def _reject_overlaps(stages: Sequence[CleanupStage]) -> None:
    owner: Dict[str, str] = {}
    for stage in stages:
        for kind in stage.kinds:
            if kind in owner:
                raise ValueError(
                    f"kind {kind} is cleaned by both stage {owner[kind]!r} and stage {stage.name!r}"
                )
            owner[kind] = stage.name
