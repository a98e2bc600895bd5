"""
Shoot cleanup stages run while a shoot is being deleted.

  webhooks              -> (extended-apis || kubernetes-resources) -> namespaces -> volume-attachments

Webhooks go first so they cannot block the deletion of anything else;
namespaces go after their content, volume attachments last. Per stage the
grace period and the finalize-after period can be overridden on the shoot:

  shoot.gardener.cloud/cleanup-<stage>-grace-period-seconds
  shoot.gardener.cloud/cleanup-<stage>-finalize-grace-period-seconds
"""
import logging
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Dict, List, Optional

from shoot_operator import retry
from shoot_operator.cleanup.cleaner import Cleaner, CleanupAttributes, CleanupStage
from shoot_operator.cleanup.kinds import (
    EXTENDED_API_KINDS,
    KUBERNETES_RESOURCE_KINDS,
    WEBHOOK_KINDS,
    NamespaceKind,
    ResourceKind,
    VolumeAttachmentKind,
    typed_kinds,
)
from shoot_operator.config import parse_annotation_seconds
from shoot_operator.constants import ANNOTATION_CLEANUP_PREFIX
from shoot_operator.errors import CleanupError
from shoot_operator.metrics import record_cleanup_stage
from shoot_operator.models import Shoot
from shoot_operator.selectors import EVERYTHING, UNPROTECTED_NAMESPACES, Selector, names_excluded
from shoot_operator.services.kubernetes_service import ClusterClient

logger = logging.getLogger("shoot-cleanup")

STAGE_WEBHOOKS = "webhooks"
STAGE_EXTENDED_APIS = "extended-apis"
STAGE_KUBERNETES_RESOURCES = "kubernetes-resources"
STAGE_NAMESPACES = "namespaces"
STAGE_VOLUME_ATTACHMENTS = "volume-attachments"

# The API server's own service must survive the cleanup.
PROTECTED_SERVICES = names_excluded(["kubernetes"])


@dataclass(frozen=True)
class StageDefaults:
    grace_period: Optional[int]
    finalize_after: Optional[int]
    field_selector: Selector = EVERYTHING


STAGE_DEFAULTS: Dict[str, StageDefaults] = {
    STAGE_WEBHOOKS: StageDefaults(grace_period=0, finalize_after=300),
    STAGE_EXTENDED_APIS: StageDefaults(grace_period=0, finalize_after=3600),
    STAGE_KUBERNETES_RESOURCES: StageDefaults(grace_period=None, finalize_after=300),
    STAGE_NAMESPACES: StageDefaults(grace_period=None, finalize_after=300, field_selector=UNPROTECTED_NAMESPACES),
    STAGE_VOLUME_ATTACHMENTS: StageDefaults(grace_period=0, finalize_after=None),
}


def grace_period_annotation(stage: str) -> str:
    return f"{ANNOTATION_CLEANUP_PREFIX}{stage}-grace-period-seconds"


def finalize_grace_period_annotation(stage: str) -> str:
    return f"{ANNOTATION_CLEANUP_PREFIX}{stage}-finalize-grace-period-seconds"


def stage_attributes(shoot: Shoot, stage: str) -> CleanupAttributes:
    """Attributes for `stage`: defaults, overridden by the shoot's annotations. Raises ConfigError."""
    defaults = STAGE_DEFAULTS[stage]

    grace_period = parse_annotation_seconds(shoot.annotations, grace_period_annotation(stage))
    if grace_period is None:
        grace_period = defaults.grace_period

    finalize_after = parse_annotation_seconds(shoot.annotations, finalize_grace_period_annotation(stage))
    if finalize_after is None:
        finalize_after = defaults.finalize_after

    return CleanupAttributes(
        field_selector=defaults.field_selector,
        grace_period=grace_period,
        finalize_after=timedelta(seconds=finalize_after) if finalize_after is not None else None,
    )


class ShootCleanup:
    """Builds the stage catalogue for one shoot and runs its groups in order."""

    def __init__(self, shoot: Shoot, shoot_client: ClusterClient, cleaner: Cleaner):
        self.shoot = shoot
        self.shoot_client = shoot_client
        self.cleaner = cleaner

    def stage(self, name: str) -> CleanupStage:
        attributes = stage_attributes(self.shoot, name)
        targets = []
        for kind in self.kinds(name):
            if kind.kind == "Service":
                targets.append((kind, replace(attributes, field_selector=attributes.field_selector & PROTECTED_SERVICES)))
            else:
                targets.append((kind, attributes))
        return CleanupStage(name, tuple(targets))

    def kinds(self, name: str) -> List[ResourceKind]:
        if name == STAGE_WEBHOOKS:
            return typed_kinds(self.shoot_client, WEBHOOK_KINDS)
        if name == STAGE_EXTENDED_APIS:
            return typed_kinds(self.shoot_client, EXTENDED_API_KINDS)
        if name == STAGE_KUBERNETES_RESOURCES:
            return typed_kinds(self.shoot_client, KUBERNETES_RESOURCE_KINDS)
        if name == STAGE_NAMESPACES:
            return [NamespaceKind(self.shoot_client)]
        if name == STAGE_VOLUME_ATTACHMENTS:
            return [VolumeAttachmentKind(self.shoot_client)]
        raise ValueError(f"unknown cleanup stage {name!r}")

    def plan(self) -> List[List[CleanupStage]]:
        """Stage groups in execution order; stages inside a group run concurrently."""
        return [
            [self.stage(STAGE_WEBHOOKS)],
            [self.stage(STAGE_EXTENDED_APIS), self.stage(STAGE_KUBERNETES_RESOURCES)],
            [self.stage(STAGE_NAMESPACES)],
            [self.stage(STAGE_VOLUME_ATTACHMENTS)],
        ]

    async def run(self, deadline: Optional[retry.Deadline] = None) -> None:
        """
        Run every stage group in order. A failing group does not keep the later
        groups from running; CleanupError names every failed stage at the end.
        """
        errors: Dict[str, Exception] = {}
        for group in self.plan():
            names = ", ".join(s.name for s in group)
            logger.info(f"Cleaning up {names} of shoot {self.shoot.namespace}/{self.shoot.name}")
            try:
                await self.cleaner.clean_stages(group, deadline)
            except CleanupError as e:
                logger.warning(f"Cleanup of {', '.join(e.errors)} failed, continuing with the remaining stages")
                errors.update(e.errors)
            for stage in group:
                record_cleanup_stage(stage.name, "failure" if stage.name in errors else "success")
        if errors:
            raise CleanupError(errors)
