"""
HealthChecker — turns observations of seed/shoot objects into conditions.

Every check returns either a new condition (something is wrong or in
progress) or None (healthy as far as this check is concerned). Inside one
check the required-set comparison always runs before the per-object health
predicates, and the first failure wins.
"""
import logging
from datetime import timedelta
from typing import AbstractSet, Callable, Iterable, Optional, Sequence, Tuple

from shoot_operator.care import health
from shoot_operator.care.conditions import ConditionStateMachine, as_utc, updated_condition
from shoot_operator.care.required import missing_names, object_name
from shoot_operator.constants import (
    ETCD_GROUP,
    ETCD_PLURAL,
    ETCD_VERSION,
    LABEL_WORKER_POOL,
)
from shoot_operator.models import Condition, ConditionStatus, ExtensionCondition
from shoot_operator.selectors import CONTROL_PLANE, LOGGING, MONITORING
from shoot_operator.services.kubernetes_service import ClusterClient

logger = logging.getLogger("shoot-care")

Predicate = Callable[[object], Tuple[bool, str]]


class HealthChecker:
    def __init__(self, seed: ClusterClient, machine: ConditionStateMachine):
        self.seed = seed
        self.machine = machine

    @property
    def clock(self):
        return self.machine.clock

    # --- generic building blocks ---------------------------------------------

    def check_required(
        self, condition: Condition, required: AbstractSet[str], objects: Iterable, reason: str, message: str,
    ) -> Optional[Condition]:
        missing = missing_names(required, (object_name(o) for o in objects))
        if missing:
            return self.machine.advance(condition, reason, f"{message}: [{' '.join(missing)}]")
        return None

    def check_objects(
        self, condition: Condition, objects: Iterable, predicate: Predicate, reason: str, describe: str,
    ) -> Optional[Condition]:
        for obj in objects:
            ok, why = predicate(obj)
            if not ok:
                return self.machine.advance(condition, reason, f'{describe} "{object_name(obj)}" is unhealthy: {why}')
        return None

    def check_etcds(self, condition: Condition, etcds: Iterable[dict]) -> Optional[Condition]:
        for etcd in etcds:
            ok, why = health.check_etcd(etcd)
            if ok:
                continue
            message = f'Etcd extension resource "{object_name(etcd)}" is unhealthy: {why}'
            codes: Tuple[str, ...] = ()
            last_error = (etcd.get("status") or {}).get("lastError")
            if last_error:
                message = f"{message} ({last_error})"
                codes = health.determine_error_codes(str(last_error))
            return self.machine.advance(condition, "EtcdUnhealthy", message, codes)
        return None

    # --- control plane -------------------------------------------------------

    async def check_control_plane(
        self,
        namespace: str,
        required_deployments: AbstractSet[str],
        required_etcds: AbstractSet[str],
        condition: Condition,
    ) -> Optional[Condition]:
        selector = str(CONTROL_PLANE)
        deployments = await self.seed.list_deployments(namespace, label_selector=selector)
        etcds = await self.seed.list_custom_objects(
            ETCD_GROUP, ETCD_VERSION, ETCD_PLURAL, namespace=namespace, label_selector=selector,
        )

        return (
            self.check_required(condition, required_deployments, deployments,
                                "DeploymentMissing", "Missing required deployments")
            or self.check_objects(condition, deployments, health.check_deployment,
                                  "DeploymentUnhealthy", "Deployment")
            or self.check_required(condition, required_etcds, etcds, "EtcdMissing", "Missing required etcds")
            or self.check_etcds(condition, etcds)
        )

    async def check_monitoring_control_plane(
        self,
        namespace: str,
        required_deployments: AbstractSet[str],
        required_stateful_sets: AbstractSet[str],
        condition: Condition,
    ) -> Optional[Condition]:
        selector = str(MONITORING)
        deployments = await self.seed.list_deployments(namespace, label_selector=selector)
        stateful_sets = await self.seed.list_stateful_sets(namespace, label_selector=selector)

        return (
            self.check_required(condition, required_deployments, deployments,
                                "DeploymentMissing", "Missing required deployments")
            or self.check_objects(condition, deployments, health.check_deployment,
                                  "DeploymentUnhealthy", "Deployment")
            or self.check_required(condition, required_stateful_sets, stateful_sets,
                                   "StatefulSetMissing", "Missing required stateful sets")
            or self.check_objects(condition, stateful_sets, health.check_stateful_set,
                                  "StatefulSetUnhealthy", "Stateful set")
        )

    async def check_logging_control_plane(
        self, namespace: str, required_stateful_sets: AbstractSet[str], condition: Condition,
    ) -> Optional[Condition]:
        stateful_sets = await self.seed.list_stateful_sets(namespace, label_selector=str(LOGGING))
        return (
            self.check_required(condition, required_stateful_sets, stateful_sets,
                                "StatefulSetMissing", "Missing required stateful sets")
            or self.check_objects(condition, stateful_sets, health.check_stateful_set,
                                  "StatefulSetUnhealthy", "Stateful set")
        )

    # --- nodes ---------------------------------------------------------------

    def check_node_count(
        self, condition: Condition, pool: str, count: int, minimum: int, maximum: int,
    ) -> Optional[Condition]:
        if count < minimum:
            return self.machine.advance(
                condition, "MissingNodes",
                f'Not enough worker nodes registered in worker pool "{pool}" to meet minimum desired '
                f"machine count. ({count}/{minimum}).",
            )
        if maximum and count > maximum:
            return self.machine.advance(
                condition, "TooManyNodes",
                f'Too many worker nodes are registered in worker pool "{pool}". Exceeding maximum '
                f"desired machine count ({count}/{maximum}).",
            )
        return None

    def check_nodes(
        self, condition: Condition, nodes: Sequence, pool: str, kubernetes_version: str,
    ) -> Optional[Condition]:
        """Health first, then the kubelet version, node by node."""
        for node in nodes:
            name = node.metadata.name
            ok, why = health.check_node(node)
            if not ok:
                return self.machine.advance(
                    condition, "NodeUnhealthy",
                    f'Node "{name}" in worker group "{pool}" is unhealthy: {why}',
                    tuple(c for c in health.determine_error_codes(why) if c == health.ERR_CONFIGURATION_PROBLEM),
                )

            kubelet_version = node.status.node_info.kubelet_version if node.status.node_info else ""
            try:
                mismatch = health.kubelet_version_mismatch(kubelet_version, kubernetes_version)
            except ValueError as e:
                return self.machine.advance(
                    condition, "VersionParseError",
                    f'Error checking for same major minor Kubernetes version for node "{name}": {e}',
                )
            if mismatch:
                return self.machine.advance(
                    condition, "KubeletVersionMismatch",
                    f'The kubelet version for node "{name}" ({kubelet_version}) does not match the '
                    f"desired Kubernetes version (v{kubernetes_version.lstrip('v')})",
                )
        return None

    @staticmethod
    def nodes_by_pool(nodes: Iterable) -> dict[str, list]:
        pools: dict[str, list] = {}
        for node in nodes:
            pool = (node.metadata.labels or {}).get(LABEL_WORKER_POOL)
            if pool:
                pools.setdefault(pool, []).append(node)
        return pools

    # --- managed resources ---------------------------------------------------

    def check_managed_resource(self, condition: Condition, managed_resource: dict) -> Optional[Condition]:
        name = object_name(managed_resource)
        ok, why = health.check_managed_resource(managed_resource)
        if ok:
            return None
        reason = "ManagedResourceUnhealthy"
        for c in (managed_resource.get("status") or {}).get("conditions") or []:
            if c.get("type") in ("ResourcesApplied", "ResourcesHealthy") and c.get("status") != "True":
                reason = c.get("reason") or reason
                break
        return self.machine.advance(condition, reason, f'Managed resource "{name}" is unhealthy: {why}')

    # --- extensions ----------------------------------------------------------

    def check_extension_condition(
        self,
        condition: Condition,
        extension_conditions: Iterable[ExtensionCondition],
        stale_threshold: Optional[timedelta] = None,
    ) -> Optional[Condition]:
        """First stale, progressing or failing extension report wins."""
        now = self.clock()
        for ext in extension_conditions:
            reported = ext.condition
            kind = ext.extensionKind

            if stale_threshold is not None:
                last_update = reported.lastUpdateTime
                age = now - as_utc(last_update) if last_update is not None else None
                if age is None or age > stale_threshold:
                    ago = "unknown time" if age is None else str(timedelta(seconds=round(age.total_seconds())))
                    return updated_condition(
                        condition, ConditionStatus.UNKNOWN, f"{kind}OutdatedHealthCheckReport",
                        f"{kind} extension ({ext.extensionNamespace}/{ext.extensionName}) reports an outdated "
                        f"health status (last updated: {ago} ago).",
                        now=now,
                    )

            if reported.status == ConditionStatus.PROGRESSING:
                return updated_condition(
                    condition, ConditionStatus.PROGRESSING, f"{kind}{reported.reason}",
                    reported.message, reported.codes, now,
                )

            if reported.status in (ConditionStatus.FALSE, ConditionStatus.UNKNOWN):
                return self.machine.advance(
                    condition, f"{kind}UnhealthyReport",
                    f"{kind} extension ({ext.extensionNamespace}/{ext.extensionName}) reports failing "
                    f"health check: {reported.message}",
                    reported.codes,
                )
        return None
