"""
Shoot care — computes the four shoot conditions in one pass.

  APIServerAvailable       /healthz of the shoot API server
  ControlPlaneHealthy      control-plane components in the seed namespace
  EveryNodeReady           worker nodes of the shoot
  SystemComponentsHealthy  managed resources + tunnel of the shoot

The checks run concurrently and each returns its own condition; a check
that raises yields Unknown with the error message. The shoot is pardoned
at the end when its last operation explains failing conditions.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from shoot_operator import flow
from shoot_operator.care import health
from shoot_operator.care.checker import HealthChecker
from shoot_operator.care.conditions import (
    Clock,
    ConditionStateMachine,
    init_condition,
    new_condition_or_error,
    pardon_conditions,
    updated_condition,
    updated_condition_unknown_error_message,
    utcnow,
)
from shoot_operator.care.extensions import ExtensionConditions, collect_extension_conditions
from shoot_operator.care.required import (
    compute_required_control_plane_deployments,
    compute_required_logging_stateful_sets,
    compute_required_monitoring_deployments,
    compute_required_monitoring_stateful_sets,
)
from shoot_operator.constants import (
    CLUSTER_PLURAL,
    CONDITION_API_SERVER_AVAILABLE,
    CONDITION_CONTROL_PLANE_HEALTHY,
    CONDITION_EVERY_NODE_READY,
    CONDITION_SYSTEM_COMPONENTS_HEALTHY,
    EXTENSIONS_GROUP,
    EXTENSIONS_VERSION,
    MANAGED_RESOURCE_GROUP,
    MANAGED_RESOURCE_PLURAL,
    MANAGED_RESOURCE_VERSION,
    MANAGED_RESOURCES_SHOOT,
    NAMESPACE_SYSTEM,
    REQUIRED_CONTROL_PLANE_ETCDS,
    SHOOT_CONDITION_TYPES,
    TUNNEL_KONNECTIVITY,
    TUNNEL_VPN,
    WORKER_PLURAL,
)
from shoot_operator.models import Condition, ConditionStatus, LastOperation, LastOperationType, Shoot
from shoot_operator.services.kubernetes_service import ClusterClient

logger = logging.getLogger("shoot-care")

ShootClientInit = Callable[[], Awaitable[Optional[ClusterClient]]]


@dataclass
class ShootConditions:
    api_server_available: Condition
    control_plane_healthy: Condition
    every_node_ready: Condition
    system_components_healthy: Condition

    @classmethod
    def from_conditions(cls, conditions: Sequence[Condition], now=None) -> "ShootConditions":
        """Pick the four care conditions out of a shoot's status, initializing missing ones."""
        by_type = {c.type: c for c in conditions}

        def get(ctype: str) -> Condition:
            return by_type.get(ctype) or init_condition(ctype, now)

        return cls(
            api_server_available=get(CONDITION_API_SERVER_AVAILABLE),
            control_plane_healthy=get(CONDITION_CONTROL_PLANE_HEALTHY),
            every_node_ready=get(CONDITION_EVERY_NODE_READY),
            system_components_healthy=get(CONDITION_SYSTEM_COMPONENTS_HEALTHY),
        )

    def as_list(self) -> List[Condition]:
        return [
            self.api_server_available,
            self.control_plane_healthy,
            self.every_node_ready,
            self.system_components_healthy,
        ]


def shoot_control_plane_not_running_message(last_operation: Optional[LastOperation]) -> str:
    if last_operation is None or last_operation.type == LastOperationType.CREATE:
        return "Shoot control plane has not been fully created yet."
    if last_operation.type == LastOperationType.DELETE:
        return "Shoot control plane has already been or is about to be deleted."
    return "Shoot control plane is not running at the moment."


def merge_conditions(existing: Sequence[Condition], updated: Sequence[Condition]) -> List[Condition]:
    """Replace conditions of the same type, keep foreign ones, append new ones."""
    by_type: Dict[str, Condition] = {c.type: c for c in updated}
    merged = [by_type.pop(c.type, c) for c in existing]
    merged.extend(c for c in updated if c.type in by_type)
    return merged


class ShootHealth:
    """
    Health checks for one shoot.

    shoot             -- view of the Shoot resource
    seed              -- client for the cluster hosting the control plane
    init_shoot_client -- returns a shoot client, None if the API server is not running
    """

    def __init__(
        self,
        shoot: Shoot,
        seed: ClusterClient,
        init_shoot_client: ShootClientInit,
        thresholds: Mapping[str, timedelta],
        stale_extension_threshold: Optional[timedelta] = None,
        logging_enabled: bool = False,
        clock: Clock = utcnow,
    ):
        self.shoot = shoot
        self.seed = seed
        self.init_shoot_client = init_shoot_client
        self.stale_extension_threshold = stale_extension_threshold
        self.logging_enabled = logging_enabled
        self.clock = clock
        self.machine = ConditionStateMachine(thresholds, shoot.lastOperation, clock)
        self.checker = HealthChecker(seed, self.machine)

    @property
    def namespace(self) -> str:
        return self.shoot.technicalID

    async def check(self, conditions: Optional[ShootConditions] = None) -> List[Condition]:
        """Run every health check and return the four updated conditions."""
        if conditions is None:
            conditions = ShootConditions.from_conditions(self.shoot.conditions, self.clock())
        last_operation, last_errors = self.shoot.lastOperation, self.shoot.lastErrors

        if self.shoot.hibernated:
            now = self.clock()
            hibernated = [
                updated_condition(c, ConditionStatus.TRUE, "ConditionNotChecked",
                                  "Shoot cluster has been hibernated.", now=now)
                for c in conditions.as_list()
            ]
            return pardon_conditions(hibernated, last_operation, last_errors, now)

        extension_conditions = await collect_extension_conditions(self.seed, self.namespace)

        shoot_client, init_error = None, None
        try:
            shoot_client = await self.init_shoot_client()
        except Exception as e:
            init_error = e
            logger.error(f"Could not initialize Shoot client for health check of {self.namespace}: {e}")

        current = {c.type: c for c in conditions.as_list()}
        tasks = {
            CONDITION_CONTROL_PLANE_HEALTHY: lambda: self.check_control_plane(
                conditions.control_plane_healthy, extension_conditions),
        }
        if shoot_client is not None:
            tasks[CONDITION_API_SERVER_AVAILABLE] = lambda: self.check_api_server_availability(
                shoot_client, conditions.api_server_available)
            tasks[CONDITION_EVERY_NODE_READY] = lambda: self.check_nodes(
                shoot_client, conditions.every_node_ready, extension_conditions)
            tasks[CONDITION_SYSTEM_COMPONENTS_HEALTHY] = lambda: self.check_system_components(
                shoot_client, conditions.system_components_healthy, extension_conditions)
        else:
            message = shoot_control_plane_not_running_message(last_operation)
            if init_error is not None:
                message = f"Could not initialize Shoot client for health check: {init_error}"
            now = self.clock()
            current[CONDITION_API_SERVER_AVAILABLE] = self.machine.advance(
                conditions.api_server_available, "APIServerDown",
                "Could not reach API server during client initialization.",
            )
            current[CONDITION_EVERY_NODE_READY] = updated_condition_unknown_error_message(
                conditions.every_node_ready, message, now=now)
            current[CONDITION_SYSTEM_COMPONENTS_HEALTHY] = updated_condition_unknown_error_message(
                conditions.system_components_healthy, message, now=now)

        results = await flow.parallel(tasks)
        for ctype, result in results.items():
            if isinstance(result, Exception):
                logger.error(f"Health check {ctype} of {self.namespace} failed: {result}")
                current[ctype] = new_condition_or_error(current[ctype], None, result, self.clock())
            else:
                current[ctype] = new_condition_or_error(current[ctype], result, None, self.clock())

        updated = [current[ctype] for ctype in SHOOT_CONDITION_TYPES]
        return pardon_conditions(updated, last_operation, last_errors, self.clock())

    # --- individual checks ---------------------------------------------------

    async def check_api_server_availability(self, shoot_client: ClusterClient, condition: Condition) -> Condition:
        try:
            status, body = await shoot_client.healthz()
        except Exception as e:
            return self.machine.advance(
                condition, "HealthzRequestFailed", f"Request to API server /healthz endpoint failed. ({e})",
            )
        if status != 200:
            message = f"API server /healthz endpoint check returned a non ok status code {status}. ({body})"
            logger.error(message)
            return self.machine.advance(condition, "HealthzRequestError", message)
        return self.machine.healthy(
            condition, "HealthzRequestSucceeded", "API server /healthz endpoint responded with success status code.",
        )

    async def check_control_plane(self, condition: Condition, extension_conditions: ExtensionConditions) -> Condition:
        cluster = await self.seed.get_custom_object(EXTENSIONS_GROUP, EXTENSIONS_VERSION, CLUSTER_PLURAL, self.namespace)
        if cluster is None:
            return self.machine.advance(
                condition, "ControlPlaneNotReady", shoot_control_plane_not_running_message(self.shoot.lastOperation),
            )

        workers = await self.seed.list_custom_objects(
            EXTENSIONS_GROUP, EXTENSIONS_VERSION, WORKER_PLURAL, namespace=self.namespace,
        )
        required_deployments = compute_required_control_plane_deployments(self.shoot, workers)

        failed = await self.checker.check_control_plane(
            self.namespace, required_deployments, REQUIRED_CONTROL_PLANE_ETCDS, condition,
        )
        if failed is None and not self.shoot.is_testing:
            failed = await self.checker.check_monitoring_control_plane(
                self.namespace,
                compute_required_monitoring_deployments(),
                compute_required_monitoring_stateful_sets(self.shoot.wantsAlertmanager),
                condition,
            )
        if failed is None and self.logging_enabled and not self.shoot.is_testing:
            failed = await self.checker.check_logging_control_plane(
                self.namespace, compute_required_logging_stateful_sets(), condition,
            )
        if failed is None:
            failed = self.checker.check_extension_condition(
                condition, extension_conditions[CONDITION_CONTROL_PLANE_HEALTHY], self.stale_extension_threshold,
            )
        if failed is not None:
            return failed
        return self.machine.healthy(condition, "ControlPlaneRunning", "All control plane components are healthy.")

    async def check_system_components(
        self, shoot_client: ClusterClient, condition: Condition, extension_conditions: ExtensionConditions,
    ) -> Condition:
        for name in MANAGED_RESOURCES_SHOOT:
            managed_resource = await self.seed.get_custom_object(
                MANAGED_RESOURCE_GROUP, MANAGED_RESOURCE_VERSION, MANAGED_RESOURCE_PLURAL, name,
                namespace=self.namespace,
            )
            if managed_resource is None:
                return self.machine.advance(
                    condition, "ManagedResourceMissing", f'Missing required managed resource "{name}"',
                )
            failed = self.checker.check_managed_resource(condition, managed_resource)
            if failed is not None:
                return failed

        failed = self.checker.check_extension_condition(
            condition, extension_conditions[CONDITION_SYSTEM_COMPONENTS_HEALTHY], self.stale_extension_threshold,
        )
        if failed is not None:
            return failed

        tunnel = await detect_tunnel_name(shoot_client)
        pods = await shoot_client.list_pods(NAMESPACE_SYSTEM, label_selector=f"app={tunnel}")
        running = next((p for p in pods if health.check_pod(p)[0]), None)
        if running is None:
            return self.machine.advance(
                condition, "NoTunnelDeployed", f"no running {tunnel} pod found yet in the shoot cluster",
            )
        error = await shoot_client.forward_pod_port(running)
        if error:
            return self.machine.advance(
                condition, "TunnelConnectionBroken", f"could not forward to {tunnel} pod: {error}",
            )

        return self.machine.healthy(condition, "SystemComponentsRunning", "All system components are healthy.")

    async def check_nodes(
        self, shoot_client: ClusterClient, condition: Condition, extension_conditions: ExtensionConditions,
    ) -> Condition:
        nodes = await shoot_client.list_nodes()
        pools = self.checker.nodes_by_pool(nodes)

        for worker in self.shoot.workers:
            pool_nodes = pools.get(worker.name, [])
            failed = (
                self.checker.check_node_count(condition, worker.name, len(pool_nodes), worker.minimum, worker.maximum)
                or self.checker.check_nodes(condition, pool_nodes, worker.name, self.shoot.kubernetesVersion)
            )
            if failed is not None:
                return failed

        failed = self.checker.check_extension_condition(
            condition, extension_conditions[CONDITION_EVERY_NODE_READY], self.stale_extension_threshold,
        )
        if failed is not None:
            return failed
        return self.machine.healthy(condition, "EveryNodeReady", "All nodes are ready.")


async def detect_tunnel_name(shoot_client: ClusterClient) -> str:
    """konnectivity-agent if it is deployed in the shoot, vpn-shoot otherwise."""
    if await shoot_client.get_deployment(NAMESPACE_SYSTEM, TUNNEL_KONNECTIVITY) is not None:
        return TUNNEL_KONNECTIVITY
    return TUNNEL_VPN
