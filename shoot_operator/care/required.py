"""
Required resource sets.

Which control-plane objects must exist for a shoot depends on its feature
flags. A required-set check fails iff some required name is missing, no
matter how healthy the objects that do exist are.
"""
from typing import AbstractSet, Iterable, Optional

from shoot_operator.constants import (
    DEPLOYMENT_CLUSTER_AUTOSCALER,
    REQUIRED_CONTROL_PLANE_DEPLOYMENTS,
    REQUIRED_LOGGING_STATEFULSETS,
    REQUIRED_MONITORING_DEPLOYMENTS,
    STATEFULSET_ALERTMANAGER,
    STATEFULSET_PROMETHEUS,
    VPA_DEPLOYMENTS,
)
from shoot_operator.models import Shoot


def compute_required_control_plane_deployments(shoot: Shoot, workers: Iterable[dict] = ()) -> frozenset:
    """
    Deployments expected in the shoot's control-plane namespace.

    The cluster autoscaler is expected when any worker pool can scale, except
    while a Worker resource is still being processed: the autoscaler is scaled
    down during rolling updates of the machines.
    """
    required = set(REQUIRED_CONTROL_PLANE_DEPLOYMENTS)

    if shoot.wants_cluster_autoscaler and not any(_is_processing(w) for w in workers):
        required.add(DEPLOYMENT_CLUSTER_AUTOSCALER)

    if shoot.wantsVerticalPodAutoscaler:
        required.update(VPA_DEPLOYMENTS)

    return frozenset(required)


def _is_processing(worker: dict) -> bool:
    last_operation = (worker.get("status") or {}).get("lastOperation") or {}
    return last_operation.get("state") == "Processing"


def compute_required_monitoring_deployments() -> frozenset:
    return frozenset(REQUIRED_MONITORING_DEPLOYMENTS)


def compute_required_monitoring_stateful_sets(wants_alertmanager: bool) -> frozenset:
    required = {STATEFULSET_PROMETHEUS}
    if wants_alertmanager:
        required.add(STATEFULSET_ALERTMANAGER)
    return frozenset(required)


def compute_required_logging_stateful_sets() -> frozenset:
    return frozenset(REQUIRED_LOGGING_STATEFULSETS)


def missing_names(required: AbstractSet[str], actual: Iterable[str]) -> list[str]:
    """Sorted list of required names that are absent from `actual`."""
    return sorted(set(required) - set(actual))


def object_name(obj) -> Optional[str]:
    """Name of a client model or a raw dict object."""
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get("name")
    return obj.metadata.name
