"""
Per-object health predicates.

Every predicate returns (healthy, reason). Typed workloads (deployments,
stateful sets, daemon sets, nodes, pods) are kubernetes client models;
custom resources (etcds, managed resources) are the raw dicts returned by
the CustomObjectsApi.
"""
import math
import re
from typing import Any, Iterable, Optional, Sequence, Tuple

# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

ERR_INFRA_UNAUTHORIZED = "ERR_INFRA_UNAUTHORIZED"
ERR_INFRA_INSUFFICIENT_PRIVILEGES = "ERR_INFRA_INSUFFICIENT_PRIVILEGES"
ERR_INFRA_QUOTA_EXCEEDED = "ERR_INFRA_QUOTA_EXCEEDED"
ERR_INFRA_DEPENDENCIES = "ERR_INFRA_DEPENDENCIES"
ERR_CONFIGURATION_PROBLEM = "ERR_CONFIGURATION_PROBLEM"

_ERROR_CODE_PATTERNS = (
    (ERR_INFRA_UNAUTHORIZED, re.compile(
        r"(?i)(Unauthorized|InvalidClientTokenId|SignatureDoesNotMatch|Authentication failed|AuthFailure"
        r"|invalid_grant|invalid_client|InvalidAccessKeyId|InvalidSecretAccessKey|not authorized)"
    )),
    (ERR_INFRA_INSUFFICIENT_PRIVILEGES, re.compile(r"(?i)(AccessDenied|Forbidden|deny|denied)")),
    (ERR_INFRA_QUOTA_EXCEEDED, re.compile(r"(?i)(LimitExceeded|Quota)")),
    (ERR_INFRA_DEPENDENCIES, re.compile(
        r"(?i)(PendingVerification|Access Not Configured|DependencyViolation|OptInRequired"
        r"|DeleteConflict|Conflict|is already being used|InUseSubnetCannotBeDeleted|VnetInUse)"
    )),
    (ERR_CONFIGURATION_PROBLEM, re.compile(
        r"(?i)(not available in the current hardware cluster|OperationNotAllowed|CIDR.*overlap"
        r"|KubeletHasInsufficientMemory|KubeletHasDiskPressure|KubeletHasInsufficientPID)"
    )),
)


def determine_error_codes(text: Optional[str]) -> Tuple[str, ...]:
    """Classify an error text into well-known error codes (in a stable order)."""
    if not text:
        return ()
    return tuple(code for code, pattern in _ERROR_CODE_PATTERNS if pattern.search(text))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _find_condition(conditions: Optional[Iterable[Any]], condition_type: str):
    for c in conditions or []:
        if _field(c, "type") == condition_type:
            return c
    return None


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a client model or a dict condition alike."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _check_conditions(
    conditions: Optional[Sequence[Any]],
    required_true: Sequence[str] = (),
    optional_true: Sequence[str] = (),
    optional_false: Sequence[str] = (),
) -> Tuple[bool, str]:
    for ctype in required_true:
        c = _find_condition(conditions, ctype)
        if c is None:
            return False, f'condition "{ctype}" is missing'
        ok, reason = _expect(c, ctype, "True")
        if not ok:
            return ok, reason
    for ctype in optional_true:
        c = _find_condition(conditions, ctype)
        if c is not None:
            ok, reason = _expect(c, ctype, "True")
            if not ok:
                return ok, reason
    for ctype in optional_false:
        c = _find_condition(conditions, ctype)
        if c is not None:
            ok, reason = _expect(c, ctype, "False")
            if not ok:
                return ok, reason
    return True, ""


def _expect(condition: Any, ctype: str, expected: str) -> Tuple[bool, str]:
    actual = _field(condition, "status")
    if actual != expected:
        return False, (
            f'condition "{ctype}" has invalid status {actual} (expected {expected}) '
            f"due to {_field(condition, 'reason', '')}: {_field(condition, 'message', '')}"
        )
    return True, ""


def _generation_outdated(observed: Optional[int], generation: Optional[int]) -> Optional[str]:
    observed = observed or 0
    generation = generation or 0
    if observed < generation:
        return f"observed generation outdated ({observed}/{generation})"
    return None


# ---------------------------------------------------------------------------
# Typed workloads
# ---------------------------------------------------------------------------

def check_deployment(deployment) -> Tuple[bool, str]:
    status = deployment.status
    outdated = _generation_outdated(status and status.observed_generation, deployment.metadata.generation)
    if outdated:
        return False, outdated
    return _check_conditions(
        status and status.conditions,
        required_true=("Available",),
        optional_true=("Progressing",),
        optional_false=("ReplicaFailure",),
    )


def check_stateful_set(stateful_set) -> Tuple[bool, str]:
    status = stateful_set.status
    outdated = _generation_outdated(status and status.observed_generation, stateful_set.metadata.generation)
    if outdated:
        return False, outdated

    replicas = 1
    if stateful_set.spec and stateful_set.spec.replicas is not None:
        replicas = stateful_set.spec.replicas
    ready = (status and status.ready_replicas) or 0
    if ready < replicas:
        return False, f"not enough ready replicas ({ready}/{replicas})"
    return True, ""


def _daemon_set_max_unavailable(daemon_set) -> int:
    desired = daemon_set.status.desired_number_scheduled or 0
    strategy = daemon_set.spec.update_strategy if daemon_set.spec else None
    if desired == 0 or strategy is None or strategy.type != "RollingUpdate":
        return 0
    rolling = strategy.rolling_update
    if rolling is None or rolling.max_unavailable is None:
        return 0

    value = rolling.max_unavailable
    if isinstance(value, int):
        return value
    value = str(value)
    if value.endswith("%"):
        try:
            return math.floor(int(value[:-1]) * desired / 100)
        except ValueError:
            return 0
    try:
        return int(value)
    except ValueError:
        return 0


def check_daemon_set(daemon_set) -> Tuple[bool, str]:
    status = daemon_set.status
    outdated = _generation_outdated(status.observed_generation, daemon_set.metadata.generation)
    if outdated:
        return False, outdated

    required = (status.desired_number_scheduled or 0) - _daemon_set_max_unavailable(daemon_set)
    current = status.current_number_scheduled or 0
    if current < required:
        return False, f"not enough available replicas ({current}/{required})"
    return True, ""


NODE_PRESSURE_CONDITIONS = ("DiskPressure", "MemoryPressure", "NetworkUnavailable", "PIDPressure", "OutOfDisk")


def check_node(node) -> Tuple[bool, str]:
    return _check_conditions(
        node.status and node.status.conditions,
        required_true=("Ready",),
        optional_false=NODE_PRESSURE_CONDITIONS,
    )


def check_pod(pod) -> Tuple[bool, str]:
    """A pod is healthy when it is running and all of its containers are ready."""
    phase = pod.status.phase if pod.status else None
    if phase != "Running":
        return False, f"Pod {pod.metadata.name} is {phase}"
    for cs in (pod.status.container_statuses or []):
        if not cs.ready:
            if cs.state and cs.state.waiting:
                return False, f"Pod {pod.metadata.name}: {cs.state.waiting.reason}"
            return False, f"Pod {pod.metadata.name} container not ready"
    return True, ""


# ---------------------------------------------------------------------------
# Custom resources (raw dicts)
# ---------------------------------------------------------------------------

def _meta(obj: dict) -> dict:
    return obj.get("metadata") or {}


def _status(obj: dict) -> dict:
    return obj.get("status") or {}


def check_etcd(etcd: dict) -> Tuple[bool, str]:
    if _status(etcd).get("ready") is True:
        return True, ""
    return False, f"etcd {_meta(etcd).get('name', '')} is not ready yet"


def check_managed_resource(managed_resource: dict) -> Tuple[bool, str]:
    status = _status(managed_resource)
    outdated = _generation_outdated(status.get("observedGeneration"), _meta(managed_resource).get("generation"))
    if outdated:
        return False, outdated
    return _check_conditions(status.get("conditions"), required_true=("ResourcesApplied", "ResourcesHealthy"))


# ---------------------------------------------------------------------------
# Kubernetes versions
# ---------------------------------------------------------------------------

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)(?:\.(\d+))?(?:[-+].*)?$")


def parse_version(version: str) -> Tuple[int, int, int]:
    """Parse "v1.28.3" / "1.28" into (major, minor, patch). Raises ValueError."""
    match = _VERSION_RE.match((version or "").strip())
    if not match:
        raise ValueError(f"invalid semantic version {version!r}")
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch or 0)


def kubelet_version_mismatch(kubelet_version: str, desired_version: str) -> bool:
    """
    True when the kubelet runs the desired major.minor but a different patch.
    A kubelet on another minor is in the middle of an upgrade and not a mismatch.
    Raises ValueError when either version cannot be parsed.
    """
    kubelet = parse_version(kubelet_version)
    desired = parse_version(desired_version)
    if kubelet[:2] != desired[:2]:
        return False
    return kubelet != desired
