"""
Prometheus metrics for care and cleanup.

Metrics are registered once, on first use; recording before that is a
no-op so library code can call the helpers unconditionally.
"""
import logging

from prometheus_client import Counter, Gauge, start_http_server

from shoot_operator.models import ConditionStatus

logger = logging.getLogger("shoot-operator")

_metrics_initialized = False

CONDITION_STATUS = None
CARE_RUNS = None
CLEANUP_STAGES = None


def init_metrics(port: int = 0):
    """Register the metrics and, with a port, expose them over HTTP."""
    global _metrics_initialized, CONDITION_STATUS, CARE_RUNS, CLEANUP_STAGES
    if _metrics_initialized:
        return
    CONDITION_STATUS = Gauge(
        "shoot_operator_condition_status",
        "Shoot condition status (1 for the current status, 0 otherwise)",
        ["shoot", "condition", "status"],
    )
    CARE_RUNS = Counter(
        "shoot_operator_care_runs_total",
        "Health check runs",
        ["result"],
    )
    CLEANUP_STAGES = Counter(
        "shoot_operator_cleanup_stages_total",
        "Cleanup stage group outcomes",
        ["stage", "result"],
    )
    _metrics_initialized = True
    if port:
        start_http_server(port)
        logger.info(f"Prometheus metrics exposed on :{port}")


def record_condition(shoot: str, condition_type: str, status: ConditionStatus):
    if not _metrics_initialized:
        return
    for candidate in ConditionStatus:
        CONDITION_STATUS.labels(shoot=shoot, condition=condition_type, status=candidate.value).set(
            1 if candidate == status else 0
        )


def record_care_run(result: str):
    if _metrics_initialized:
        CARE_RUNS.labels(result=result).inc()


def record_cleanup_stage(stage: str, result: str):
    if _metrics_initialized:
        CLEANUP_STAGES.labels(stage=stage, result=result).inc()
