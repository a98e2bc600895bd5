"""
Shoot Operator — kopf operator keeping shoot health conditions current and
cleaning up shoot clusters on deletion.

  Care (Timer):
    1. Build a Shoot view from the resource
    2. Run the health checks (API server, control plane, nodes, system components)
    3. Merge the four conditions into status.conditions
    4. Publish transitions (kopf events, Redis Streams, Prometheus)
    5. Refresh the etcd encryption configuration checksum

  On Delete (Finalizer):
    webhooks -> (extended APIs || kubernetes resources) -> namespaces -> volume attachments
    Not converged yet -> TemporaryError, kopf retries with backoff
    Finalizer removed only after every stage converged

Design Principles:
  - Idempotent: every handler run starts from the observed state
  - Recoverable failures -> TemporaryError, broken configuration -> PermanentError
  - Observable: kopf events + status conditions + Redis Streams + Prometheus
"""

import logging

import kopf

from shoot_operator import retry
from shoot_operator.care.care import ShootHealth, merge_conditions
from shoot_operator.checksums import ChecksumCache
from shoot_operator.cleanup.cleaner import Cleaner
from shoot_operator.cleanup.stages import ShootCleanup
from shoot_operator.config import settings as shoot_settings
from shoot_operator.encryption import EncryptionConfiguration
from shoot_operator.errors import CleanupError, ConfigError
from shoot_operator.events import publish_event
from shoot_operator.metrics import init_metrics, record_care_run, record_condition
from shoot_operator.models import ConditionStatus, Shoot
from shoot_operator.services.kubernetes_service import initialize_shoot_client, seed_client

logger = logging.getLogger("shoot-operator")

FINALIZER = "shoot.gardener.cloud/shoot-operator"

# Shared by all care runs; owns its own lock.
_checksums = ChecksumCache()


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    settings.persistence.finalizer = FINALIZER
    settings.execution.max_workers = shoot_settings.MAX_PARALLEL_RECONCILES
    init_metrics(shoot_settings.METRICS_PORT)
    logger.info(
        f"Shoot Operator started (max_workers={shoot_settings.MAX_PARALLEL_RECONCILES}, "
        f"care_sync_period={shoot_settings.CARE_SYNC_PERIOD}s)"
    )


# ---------------------------------------------------------------------------
# TIMER: shoot care
# ---------------------------------------------------------------------------

@kopf.timer(shoot_settings.CRD_GROUP, shoot_settings.CRD_VERSION, shoot_settings.CRD_PLURAL,
            interval=shoot_settings.CARE_SYNC_PERIOD, idle=shoot_settings.CARE_SYNC_PERIOD)
async def care(body, name, patch, logger, **kwargs):
    """Recompute the shoot's health conditions and patch them into its status."""
    shoot = Shoot.from_resource(body)
    if shoot.deletionTimestamp is not None:
        return
    if not shoot.technicalID:
        logger.info(f"Shoot {name} has no control plane namespace yet — skipping care")
        return

    try:
        thresholds = shoot_settings.condition_thresholds()
    except ConfigError as e:
        raise kopf.PermanentError(f"invalid condition thresholds: {e}")

    seed = seed_client()
    health = ShootHealth(
        shoot,
        seed,
        lambda: initialize_shoot_client(seed, shoot.technicalID),
        thresholds,
        shoot_settings.stale_extension_threshold(),
        shoot_settings.LOGGING_ENABLED,
    )

    try:
        updated = await health.check()
    except Exception as e:
        record_care_run("error")
        logger.error(f"Health check failed for shoot {name}: {e}")
        raise kopf.TemporaryError(f"Health check failed: {e}", delay=30)

    previous = {c.type: c for c in shoot.conditions}
    for condition in updated:
        record_condition(name, condition.type, condition.status)
        old = previous.get(condition.type)
        if old is not None and old.status == condition.status:
            continue
        message = f"{condition.type} is {condition.status.value}: {condition.message}"
        if condition.status in (ConditionStatus.FALSE, ConditionStatus.UNKNOWN):
            kopf.warn(body, reason=condition.reason, message=message)
        else:
            kopf.info(body, reason=condition.reason, message=message)
        await publish_event(name, "CONDITION_TRANSITION", message, condition.status.value)

    patch.status["conditions"] = [c.to_status() for c in merge_conditions(shoot.conditions, updated)]
    record_care_run("success")

    try:
        await EncryptionConfiguration(seed, _checksums).sync(shoot.technicalID)
    except Exception as e:
        logger.warning(f"Encryption configuration checksum of {shoot.technicalID} not refreshed (non-fatal): {e}")


# ---------------------------------------------------------------------------
# DELETE handler: cleanup with finalizer guarantee
# ---------------------------------------------------------------------------

@kopf.on.delete(shoot_settings.CRD_GROUP, shoot_settings.CRD_VERSION, shoot_settings.CRD_PLURAL)
async def cleanup(body, name, logger, **kwargs):
    """
    Delete everything the shoot's users created inside the cluster.

    Runs only while the shoot API server is still up; without it there is
    nothing left to clean up from here.
    """
    shoot = Shoot.from_resource(body)
    if not shoot.technicalID:
        return

    seed = seed_client()
    shoot_client = await initialize_shoot_client(seed, shoot.technicalID)
    if shoot_client is None:
        logger.info(f"Shoot {name}: API server not running, skipping cleanup")
        EncryptionConfiguration(seed, _checksums).forget(shoot.technicalID)
        return

    await publish_event(name, "CLEANUP_START", f"Cleaning up shoot {name}", "Deleting")
    shoot_cleanup = ShootCleanup(shoot, shoot_client, Cleaner(interval=shoot_settings.CLEANUP_INTERVAL))
    try:
        await shoot_cleanup.run(retry.Deadline.after(shoot_settings.CLEANUP_TIMEOUT))
    except ConfigError as e:
        await publish_event(name, "CLEANUP_INVALID", str(e), "Deleting")
        raise kopf.PermanentError(f"invalid cleanup configuration: {e}")
    except CleanupError as e:
        stages = ", ".join(e.failed_stages)
        logger.warning(f"Shoot {name}: cleanup of {stages} not finished yet")
        await publish_event(name, "CLEANUP_PENDING", f"Cleanup of {stages} not finished: {str(e)[:200]}", "Deleting")
        raise kopf.TemporaryError(f"Cleanup of {stages} not finished: {e}", delay=30)

    EncryptionConfiguration(seed, _checksums).forget(shoot.technicalID)
    await publish_event(name, "CLEANUP_COMPLETE", f"Shoot {name} cleanup complete", "Deleted")
    logger.info(f"Shoot {name} cleanup complete")
