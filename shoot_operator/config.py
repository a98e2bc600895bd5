"""
Configuration module — all settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from shoot_operator.errors import ConfigError


def parse_thresholds(raw: str) -> dict[str, timedelta]:
    """
    Parse "ControlPlaneHealthy=300,EveryNodeReady=600" into a threshold mapping.
    Values are seconds. An empty string yields no thresholds.
    """
    thresholds: dict[str, timedelta] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        condition_type, sep, value = entry.partition("=")
        if not sep or not condition_type.strip():
            raise ConfigError(f"invalid condition threshold entry {entry!r} (expected Type=seconds)")
        thresholds[condition_type.strip()] = timedelta(seconds=_non_negative_int(value.strip(), entry))
    return thresholds


def parse_annotation_seconds(annotations: Mapping[str, str], key: str) -> Optional[int]:
    """
    Read a non-negative integer number of seconds from an annotation.
    Returns None if the annotation is absent; raises ConfigError if it is malformed.
    """
    if key not in annotations:
        return None
    return _non_negative_int(annotations[key], f"annotation {key}")


def _non_negative_int(value: str, what: str) -> int:
    try:
        seconds = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{what}: {value!r} is not an integer number of seconds") from None
    if seconds < 0:
        raise ConfigError(f"{what}: {value!r} must be non-negative")
    return seconds


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"

    # Shoot CRD
    CRD_GROUP: str = os.environ.get("CRD_GROUP", "core.gardener.cloud")
    CRD_VERSION: str = os.environ.get("CRD_VERSION", "v1beta1")
    CRD_PLURAL: str = os.environ.get("CRD_PLURAL", "shoots")

    # Care (health checks)
    CARE_SYNC_PERIOD: float = float(os.environ.get("CARE_SYNC_PERIOD", "60"))
    CONDITION_THRESHOLDS: str = os.environ.get(
        "CONDITION_THRESHOLDS",
        "APIServerAvailable=60,ControlPlaneHealthy=60,EveryNodeReady=300,SystemComponentsHealthy=60",
    )
    STALE_EXTENSION_HEALTH_CHECK_THRESHOLD: float = float(
        os.environ.get("STALE_EXTENSION_HEALTH_CHECK_THRESHOLD", "300")
    )
    LOGGING_ENABLED: bool = os.environ.get("LOGGING_ENABLED", "false").lower() == "true"

    # Cleanup
    CLEANUP_INTERVAL: float = float(os.environ.get("CLEANUP_INTERVAL", "5"))
    CLEANUP_TIMEOUT: float = float(os.environ.get("CLEANUP_TIMEOUT", "3600"))

    # Operator
    MAX_PARALLEL_RECONCILES: int = int(os.environ.get("MAX_PARALLEL_RECONCILES", "5"))
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "0"))
    REQUEST_TIMEOUT: float = float(os.environ.get("REQUEST_TIMEOUT", "30"))
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    def condition_thresholds(self) -> dict[str, timedelta]:
        return parse_thresholds(self.CONDITION_THRESHOLDS)

    def stale_extension_threshold(self) -> Optional[timedelta]:
        """Zero disables the staleness check for extension reports."""
        if self.STALE_EXTENSION_HEALTH_CHECK_THRESHOLD <= 0:
            return None
        return timedelta(seconds=self.STALE_EXTENSION_HEALTH_CHECK_THRESHOLD)


settings = Settings()
