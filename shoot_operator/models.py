"""
Pydantic models for the shoot status the operator reads and writes.

Field names mirror the Kubernetes status JSON (camelCase) so raw CRD dicts
can be fed straight into the models, e.g. Condition(**status["conditions"][0]).
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from shoot_operator.constants import PURPOSE_TESTING


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    PROGRESSING = "Progressing"
    UNKNOWN = "Unknown"


class Condition(BaseModel):
    """A single shoot condition. Immutable: transitions return new instances."""
    model_config = ConfigDict(frozen=True)

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = "ConditionInitialized"
    message: str = "The condition has been initialized but its semantic check has not been performed yet."
    codes: Tuple[str, ...] = ()
    lastTransitionTime: Optional[datetime] = None
    lastUpdateTime: Optional[datetime] = None

    def to_status(self) -> dict:
        """Render for a status patch; empty codes are omitted like the API server does."""
        data = self.model_dump(mode="json", exclude_none=True)
        if not self.codes:
            data.pop("codes", None)
        return data


class LastOperationType(str, Enum):
    CREATE = "Create"
    RECONCILE = "Reconcile"
    DELETE = "Delete"
    MIGRATE = "Migrate"
    RESTORE = "Restore"


class LastOperationState(str, Enum):
    PROCESSING = "Processing"
    SUCCEEDED = "Succeeded"
    ERROR = "Error"
    FAILED = "Failed"
    PENDING = "Pending"
    ABORTED = "Aborted"


class LastOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: LastOperationType
    state: LastOperationState
    description: str = ""
    progress: int = 0
    lastUpdateTime: datetime


class LastError(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    taskID: Optional[str] = None
    codes: Tuple[str, ...] = ()
    lastUpdateTime: Optional[datetime] = None


class ExtensionCondition(BaseModel):
    """A condition reported by an extension controller, attributed to its object."""
    model_config = ConfigDict(frozen=True)

    condition: Condition
    extensionKind: str
    extensionName: str
    extensionNamespace: str


class WorkerPool(BaseModel):
    name: str
    minimum: int = 0
    maximum: int = 0


class Shoot(BaseModel):
    """The subset of a Shoot resource the care and cleanup paths consume."""
    name: str
    namespace: str = ""
    technicalID: str = ""
    kubernetesVersion: str = ""
    purpose: str = "evaluation"
    workers: List[WorkerPool] = Field(default_factory=list)
    hibernated: bool = False
    wantsVerticalPodAutoscaler: bool = False
    wantsAlertmanager: bool = False
    annotations: Dict[str, str] = Field(default_factory=dict)
    deletionTimestamp: Optional[datetime] = None
    lastOperation: Optional[LastOperation] = None
    lastErrors: List[LastError] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)

    @property
    def wants_cluster_autoscaler(self) -> bool:
        return any(w.maximum > w.minimum for w in self.workers)

    @property
    def is_testing(self) -> bool:
        return self.purpose == PURPOSE_TESTING

    @classmethod
    def from_resource(cls, item: Dict[str, Any]) -> "Shoot":
        """Convert a raw Shoot dict (as returned by the CustomObjectsApi) into a Shoot."""
        metadata = item.get("metadata") or {}
        spec = item.get("spec") or {}
        status = item.get("status") or {}
        kubernetes = spec.get("kubernetes") or {}
        provider = spec.get("provider") or {}
        alerting = (spec.get("monitoring") or {}).get("alerting") or {}
        hibernation = spec.get("hibernation") or {}

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            technicalID=status.get("technicalID", ""),
            kubernetesVersion=kubernetes.get("version", ""),
            purpose=spec.get("purpose", "evaluation"),
            workers=[WorkerPool(**_worker_fields(w)) for w in provider.get("workers") or []],
            hibernated=bool(hibernation.get("enabled")) or bool(status.get("isHibernated")),
            wantsVerticalPodAutoscaler=bool((kubernetes.get("verticalPodAutoscaler") or {}).get("enabled")),
            wantsAlertmanager=bool(alerting.get("emailReceivers")),
            annotations=dict(metadata.get("annotations") or {}),
            deletionTimestamp=metadata.get("deletionTimestamp"),
            lastOperation=status.get("lastOperation"),
            lastErrors=status.get("lastErrors") or [],
            conditions=[Condition(**c) for c in status.get("conditions") or []],
        )


def _worker_fields(worker: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": worker.get("name", ""),
        "minimum": int(worker.get("minimum", 0)),
        "maximum": int(worker.get("maximum", 0)),
    }
