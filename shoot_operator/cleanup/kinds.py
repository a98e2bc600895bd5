"""
Resource kinds the cleaner can operate on.

A kind is anything implementing the ResourceKind protocol: it lists the
matching objects, deletes one object and strips the finalizers of one
object. The cleaner is generic over it; the kinds below adapt the typed
kubernetes client APIs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from kubernetes import client
from kubernetes.client import ApiException

from shoot_operator.selectors import EVERYTHING, Selector
from shoot_operator.services.kubernetes_service import ClusterClient

logger = logging.getLogger("shoot-cleanup")


@dataclass(frozen=True)
class ObjectRef:
    """What the cleaner needs to know about one listed object."""
    name: str
    namespace: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)
    finalizers: Tuple[str, ...] = ()
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None

    @property
    def terminating(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name

    @classmethod
    def from_metadata(cls, metadata: client.V1ObjectMeta) -> "ObjectRef":
        return cls(
            name=metadata.name,
            namespace=metadata.namespace,
            labels=dict(metadata.labels or {}),
            finalizers=tuple(metadata.finalizers or ()),
            creation_timestamp=metadata.creation_timestamp,
            deletion_timestamp=metadata.deletion_timestamp,
        )


@runtime_checkable
class ResourceKind(Protocol):
    kind: str

    async def list(self, selector: Selector = EVERYTHING, field_selector: Selector = EVERYTHING) -> List[ObjectRef]:
        ...

    async def delete(self, obj: ObjectRef, grace_period: Optional[int] = None) -> None:
        ...

    async def finalize(self, obj: ObjectRef) -> None:
        ...


def _delete_options(grace_period: Optional[int]) -> client.V1DeleteOptions:
    return client.V1DeleteOptions(grace_period_seconds=grace_period, propagation_policy="Background")


_STRIP_FINALIZERS = {"metadata": {"finalizers": None}}


class TypedKind:
    """
    A kind served by one of the typed client APIs, e.g.

        TypedKind(shoot, "Deployment", "apps", "deployment", namespaced=True)

    maps onto apps.list_deployment_for_all_namespaces / delete_namespaced_deployment /
    patch_namespaced_deployment. Deleting or finalizing an object that is already
    gone is not an error.
    """

    tolerated_delete_statuses: Tuple[int, ...] = (404,)

    def __init__(self, cluster: ClusterClient, kind: str, api: str, resource: str, namespaced: bool):
        self.cluster = cluster
        self.kind = kind
        self.api = getattr(cluster, api)
        self.resource = resource
        self.namespaced = namespaced

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.kind}>"

    def _fn(self, verb: str):
        if not self.namespaced:
            return getattr(self.api, f"{verb}_{self.resource}")
        if verb == "list":
            return getattr(self.api, f"list_{self.resource}_for_all_namespaces")
        return getattr(self.api, f"{verb}_namespaced_{self.resource}")

    def _target(self, obj: ObjectRef) -> tuple:
        return (obj.name, obj.namespace) if self.namespaced else (obj.name,)

    async def list(self, selector: Selector = EVERYTHING, field_selector: Selector = EVERYTHING) -> List[ObjectRef]:
        result = await self.cluster.call(
            self._fn("list"), label_selector=str(selector), field_selector=str(field_selector),
        )
        return [ObjectRef.from_metadata(item.metadata) for item in result.items]

    async def delete(self, obj: ObjectRef, grace_period: Optional[int] = None) -> None:
        try:
            await self.cluster.call(self._fn("delete"), *self._target(obj), body=_delete_options(grace_period))
        except ApiException as e:
            if e.status not in self.tolerated_delete_statuses:
                raise
            logger.debug(f"Ignoring {e.status} while deleting {self.kind} {obj.key}")

    async def finalize(self, obj: ObjectRef) -> None:
        try:
            await self.cluster.call(self._fn("patch"), *self._target(obj), _STRIP_FINALIZERS)
        except ApiException as e:
            if e.status != 404:
                raise


class NamespaceKind(TypedKind):
    """
    Namespaces: a conflicting delete (409) leaves the namespace in place and it
    is counted as remaining. Finalizers live in spec.finalizers and are stripped
    through the finalize subresource.
    """

    tolerated_delete_statuses = (404, 409)

    def __init__(self, cluster: ClusterClient):
        super().__init__(cluster, "Namespace", "core", "namespace", namespaced=False)

    async def finalize(self, obj: ObjectRef) -> None:
        body = client.V1Namespace(
            metadata=client.V1ObjectMeta(name=obj.name),
            spec=client.V1NamespaceSpec(finalizers=[]),
        )
        try:
            await self.cluster.call(self.cluster.core.replace_namespace_finalize, obj.name, body)
        except ApiException as e:
            if e.status != 404:
                raise


class VolumeAttachmentKind(TypedKind):
    """Cluster-scoped and unlabeled; delete conflicts and not-found are tolerated."""

    tolerated_delete_statuses = (404, 409)

    def __init__(self, cluster: ClusterClient):
        super().__init__(cluster, "VolumeAttachment", "storage", "volume_attachment", namespaced=False)


def typed_kinds(cluster: ClusterClient, specs) -> List[TypedKind]:
    return [TypedKind(cluster, kind, api, resource, namespaced) for kind, api, resource, namespaced in specs]


# (kind, client api attribute, resource, namespaced)
WEBHOOK_KINDS = (
    ("ValidatingWebhookConfiguration", "admission", "validating_webhook_configuration", False),
    ("MutatingWebhookConfiguration", "admission", "mutating_webhook_configuration", False),
)

EXTENDED_API_KINDS = (
    ("CustomResourceDefinition", "apiextensions", "custom_resource_definition", False),
    ("APIService", "apiregistration", "api_service", False),
)

KUBERNETES_RESOURCE_KINDS = (
    ("CronJob", "batch", "cron_job", True),
    ("DaemonSet", "apps", "daemon_set", True),
    ("Deployment", "apps", "deployment", True),
    ("Ingress", "networking", "ingress", True),
    ("Job", "batch", "job", True),
    ("Pod", "core", "pod", True),
    ("ReplicaSet", "apps", "replica_set", True),
    ("ReplicationController", "core", "replication_controller", True),
    ("Service", "core", "service", True),
    ("StatefulSet", "apps", "stateful_set", True),
    ("PersistentVolumeClaim", "core", "persistent_volume_claim", True),
)
