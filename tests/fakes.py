"""
In-memory stand-ins for the cluster clients and resource kinds.

FakeCluster answers the same async calls as ClusterClient from plain lists;
FakeKind implements the ResourceKind protocol over a dict of ObjectRefs and
mimics how the API server treats finalizers.
"""
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from kubernetes import client

from shoot_operator.cleanup.kinds import ObjectRef
from shoot_operator.selectors import EVERYTHING, Selector

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ---------------------------------------------------------------------------
# Object builders
# ---------------------------------------------------------------------------

def meta(name: str, namespace: Optional[str] = None, labels: Optional[dict] = None, generation: int = 1):
    return client.V1ObjectMeta(name=name, namespace=namespace, labels=labels or {}, generation=generation)


def deployment(name, namespace="ns", labels=None, available=True, generation=1, observed=1, replicas=1, ready=1,
               annotations=None):
    return client.V1Deployment(
        metadata=meta(name, namespace, labels, generation),
        spec=client.V1DeploymentSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(annotations=annotations) if annotations else None,
            ),
        ),
        status=client.V1DeploymentStatus(
            observed_generation=observed,
            ready_replicas=ready,
            conditions=[client.V1DeploymentCondition(type="Available", status="True" if available else "False",
                                                     reason="MinimumReplicasAvailable", message="ok")],
        ),
    )


def stateful_set(name, namespace="ns", labels=None, replicas=1, ready=1):
    return client.V1StatefulSet(
        metadata=meta(name, namespace, labels),
        spec=client.V1StatefulSetSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(),
            service_name=name,
            template=client.V1PodTemplateSpec(),
        ),
        status=client.V1StatefulSetStatus(replicas=replicas, ready_replicas=ready, observed_generation=1),
    )


def node(name, pool="worker", ready=True, kubelet_version="v1.28.3", pressure=None):
    conditions = [client.V1NodeCondition(type="Ready", status="True" if ready else "False",
                                         reason="KubeletReady", message="kubelet is posting ready status")]
    if pressure:
        conditions.append(client.V1NodeCondition(type=pressure[0], status="True",
                                                 reason=pressure[1], message=pressure[2]))
    node_info = client.V1NodeSystemInfo(
        architecture="amd64", boot_id="boot", container_runtime_version="containerd://1.7.0",
        kernel_version="6.1.0", kube_proxy_version=kubelet_version, kubelet_version=kubelet_version,
        machine_id="machine", operating_system="linux", os_image="Garden Linux", system_uuid="uuid",
    )
    status = client.V1NodeStatus(conditions=conditions, node_info=node_info)
    return client.V1Node(metadata=meta(name, labels={"worker.gardener.cloud/pool": pool}), status=status)


def pod(name, namespace="kube-system", labels=None, phase="Running"):
    return client.V1Pod(metadata=meta(name, namespace, labels), status=client.V1PodStatus(phase=phase))


def etcd(name, namespace="ns", ready=True, last_error=None):
    obj = {
        "metadata": {"name": name, "namespace": namespace, "labels": {"gardener.cloud/role": "controlplane"}},
        "status": {"ready": ready},
    }
    if last_error:
        obj["status"]["lastError"] = last_error
    return obj


def managed_resource(name, namespace="ns", healthy=True, reason="ResourcesHealthy"):
    return {
        "metadata": {"name": name, "namespace": namespace, "generation": 1},
        "status": {
            "observedGeneration": 1,
            "conditions": [
                {"type": "ResourcesApplied", "status": "True", "reason": "ApplySucceeded"},
                {"type": "ResourcesHealthy", "status": "True" if healthy else "False", "reason": reason,
                 "message": "" if healthy else "pod is crashlooping"},
            ],
        },
    }


def extension_object(name, namespace="ns", conditions=()):
    return {
        "metadata": {"name": name, "namespace": namespace, "generation": 1},
        "status": {"observedGeneration": 1, "conditions": list(conditions)},
    }


# ---------------------------------------------------------------------------
# Cluster client
# ---------------------------------------------------------------------------

def _labels_match(labels: Optional[dict], label_selector: str) -> bool:
    """Understands the equality selectors the care checks send."""
    labels = labels or {}
    for term in filter(None, (t.strip() for t in label_selector.split(","))):
        key, _, value = term.partition("=")
        if labels.get(key) != value:
            return False
    return True


def _obj_meta(obj) -> dict:
    if isinstance(obj, dict):
        return obj.get("metadata") or {}
    return {"name": obj.metadata.name, "namespace": obj.metadata.namespace, "labels": obj.metadata.labels}


class FakeCluster:
    def __init__(self):
        self.deployments: List = []
        self.stateful_sets: List = []
        self.nodes: List = []
        self.pods: List = []
        self.secrets: Dict[tuple, object] = {}
        self.custom: Dict[str, List[dict]] = {}
        self.healthz_result = (200, "ok")
        self.healthz_error: Optional[Exception] = None
        self.forward_error: Optional[str] = None
        self.list_error: Optional[Exception] = None
        self.patched: List[tuple] = []
        self.patch_errors: List[Exception] = []

    def _select(self, items, namespace, label_selector):
        if self.list_error is not None:
            raise self.list_error
        return [
            o for o in items
            if (namespace is None or _obj_meta(o).get("namespace") == namespace)
            and _labels_match(_obj_meta(o).get("labels"), label_selector)
        ]

    async def list_deployments(self, namespace, label_selector=""):
        return self._select(self.deployments, namespace, label_selector)

    async def list_stateful_sets(self, namespace, label_selector=""):
        return self._select(self.stateful_sets, namespace, label_selector)

    async def list_nodes(self, label_selector=""):
        return self._select(self.nodes, None, label_selector)

    async def list_pods(self, namespace, label_selector=""):
        return self._select(self.pods, namespace, label_selector)

    async def get_deployment(self, namespace, name):
        return next((d for d in self.deployments
                     if d.metadata.namespace == namespace and d.metadata.name == name), None)

    async def patch_deployment(self, namespace, name, body):
        """Merges pod template annotations only; errors queued in patch_errors are raised first."""
        if self.patch_errors:
            raise self.patch_errors.pop(0)
        found = await self.get_deployment(namespace, name)
        if found is None:
            return None
        self.patched.append((namespace, name, body))
        annotations = body.get("spec", {}).get("template", {}).get("metadata", {}).get("annotations")
        if annotations:
            template = found.spec.template
            if template.metadata is None:
                template.metadata = client.V1ObjectMeta(annotations={})
            template.metadata.annotations = {**(template.metadata.annotations or {}), **annotations}
        return found

    async def get_secret(self, namespace, name):
        return self.secrets.get((namespace, name))

    async def list_custom_objects(self, group, version, plural, namespace=None, label_selector=""):
        return self._select(self.custom.get(plural, []), namespace, label_selector)

    async def get_custom_object(self, group, version, plural, name, namespace=None):
        for obj in self.custom.get(plural, []):
            m = _obj_meta(obj)
            if m.get("name") == name and (namespace is None or m.get("namespace") == namespace):
                return obj
        return None

    async def healthz(self):
        if self.healthz_error is not None:
            raise self.healthz_error
        return self.healthz_result

    async def forward_pod_port(self, pod, port=22):
        return self.forward_error


# ---------------------------------------------------------------------------
# Resource kind
# ---------------------------------------------------------------------------

class FakeKind:
    """
    Objects with finalizers only get a deletion timestamp on delete; they
    disappear once finalize() stripped the finalizers.
    """

    def __init__(self, kind: str, clock: FakeClock, objects=()):
        self.kind = kind
        self.clock = clock
        self.objects: Dict[str, ObjectRef] = {o.key: o for o in objects}
        self.deleted: List[tuple] = []
        self.finalized: List[str] = []
        self.list_selectors: List[tuple] = []
        self.error: Optional[Exception] = None

    async def list(self, selector: Selector = EVERYTHING, field_selector: Selector = EVERYTHING):
        if self.error is not None:
            raise self.error
        self.list_selectors.append((selector, field_selector))
        return [
            o for o in self.objects.values()
            if selector.matches(o.labels)
            and field_selector.matches({"metadata.name": o.name, "metadata.namespace": o.namespace or ""})
        ]

    async def delete(self, obj: ObjectRef, grace_period=None):
        self.deleted.append((obj.key, grace_period))
        current = self.objects.get(obj.key)
        if current is None:
            return
        if not current.finalizers:
            del self.objects[obj.key]
        elif not current.terminating:
            self.objects[obj.key] = replace(current, deletion_timestamp=self.clock())

    async def finalize(self, obj: ObjectRef):
        self.finalized.append(obj.key)
        current = self.objects.get(obj.key)
        if current is None:
            return
        if current.terminating:
            del self.objects[obj.key]
        else:
            self.objects[obj.key] = replace(current, finalizers=())
