"""
Kubernetes service layer — abstracts all cluster API interactions.

Design principles:
  - One ClusterClient per cluster (seed or shoot), wrapping an ApiClient
  - Blocking kubernetes-client calls run in worker threads so care checks and
    cleanup stages can run concurrently on the event loop
  - 404s are translated to None at this seam; everything else propagates
"""

import asyncio
import base64
import logging
from typing import Any, Callable, Optional

import yaml
from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.stream import portforward

from shoot_operator.config import settings
from shoot_operator.constants import (
    DEPLOYMENT_KUBE_APISERVER,
    SECRET_SHOOT_KUBECONFIG,
    TUNNEL_PROBE_PORT,
)

logger = logging.getLogger("kubernetes_service")

_k8s_loaded = False


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        try:
            config.load_kube_config(config_file=settings.KUBECONFIG or None)
        except config.ConfigException:
            config.load_incluster_config()
    _k8s_loaded = True


def seed_client() -> "ClusterClient":
    """Client for the cluster the operator runs against (hosts the shoot control planes)."""
    _ensure_k8s()
    return ClusterClient(client.ApiClient())


def client_from_kubeconfig(kubeconfig: str) -> "ClusterClient":
    """Build a client from a kubeconfig document (YAML)."""
    api_client = config.new_client_from_config_dict(yaml.safe_load(kubeconfig))
    return ClusterClient(api_client)


class ClusterClient:
    """Async facade over the typed kubernetes APIs of one cluster."""

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.batch = client.BatchV1Api(api_client)
        self.networking = client.NetworkingV1Api(api_client)
        self.storage = client.StorageV1Api(api_client)
        self.admission = client.AdmissionregistrationV1Api(api_client)
        self.apiextensions = client.ApiextensionsV1Api(api_client)
        self.apiregistration = client.ApiregistrationV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    async def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a generated API method in a worker thread, bounded by REQUEST_TIMEOUT."""
        kwargs.setdefault("_request_timeout", settings.REQUEST_TIMEOUT)
        return await asyncio.to_thread(fn, *args, **kwargs)

    # --- typed workloads ----------------------------------------------------

    async def list_deployments(self, namespace: str, label_selector: str = "") -> list:
        result = await self.call(
            self.apps.list_namespaced_deployment, namespace, label_selector=label_selector
        )
        return list(result.items)

    async def list_stateful_sets(self, namespace: str, label_selector: str = "") -> list:
        result = await self.call(
            self.apps.list_namespaced_stateful_set, namespace, label_selector=label_selector
        )
        return list(result.items)

    async def list_nodes(self, label_selector: str = "") -> list:
        result = await self.call(self.core.list_node, label_selector=label_selector)
        return list(result.items)

    async def list_pods(self, namespace: str, label_selector: str = "") -> list:
        result = await self.call(
            self.core.list_namespaced_pod, namespace, label_selector=label_selector
        )
        return list(result.items)

    async def get_deployment(self, namespace: str, name: str):
        try:
            return await self.call(self.apps.read_namespaced_deployment, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def patch_deployment(self, namespace: str, name: str, body: dict):
        """Strategic-merge patch a deployment. Returns None if it does not exist."""
        try:
            return await self.call(self.apps.patch_namespaced_deployment, name, namespace, body)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    async def get_secret(self, namespace: str, name: str):
        try:
            return await self.call(self.core.read_namespaced_secret, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    # --- custom resources ---------------------------------------------------

    async def list_custom_objects(
        self, group: str, version: str, plural: str, namespace: Optional[str] = None,
        label_selector: str = "",
    ) -> list[dict]:
        if namespace is None:
            result = await self.call(
                self.custom.list_cluster_custom_object, group, version, plural,
                label_selector=label_selector,
            )
        else:
            result = await self.call(
                self.custom.list_namespaced_custom_object, group, version, namespace, plural,
                label_selector=label_selector,
            )
        return list(result.get("items", []))

    async def get_custom_object(
        self, group: str, version: str, plural: str, name: str, namespace: Optional[str] = None,
    ) -> Optional[dict]:
        try:
            if namespace is None:
                return await self.call(
                    self.custom.get_cluster_custom_object, group, version, plural, name
                )
            return await self.call(
                self.custom.get_namespaced_custom_object, group, version, namespace, plural, name
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    # --- probes -------------------------------------------------------------

    async def healthz(self) -> tuple[int, str]:
        """
        GET /healthz. Returns (status_code, body) for any HTTP answer;
        transport failures propagate.
        """
        try:
            data, status, _ = await self.call(
                self.api_client.call_api, "/healthz", "GET",
                auth_settings=["BearerToken"], response_type="str",
                _return_http_data_only=False, _request_timeout=10,
            )
            return status, data or ""
        except ApiException as e:
            return e.status, e.body or e.reason or ""

    async def forward_pod_port(self, pod, port: int = TUNNEL_PROBE_PORT) -> Optional[str]:
        """
        Open a port-forward to `pod` and close it again.
        Returns None when the forward succeeded, otherwise the error text.
        """
        def _forward() -> Optional[str]:
            forward = portforward(
                self.core.connect_get_namespaced_pod_portforward,
                pod.metadata.name, pod.metadata.namespace,
                ports=str(port),
            )
            sock = forward.socket(port)
            sock.close()
            return forward.error(port)

        try:
            return await asyncio.wait_for(asyncio.to_thread(_forward), settings.REQUEST_TIMEOUT)
        except Exception as e:
            return str(e) or e.__class__.__name__


async def initialize_shoot_client(seed: ClusterClient, namespace: str) -> Optional[ClusterClient]:
    """
    Build a client for the shoot whose control plane runs in `namespace`.
    Returns None when the kube-apiserver is not running (not created yet, hibernated
    or already deleted); raises on API or kubeconfig errors.
    """
    deployment = await seed.get_deployment(namespace, DEPLOYMENT_KUBE_APISERVER)
    if deployment is None or not (deployment.spec and deployment.spec.replicas):
        return None
    if not (deployment.status and deployment.status.ready_replicas):
        return None

    secret = await seed.get_secret(namespace, SECRET_SHOOT_KUBECONFIG)
    if secret is None or not (secret.data or {}).get("kubeconfig"):
        raise RuntimeError(f"secret {namespace}/{SECRET_SHOOT_KUBECONFIG} does not contain a kubeconfig")

    kubeconfig = base64.b64decode(secret.data["kubeconfig"]).decode("utf-8")
    return client_from_kubeconfig(kubeconfig)
