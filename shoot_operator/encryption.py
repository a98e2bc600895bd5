"""
Etcd encryption configuration checksum.

The kube-apiserver has to be rolled whenever the encryption configuration
secret of its control plane changes. The last-seen checksum per control-plane
namespace is kept in a ChecksumCache shared by all reconcile tasks; when a
new checksum differs from the cached one (or, after a restart, from the one
the kube-apiserver pod template is annotated with), the template is
annotated with the new checksum.
"""
import hashlib
import logging
from typing import Mapping, Optional

from shoot_operator.checksums import ChecksumCache
from shoot_operator.constants import DEPLOYMENT_KUBE_APISERVER, SECRET_ETCD_ENCRYPTION
from shoot_operator.services.kubernetes_service import ClusterClient

logger = logging.getLogger("shoot-operator")

ANNOTATION_ENCRYPTION_CHECKSUM = "checksum/secret-etcd-encryption"


def compute_checksum(data: Optional[Mapping[str, str]]) -> str:
    """Order-independent sha256 over the secret data."""
    digest = hashlib.sha256()
    for key in sorted(data or {}):
        digest.update(key.encode("utf-8"))
        digest.update(b"=")
        digest.update((data[key] or "").encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


class EncryptionConfiguration:
    def __init__(self, seed: ClusterClient, cache: ChecksumCache):
        self.seed = seed
        self.cache = cache

    @staticmethod
    def cache_key(namespace: str) -> str:
        return f"{namespace}/{SECRET_ETCD_ENCRYPTION}"

    async def sync(self, namespace: str) -> Optional[str]:
        """
        Roll the kube-apiserver of `namespace` when its encryption configuration
        changed. Returns the current checksum, None without a secret.

        Without a cached checksum (e.g. after a restart) the one annotated on
        the running kube-apiserver is compared. The cache only learns a
        checksum once the kube-apiserver carries it, so a failed patch is
        retried on the next sync.
        """
        secret = await self.seed.get_secret(namespace, SECRET_ETCD_ENCRYPTION)
        key = self.cache_key(namespace)
        if secret is None:
            self.cache.delete(key)
            return None

        checksum = compute_checksum(secret.data)
        previous = self.cache.get(key)
        if previous is None:
            previous = await self._deployed_checksum(namespace)
        if previous == checksum:
            self.cache.set(key, checksum)
            return checksum

        patch = {"spec": {"template": {"metadata": {"annotations": {ANNOTATION_ENCRYPTION_CHECKSUM: checksum}}}}}
        patched = await self.seed.patch_deployment(namespace, DEPLOYMENT_KUBE_APISERVER, patch)
        if patched is None:
            logger.debug(f"No {DEPLOYMENT_KUBE_APISERVER} in {namespace} to roll for new encryption configuration")
            return checksum
        logger.info(f"Encryption configuration of {namespace} changed, rolling {DEPLOYMENT_KUBE_APISERVER}")
        self.cache.set(key, checksum)
        return checksum

    async def _deployed_checksum(self, namespace: str) -> Optional[str]:
        deployment = await self.seed.get_deployment(namespace, DEPLOYMENT_KUBE_APISERVER)
        if deployment is None or deployment.spec is None or deployment.spec.template.metadata is None:
            return None
        return (deployment.spec.template.metadata.annotations or {}).get(ANNOTATION_ENCRYPTION_CHECKSUM)

    def forget(self, namespace: str) -> None:
        self.cache.delete(self.cache_key(namespace))
