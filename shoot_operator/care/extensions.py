"""
Collects the health conditions extension controllers report on their
objects in the shoot's control-plane namespace, bucketed by the shoot
condition they contribute to.
"""
import logging
from typing import Dict, List

from shoot_operator.constants import (
    EXTENSION_CONDITION_TYPES,
    EXTENSION_KINDS,
    EXTENSIONS_GROUP,
    EXTENSIONS_VERSION,
)
from shoot_operator.models import Condition, ExtensionCondition
from shoot_operator.services.kubernetes_service import ClusterClient

logger = logging.getLogger("shoot-care")

ExtensionConditions = Dict[str, List[ExtensionCondition]]


def empty_extension_conditions() -> ExtensionConditions:
    return {ctype: [] for ctype in EXTENSION_CONDITION_TYPES}


def bucket_extension_conditions(kind: str, objects: List[dict], into: ExtensionConditions) -> None:
    """Sort the reported conditions of `objects` into the per-type buckets."""
    for obj in objects:
        metadata = obj.get("metadata") or {}
        for raw in (obj.get("status") or {}).get("conditions") or []:
            if raw.get("type") not in into:
                continue
            into[raw["type"]].append(ExtensionCondition(
                condition=Condition(**raw),
                extensionKind=kind,
                extensionName=metadata.get("name", ""),
                extensionNamespace=metadata.get("namespace", ""),
            ))


async def collect_extension_conditions(seed: ClusterClient, namespace: str) -> ExtensionConditions:
    """
    List every extension kind in `namespace`. A listing failure is logged and
    yields no extension input rather than failing the health check.
    """
    buckets = empty_extension_conditions()
    try:
        for kind, plural in EXTENSION_KINDS:
            objects = await seed.list_custom_objects(
                EXTENSIONS_GROUP, EXTENSIONS_VERSION, plural, namespace=namespace,
            )
            bucket_extension_conditions(kind, objects, buckets)
    except Exception as e:
        logger.error(f"Error getting extension conditions in {namespace}: {e}")
        return empty_extension_conditions()
    return buckets
