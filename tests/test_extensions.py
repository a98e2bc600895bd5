"""Tests for collecting extension health reports."""

import pytest

from shoot_operator.care.extensions import (
    bucket_extension_conditions,
    collect_extension_conditions,
    empty_extension_conditions,
)
from tests.fakes import FakeCluster, extension_object

NS = "shoot--dev--foo"


def reported(ctype, status="True"):
    return {"type": ctype, "status": status, "reason": "HealthCheckSuccessful", "message": "",
            "lastUpdateTime": "2026-01-01T11:59:00Z", "lastTransitionTime": "2026-01-01T10:00:00Z"}


class TestBucketing:
    def test_conditions_sorted_by_type(self):
        buckets = empty_extension_conditions()
        obj = extension_object("foo", NS, [
            reported("ControlPlaneHealthy"),
            reported("SystemComponentsHealthy", "False"),
            reported("SomethingElse"),
        ])
        bucket_extension_conditions("Worker", [obj], buckets)

        assert set(buckets) == {"ControlPlaneHealthy", "EveryNodeReady", "SystemComponentsHealthy"}
        assert len(buckets["ControlPlaneHealthy"]) == 1
        assert buckets["EveryNodeReady"] == []
        ext = buckets["SystemComponentsHealthy"][0]
        assert ext.extensionKind == "Worker"
        assert ext.extensionName == "foo"
        assert ext.extensionNamespace == NS
        assert ext.condition.status.value == "False"


class TestCollect:
    @pytest.mark.asyncio
    async def test_collects_every_kind(self):
        seed = FakeCluster()
        seed.custom["workers"] = [extension_object("foo", NS, [reported("EveryNodeReady")])]
        seed.custom["infrastructures"] = [extension_object("foo", NS, [reported("ControlPlaneHealthy")])]
        seed.custom["networks"] = [extension_object("foo", "other-namespace", [reported("ControlPlaneHealthy")])]

        buckets = await collect_extension_conditions(seed, NS)

        assert [e.extensionKind for e in buckets["EveryNodeReady"]] == ["Worker"]
        assert [e.extensionKind for e in buckets["ControlPlaneHealthy"]] == ["Infrastructure"]

    @pytest.mark.asyncio
    async def test_listing_failure_yields_empty_buckets(self):
        seed = FakeCluster()
        seed.custom["workers"] = [extension_object("foo", NS, [reported("EveryNodeReady")])]
        seed.list_error = RuntimeError("connection refused")

        assert await collect_extension_conditions(seed, NS) == empty_extension_conditions()
