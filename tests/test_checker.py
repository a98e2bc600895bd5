"""Tests for the HealthChecker building blocks and seed checks."""

from datetime import timedelta

import pytest

from shoot_operator.care.checker import HealthChecker
from shoot_operator.care.conditions import ConditionStateMachine
from shoot_operator.models import Condition, ConditionStatus, ExtensionCondition
from tests.fakes import T0, FakeCluster, deployment, etcd, managed_resource, node, stateful_set

NS = "shoot--dev--foo"
CP_LABELS = {"gardener.cloud/role": "controlplane"}
MON_LABELS = {"gardener.cloud/role": "monitoring"}
REQUIRED = frozenset({"kube-apiserver", "kube-scheduler"})
ETCDS = frozenset({"etcd-main", "etcd-events"})


def true_condition(ctype="ControlPlaneHealthy"):
    return Condition(type=ctype, status=ConditionStatus.TRUE, reason="Running", message="ok",
                     lastTransitionTime=T0 - timedelta(hours=1), lastUpdateTime=T0 - timedelta(hours=1))


@pytest.fixture
def seed():
    cluster = FakeCluster()
    cluster.deployments = [deployment(n, NS, CP_LABELS) for n in sorted(REQUIRED)]
    cluster.custom["etcds"] = [etcd(n, NS) for n in sorted(ETCDS)]
    return cluster


@pytest.fixture
def checker(seed, clock):
    machine = ConditionStateMachine({"ControlPlaneHealthy": timedelta(minutes=5),
                                     "EveryNodeReady": timedelta(minutes=5)}, clock=clock)
    return HealthChecker(seed, machine)


class TestControlPlane:
    @pytest.mark.asyncio
    async def test_healthy(self, checker):
        assert await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition()) is None

    @pytest.mark.asyncio
    async def test_missing_deployment(self, checker, seed):
        seed.deployments = seed.deployments[:1]
        result = await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition())
        assert result.status == ConditionStatus.PROGRESSING
        assert result.reason == "DeploymentMissing"
        assert result.message == "Missing required deployments: [kube-scheduler]"

    @pytest.mark.asyncio
    async def test_required_check_runs_before_health(self, checker, seed):
        """A missing deployment is reported even when another one is unhealthy."""
        seed.deployments = [deployment("kube-apiserver", NS, CP_LABELS, available=False)]
        result = await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition())
        assert result.reason == "DeploymentMissing"

    @pytest.mark.asyncio
    async def test_unhealthy_deployment(self, checker, seed):
        seed.deployments[0] = deployment("kube-apiserver", NS, CP_LABELS, available=False)
        result = await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition())
        assert result.reason == "DeploymentUnhealthy"
        assert result.message.startswith('Deployment "kube-apiserver" is unhealthy: ')

    @pytest.mark.asyncio
    async def test_objects_of_other_roles_are_ignored(self, checker, seed):
        seed.deployments.append(deployment("grafana", NS, MON_LABELS, available=False))
        assert await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition()) is None

    @pytest.mark.asyncio
    async def test_missing_etcd(self, checker, seed):
        seed.custom["etcds"] = [etcd("etcd-main", NS)]
        result = await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition())
        assert result.reason == "EtcdMissing"
        assert "etcd-events" in result.message

    @pytest.mark.asyncio
    async def test_unhealthy_etcd_carries_error_codes(self, checker, seed):
        seed.custom["etcds"][0] = etcd("etcd-events", NS, ready=False, last_error="QuotaExceeded for volumes")
        result = await checker.check_control_plane(NS, REQUIRED, ETCDS, true_condition())
        assert result.reason == "EtcdUnhealthy"
        assert result.codes == ("ERR_INFRA_QUOTA_EXCEEDED",)


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_unready_stateful_set(self, checker, seed):
        seed.deployments = [deployment("grafana", NS, MON_LABELS)]
        seed.stateful_sets = [stateful_set("prometheus", NS, MON_LABELS, ready=0)]
        result = await checker.check_monitoring_control_plane(
            NS, frozenset({"grafana"}), frozenset({"prometheus"}), true_condition(),
        )
        assert result.reason == "StatefulSetUnhealthy"

    @pytest.mark.asyncio
    async def test_missing_stateful_set(self, checker, seed):
        seed.deployments = [deployment("grafana", NS, MON_LABELS)]
        result = await checker.check_monitoring_control_plane(
            NS, frozenset({"grafana"}), frozenset({"prometheus", "alertmanager"}), true_condition(),
        )
        assert result.reason == "StatefulSetMissing"
        assert result.message == "Missing required stateful sets: [alertmanager prometheus]"


class TestNodes:
    def test_node_count_too_low(self, checker):
        result = checker.check_node_count(true_condition("EveryNodeReady"), "pool-a", 1, 2, 4)
        assert result.reason == "MissingNodes"
        assert "(1/2)" in result.message

    def test_node_count_too_high(self, checker):
        result = checker.check_node_count(true_condition("EveryNodeReady"), "pool-a", 5, 2, 4)
        assert result.reason == "TooManyNodes"

    def test_node_count_without_maximum(self, checker):
        assert checker.check_node_count(true_condition("EveryNodeReady"), "pool-a", 5, 2, 0) is None

    def test_unhealthy_node_keeps_configuration_codes_only(self, checker):
        n = node("n1", pressure=("MemoryPressure", "KubeletHasInsufficientMemory", "Forbidden to allocate"))
        result = checker.check_nodes(true_condition("EveryNodeReady"), [n], "pool-a", "1.28.3")
        assert result.reason == "NodeUnhealthy"
        assert result.codes == ("ERR_CONFIGURATION_PROBLEM",)

    def test_kubelet_version_mismatch(self, checker):
        result = checker.check_nodes(true_condition("EveryNodeReady"), [node("n1", kubelet_version="v1.28.1")],
                                     "pool-a", "1.28.3")
        assert result.reason == "KubeletVersionMismatch"
        assert "(v1.28.1)" in result.message

    def test_unparsable_version(self, checker):
        result = checker.check_nodes(true_condition("EveryNodeReady"), [node("n1", kubelet_version="dev")],
                                     "pool-a", "1.28.3")
        assert result.reason == "VersionParseError"

    def test_nodes_by_pool(self):
        pools = HealthChecker.nodes_by_pool([node("a1", "a"), node("b1", "b"), node("a2", "a")])
        assert [n.metadata.name for n in pools["a"]] == ["a1", "a2"]
        assert list(pools) == ["a", "b"]


class TestManagedResource:
    def test_reason_taken_from_condition(self, checker):
        result = checker.check_managed_resource(
            true_condition("SystemComponentsHealthy"),
            managed_resource("shoot-core", healthy=False, reason="PodsNotReady"),
        )
        assert result.reason == "PodsNotReady"
        assert result.message.startswith('Managed resource "shoot-core" is unhealthy')

    def test_healthy(self, checker):
        assert checker.check_managed_resource(true_condition(), managed_resource("shoot-core")) is None


class TestExtensionCondition:
    def report(self, status, age_minutes=1, reason="HealthCheckFailed"):
        updated = T0 - timedelta(minutes=age_minutes)
        return ExtensionCondition(
            condition=Condition(type="ControlPlaneHealthy", status=status, reason=reason, message="lb missing",
                                lastUpdateTime=updated, lastTransitionTime=updated),
            extensionKind="Infrastructure",
            extensionName="foo",
            extensionNamespace=NS,
        )

    def test_stale_report_is_unknown(self, checker):
        result = checker.check_extension_condition(
            true_condition(), [self.report(ConditionStatus.TRUE, age_minutes=10)], timedelta(minutes=5),
        )
        assert result.status == ConditionStatus.UNKNOWN
        assert result.reason == "InfrastructureOutdatedHealthCheckReport"

    def test_staleness_not_checked_without_threshold(self, checker):
        result = checker.check_extension_condition(
            true_condition(), [self.report(ConditionStatus.TRUE, age_minutes=600)], None,
        )
        assert result is None

    def test_progressing_report(self, checker):
        result = checker.check_extension_condition(
            true_condition(), [self.report(ConditionStatus.PROGRESSING, reason="Rolling")], timedelta(minutes=5),
        )
        assert result.status == ConditionStatus.PROGRESSING
        assert result.reason == "InfrastructureRolling"

    def test_failing_report(self, checker):
        result = checker.check_extension_condition(
            true_condition(), [self.report(ConditionStatus.FALSE)], timedelta(minutes=5),
        )
        assert result.status == ConditionStatus.PROGRESSING
        assert result.reason == "InfrastructureUnhealthyReport"
        assert "lb missing" in result.message

    def test_healthy_reports(self, checker):
        assert checker.check_extension_condition(true_condition(), [self.report(ConditionStatus.TRUE)]) is None
