"""
Names, labels and annotations shared between the care and cleanup paths.
These describe the cluster contract (what the seed and shoot objects carry),
not tunables — tunables live in config.py.
"""

# ---------------------------------------------------------------------------
# Condition types
# ---------------------------------------------------------------------------
CONDITION_API_SERVER_AVAILABLE = "APIServerAvailable"
CONDITION_CONTROL_PLANE_HEALTHY = "ControlPlaneHealthy"
CONDITION_EVERY_NODE_READY = "EveryNodeReady"
CONDITION_SYSTEM_COMPONENTS_HEALTHY = "SystemComponentsHealthy"

SHOOT_CONDITION_TYPES = (
    CONDITION_API_SERVER_AVAILABLE,
    CONDITION_CONTROL_PLANE_HEALTHY,
    CONDITION_EVERY_NODE_READY,
    CONDITION_SYSTEM_COMPONENTS_HEALTHY,
)

# Condition types extensions may report on; each maps onto a shoot condition.
EXTENSION_CONDITION_TYPES = (
    CONDITION_CONTROL_PLANE_HEALTHY,
    CONDITION_EVERY_NODE_READY,
    CONDITION_SYSTEM_COMPONENTS_HEALTHY,
)

# ---------------------------------------------------------------------------
# Labels & annotations
# ---------------------------------------------------------------------------
LABEL_ROLE = "gardener.cloud/role"
ROLE_CONTROL_PLANE = "controlplane"
ROLE_MONITORING = "monitoring"
ROLE_LOGGING = "logging"
ROLE_SYSTEM_COMPONENT = "system-component"

LABEL_WORKER_POOL = "worker.gardener.cloud/pool"
LABEL_NO_CLEANUP = "shoot.gardener.cloud/no-cleanup"

ANNOTATION_CLEANUP_PREFIX = "shoot.gardener.cloud/cleanup-"

PURPOSE_TESTING = "testing"

# ---------------------------------------------------------------------------
# Seed (control plane) objects
# ---------------------------------------------------------------------------
DEPLOYMENT_KUBE_APISERVER = "kube-apiserver"
DEPLOYMENT_CLUSTER_AUTOSCALER = "cluster-autoscaler"

REQUIRED_CONTROL_PLANE_DEPLOYMENTS = frozenset({
    "gardener-resource-manager",
    DEPLOYMENT_KUBE_APISERVER,
    "kube-controller-manager",
    "kube-scheduler",
})

VPA_DEPLOYMENTS = ("vpa-admission-controller", "vpa-recommender", "vpa-updater")

REQUIRED_CONTROL_PLANE_ETCDS = frozenset({"etcd-main", "etcd-events"})

REQUIRED_MONITORING_DEPLOYMENTS = frozenset({
    "grafana-operators",
    "grafana-users",
    "kube-state-metrics",
})
STATEFULSET_PROMETHEUS = "prometheus"
STATEFULSET_ALERTMANAGER = "alertmanager"

REQUIRED_LOGGING_STATEFULSETS = frozenset({"loki"})

MANAGED_RESOURCES_SHOOT = (
    "shoot-core-namespaces",
    "shoot-core",
    "addons",
    "shoot-core-metrics-server",
)

SECRET_SHOOT_KUBECONFIG = "gardener"
SECRET_ETCD_ENCRYPTION = "etcd-encryption-secret"

# ---------------------------------------------------------------------------
# Custom resource coordinates
# ---------------------------------------------------------------------------
EXTENSIONS_GROUP = "extensions.gardener.cloud"
EXTENSIONS_VERSION = "v1alpha1"

# (kind, plural) of extension resources living in the seed namespace
EXTENSION_KINDS = (
    ("ContainerRuntime", "containerruntimes"),
    ("ControlPlane", "controlplanes"),
    ("Extension", "extensions"),
    ("Infrastructure", "infrastructures"),
    ("Network", "networks"),
    ("OperatingSystemConfig", "operatingsystemconfigs"),
    ("Worker", "workers"),
)

CLUSTER_PLURAL = "clusters"
WORKER_PLURAL = "workers"

ETCD_GROUP = "druid.gardener.cloud"
ETCD_VERSION = "v1alpha1"
ETCD_PLURAL = "etcds"

MANAGED_RESOURCE_GROUP = "resources.gardener.cloud"
MANAGED_RESOURCE_VERSION = "v1alpha1"
MANAGED_RESOURCE_PLURAL = "managedresources"

# ---------------------------------------------------------------------------
# Shoot (data plane) objects
# ---------------------------------------------------------------------------
NAMESPACE_SYSTEM = "kube-system"
PROTECTED_NAMESPACES = ("default", "kube-public", "kube-system", "kube-node-lease")

TUNNEL_VPN = "vpn-shoot"
TUNNEL_KONNECTIVITY = "konnectivity-agent"
TUNNEL_PROBE_PORT = 22
