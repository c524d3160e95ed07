import pytest
import yaml

from o11y_installer import kubestate_metrics as ksm
from o11y_installer.common import RenderContext, dependency_sort, yaml_to_runtime_objects


@pytest.fixture
def ctx():
    return RenderContext()


def test_objects_kinds_in_order(ctx):
    kinds = [obj["kind"] for obj in ksm.objects(ctx)]
    assert kinds == [
        "ClusterRole",
        "ClusterRoleBinding",
        "Deployment",
        "PodSecurityPolicy",
        "Service",
        "ServiceAccount",
        "ServiceMonitor",
    ]


def test_all_objects_named_kube_state_metrics(ctx):
    assert {obj["metadata"]["name"] for obj in ksm.objects(ctx)} == {"kube-state-metrics"}


def test_labels_on_every_object(ctx):
    for obj in ksm.objects(ctx):
        assert obj["metadata"]["labels"]["app.kubernetes.io/version"] == "2.5.0"
        assert obj["metadata"]["labels"]["app.kubernetes.io/component"] == "exporter"


def test_cluster_role_psp_rule(ctx):
    rules = ksm.cluster_role(ctx)[0]["rules"]
    assert rules[-1] == {
        "apiGroups": ["policy"],
        "resources": ["podsecuritypolicies"],
        "verbs": ["use"],
        "resourceNames": ["kube-state-metrics"],
    }
    assert all("resourceNames" not in rule for rule in rules[:-1])


def test_cluster_role_binding_subject(ctx):
    binding = ksm.cluster_role_binding(ctx)[0]
    assert binding["subjects"][0]["namespace"] == "monitoring-satellite"
    assert binding["roleRef"]["kind"] == "ClusterRole"


def test_rbac_proxy_container():
    container = ksm.rbac_proxy_container("main", 8081, 8443)
    assert container["name"] == "kube-rbac-proxy-main"
    assert container["image"] == "quay.io/brancz/kube-rbac-proxy:v0.13.0"
    assert "--secure-listen-address=:8443" in container["args"]
    assert "--upstream=http://127.0.0.1:8081/" in container["args"]
    assert container["ports"] == [{"containerPort": 8443, "name": "https-main"}]


def test_deployment_containers(ctx):
    containers = ksm.deployment(ctx)[0]["spec"]["template"]["spec"]["containers"]
    assert [c["name"] for c in containers] == [
        "kube-state-metrics",
        "kube-rbac-proxy-main",
        "kube-rbac-proxy-self",
    ]
    assert containers[0]["image"] == "k8s.gcr.io/kube-state-metrics/kube-state-metrics:v2.5.0"


def test_deployment_node_selector_and_tolerations():
    tolerations = [{"key": "dedicated", "operator": "Exists"}]
    ctx = RenderContext(config={"nodeSelector": {"pool": "services"}, "tolerations": tolerations})
    spec = ksm.deployment(ctx)[0]["spec"]["template"]["spec"]
    assert spec["nodeSelector"] == {"pool": "services"}
    assert spec["tolerations"] == tolerations


def test_deployment_without_node_selector(ctx):
    spec = ksm.deployment(ctx)[0]["spec"]["template"]["spec"]
    assert "nodeSelector" not in spec
    assert "tolerations" not in spec


def test_pod_security_policy_volumes(ctx):
    spec = ksm.pod_security_policy(ctx)[0]["spec"]
    assert spec["volumes"] == [
        "configMap",
        "emptyDir",
        "secret",
        "projected",
        "persistentVolumeClaim",
    ]
    assert spec["requiredDropCapabilities"] == ["ALL"]


def test_service_ports(ctx):
    ports = ksm.service(ctx)[0]["spec"]["ports"]
    assert [(p["name"], p["port"]) for p in ports] == [("https-main", 8443), ("https-self", 9443)]


def test_service_account_no_automount(ctx):
    assert ksm.service_account(ctx)[0]["automountServiceAccountToken"] is False


def test_labels_replace_and_drop_pairs():
    configs = ksm.labels_replace_and_drop([("label_owner", "owner")])
    assert configs == [
        {
            "action": "replace",
            "regex": "(.*)",
            "replacement": "$1",
            "sourceLabels": ["label_owner"],
            "targetLabel": "owner",
        },
        {"action": "labeldrop", "regex": "label_owner"},
    ]


def test_labels_replace_and_drop_empty():
    assert ksm.labels_replace_and_drop([]) == []


def test_service_monitor_relabelings_without_drop(ctx):
    endpoints = ksm.service_monitor(ctx)[0]["spec"]["endpoints"]
    main = endpoints[0]
    assert main["metricRelabelings"] == ksm.labels_replace_and_drop(ksm.LABEL_REPLACEMENTS)
    assert "metricRelabelings" not in endpoints[1]


def test_service_monitor_appends_drop_metrics():
    ctx = RenderContext(config={"prometheus": {"metricsToDrop": ["foo", "bar"]}})
    relabelings = ksm.service_monitor(ctx)[0]["spec"]["endpoints"][0]["metricRelabelings"]
    assert relabelings[-1] == {"sourceLabels": ["__name__"], "regex": "foo|bar", "action": "drop"}
    assert len(relabelings) == 2 * len(ksm.LABEL_REPLACEMENTS) + 1


def test_yaml_round_trip_and_sort(ctx):
    docs = [f"---\n{yaml.safe_dump(obj)}\n" for obj in ksm.objects(ctx)]
    parsed = dependency_sort(yaml_to_runtime_objects(docs))
    assert [obj.kind for obj in parsed] == [
        "PodSecurityPolicy",
        "ServiceAccount",
        "ClusterRole",
        "ClusterRoleBinding",
        "Service",
        "Deployment",
        "ServiceMonitor",
    ]