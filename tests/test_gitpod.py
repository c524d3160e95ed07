import pytest

from o11y_installer import gitpod
from o11y_installer.common import RenderContext


def _enabled(**extra):
    return RenderContext(config={"gitpod": {"installServiceMonitors": True}, **extra})


def _by_kind(manifests, kind):
    return [m for m in manifests if m["kind"] == kind]


def test_objects_disabled_renders_nothing():
    ctx = RenderContext(config={})
    assert gitpod.objects(ctx)(ctx) == []


def test_objects_explicitly_disabled_renders_nothing():
    ctx = RenderContext(config={"gitpod": {"installServiceMonitors": False}})
    assert gitpod.objects(ctx)(ctx) == []


def test_objects_enabled_covers_every_target():
    ctx = _enabled()
    rendered = gitpod.objects(ctx)(ctx)
    service_selectors = [m["spec"]["selector"] for m in _by_kind(rendered, "Service")]
    for target in gitpod.TARGETS:
        assert {"component": target} in service_selectors


def test_objects_enabled_includes_special_objects():
    ctx = _enabled()
    rendered = gitpod.objects(ctx)(ctx)
    names = {m["metadata"]["name"] for m in rendered}
    assert "workspace" in names
    assert "gitpod-proxy-caddy" in names
    assert len(_by_kind(rendered, "PodMonitor")) == 1


def test_objects_namespaces():
    ctx = _enabled()
    rendered = gitpod.objects(ctx)(ctx)
    for manifest in rendered:
        if manifest["kind"] in ("ServiceMonitor", "PodMonitor"):
            assert manifest["metadata"]["namespace"] == "monitoring-satellite"
        else:
            assert manifest["metadata"]["namespace"] == "default"


def test_target_objects_kinds_in_order():
    ctx = RenderContext()
    rendered = gitpod.target_objects("server")(ctx)
    assert [m["kind"] for m in rendered] == ["NetworkPolicy", "Service", "ServiceMonitor"]


def test_service_for_target():
    ctx = RenderContext()
    [svc] = gitpod.service("blobserve")(ctx)
    assert svc["apiVersion"] == "v1"
    assert svc["spec"]["ports"] == [{"name": "metrics", "port": 9500}]
    assert svc["spec"]["selector"] == {"component": "blobserve"}
    assert svc["metadata"]["labels"]["app.kubernetes.io/component"] == "blobserve"
    assert svc["metadata"]["labels"]["app.kubernetes.io/name"] == "gitpod"


def test_service_and_monitor_share_name_and_labels():
    ctx = RenderContext()
    [svc] = gitpod.service("usage")(ctx)
    [mon] = gitpod.service_monitor("usage")(ctx)
    assert svc["metadata"]["name"] == mon["metadata"]["name"]
    assert mon["spec"]["selector"]["matchLabels"] == svc["metadata"]["labels"]


def test_service_monitor_without_metrics_to_drop():
    ctx = RenderContext()
    [mon] = gitpod.service_monitor("ws-daemon")(ctx)
    [endpoint] = mon["spec"]["endpoints"]
    assert "metricRelabelings" not in endpoint
    assert endpoint["bearerTokenFile"] == "/var/run/secrets/kubernetes.io/serviceaccount/token"
    assert endpoint["port"] == "metrics"
    assert mon["spec"]["jobLabel"] == "app.kubernetes.io/component"
    assert mon["spec"]["namespaceSelector"] == {"matchNames": ["default"]}
    assert mon["metadata"]["annotations"] == {
        "argocd.argoproj.io/sync-options": "Replace=true"
    }


def test_service_monitor_with_metrics_to_drop():
    ctx = RenderContext(config={"prometheus": {"metricsToDrop": ["a_total", "b_total"]}})
    [mon] = gitpod.service_monitor("ws-daemon")(ctx)
    [endpoint] = mon["spec"]["endpoints"]
    assert endpoint["metricRelabelings"] == [
        {"sourceLabels": ["__name__"], "regex": "a_total|b_total", "action": "drop"}
    ]


def test_network_policy_for_target():
    ctx = RenderContext()
    [policy] = gitpod.network_policy("spicedb")(ctx)
    spec = policy["spec"]
    assert spec["podSelector"] == {"matchLabels": {"component": "spicedb"}}
    assert spec["policyTypes"] == ["Ingress"]
    [peer] = spec["ingress"][0]["from"]
    assert peer["namespaceSelector"]["matchLabels"] == {
        "kubernetes.io/metadata.name": "monitoring-satellite"
    }
    assert peer["podSelector"]["matchLabels"]["app.kubernetes.io/name"] == "prometheus"
    assert "ports" not in spec["ingress"][0]


def test_workspace_objects():
    ctx = RenderContext()
    pod_monitor, policy = gitpod.workspace_objects()(ctx)
    assert pod_monitor["kind"] == "PodMonitor"
    assert pod_monitor["spec"]["podMetricsEndpoints"] == [
        {"interval": "60s", "port": "supervisor", "scrapeTimeout": "5s"}
    ]
    assert pod_monitor["spec"]["selector"]["matchLabels"] == {
        "component": "workspace",
        "workspaceType": "regular",
    }
    assert policy["spec"]["ingress"][0]["ports"] == [{"port": 22999, "protocol": "TCP"}]


def test_proxy_caddy_objects():
    ctx = RenderContext()
    rendered = gitpod.proxy_caddy_objects()(ctx)
    assert [m["kind"] for m in rendered] == ["ServiceMonitor", "Service", "NetworkPolicy"]
    [svc] = _by_kind(rendered, "Service")
    assert svc["spec"]["ports"] == [{"name": "caddy-metrics", "port": 8003}]
    assert svc["spec"]["selector"] == {"component": "proxy"}
    [policy] = _by_kind(rendered, "NetworkPolicy")
    assert policy["spec"]["podSelector"]["matchLabels"] == {"component": "proxy"}


def test_messagebus_objects():
    ctx = RenderContext()
    rendered = gitpod.messagebus_objects()(ctx)
    assert [m["kind"] for m in rendered] == ["NetworkPolicy", "Service", "ServiceMonitor"]
    [svc] = _by_kind(rendered, "Service")
    assert svc["spec"]["ports"] == [{"name": "metrics", "port": 9419}]
    assert svc["spec"]["selector"] == {"app.kubernetes.io/name": "rabbitmq"}


@pytest.mark.parametrize("target", ["server", "ws-proxy"])
def test_renders_are_independent(target):
    ctx = RenderContext()
    render = gitpod.service(target)
    first = render(ctx)
    first[0]["metadata"]["labels"]["extra"] = "x"
    second = render(ctx)
    assert "extra" not in second[0]["metadata"]["labels"]