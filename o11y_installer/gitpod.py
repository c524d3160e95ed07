"""Scrape targets, services and network policies for Gitpod's own components."""

from __future__ import annotations

from typing import Any

from o11y_installer.common import (
    SERVICE_TYPE,
    Manifest,
    RenderContext,
    RenderFunc,
    composite_render_func,
    drop_metrics_relabeling,
)

GITPOD_NAMESPACE = "default"
NAMESPACE = "monitoring-satellite"
APP = "gitpod"

BEARER_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"

_PROMETHEUS_MATCH_LABELS = {
    "app.kubernetes.io/component": "prometheus",
    "app.kubernetes.io/instance": "k8s",
    "app.kubernetes.io/name": "prometheus",
    "app.kubernetes.io/part-of": "kube-prometheus",
    "app.kubernetes.io/version": "2.41.0",
}

TARGETS: tuple[str, ...] = (
    "agent-smith",
    "blobserve",
    "containerd-metrics",
    "content-service",
    "ide-metrics",
    "ide-service",
    "image-builder-mk3",
    "openvsx-proxy",
    "public-api-server",
    "registry-facade",
    "server",
    "slow-server",
    "spicedb",
    "usage",
    "ws-daemon",
    "ws-manager-bridge",
    "ws-manager",
    "ws-proxy",
)


def _labels(target: str) -> dict[str, str]:
    return {
        "app.kubernetes.io/component": target,
        "app.kubernetes.io/name": APP,
        "app.kubernetes.io/part-of": "kube-prometheus",
    }


def _prometheus_ingress(ports: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    rule: dict[str, Any] = {
        "from": [
            {
                "namespaceSelector": {
                    "matchLabels": {"kubernetes.io/metadata.name": NAMESPACE},
                },
                "podSelector": {"matchLabels": dict(_PROMETHEUS_MATCH_LABELS)},
            }
        ]
    }
    if ports:
        rule["ports"] = ports
    return rule


def _network_policy(
    name: str,
    labels: dict[str, str],
    pod_selector: dict[str, str],
    ports: list[dict[str, Any]] | None = None,
) -> Manifest:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": {
            "name": f"{name}-allow-kube-prometheus",
            "namespace": GITPOD_NAMESPACE,
            "labels": dict(labels),
        },
        "spec": {
            "podSelector": {"matchLabels": dict(pod_selector)},
            "ingress": [_prometheus_ingress(ports)],
            "policyTypes": ["Ingress"],
        },
    }


def _service(
    name: str, labels: dict[str, str], port_name: str, port: int, selector: dict[str, str]
) -> Manifest:
    return {
        **SERVICE_TYPE,
        "metadata": {
            "name": name,
            "namespace": GITPOD_NAMESPACE,
            "labels": dict(labels),
        },
        "spec": {
            "ports": [{"name": port_name, "port": port}],
            "selector": dict(selector),
        },
    }


def _service_monitor(
    name: str,
    labels: dict[str, str],
    endpoint_extra: dict[str, Any] | None = None,
    annotations: dict[str, str] | None = None,
) -> Manifest:
    endpoint: dict[str, Any] = {
        "bearerTokenFile": BEARER_TOKEN_FILE,
        "interval": "60s",
        "port": "metrics",
        **(endpoint_extra or {}),
    }
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": NAMESPACE,
        "labels": dict(labels),
    }
    if annotations:
        metadata["annotations"] = dict(annotations)
    return {
        "apiVersion": "monitoring.coreos.com/v1",
        "kind": "ServiceMonitor",
        "metadata": metadata,
        "spec": {
            "endpoints": [endpoint],
            "jobLabel": "app.kubernetes.io/component",
            "namespaceSelector": {"matchNames": [GITPOD_NAMESPACE]},
            "selector": {"matchLabels": dict(labels)},
        },
    }


def network_policy(target: str) -> RenderFunc:
    """Render function allowing Prometheus to reach a Gitpod component."""

    def render(ctx: RenderContext) -> list[Manifest]:
        return [_network_policy(target, _labels(target), {"component": target})]

    return render


def service(target: str) -> RenderFunc:
    """Render function for the metrics service of a Gitpod component."""

    def render(ctx: RenderContext) -> list[Manifest]:
        return [
            _service(
                f"{APP}-{target}", _labels(target), "metrics", 9500, {"component": target}
            )
        ]

    return render


def service_monitor(target: str) -> RenderFunc:
    """Render function for the ServiceMonitor scraping a Gitpod component."""

    def render(ctx: RenderContext) -> list[Manifest]:
        extra: dict[str, Any] = {}
        relabelings = drop_metrics_relabeling(ctx)
        if relabelings is not None:
            extra["metricRelabelings"] = relabelings
        return [
            _service_monitor(
                f"{APP}-{target}",
                _labels(target),
                extra,
                annotations={"argocd.argoproj.io/sync-options": "Replace=true"},
            )
        ]

    return render


def target_objects(target: str) -> RenderFunc:
    """Network policy, service and ServiceMonitor for one Gitpod component."""
    return composite_render_func(
        network_policy(target),
        service(target),
        service_monitor(target),
    )


def workspace_objects() -> RenderFunc:
    """PodMonitor and network policy for workspace supervisors."""

    def render(ctx: RenderContext) -> list[Manifest]:
        return [
            {
                "apiVersion": "monitoring.coreos.com/v1",
                "kind": "PodMonitor",
                "metadata": {
                    "name": "workspace",
                    "namespace": NAMESPACE,
                    "labels": {
                        "app.kubernetes.io/name": "gitpod",
                        "app.kubernetes.io/part-of": "kube-prometheus",
                    },
                },
                "spec": {
                    "namespaceSelector": {"matchNames": [GITPOD_NAMESPACE]},
                    "selector": {
                        "matchLabels": {
                            "component": "workspace",
                            "workspaceType": "regular",
                        }
                    },
                    "podMetricsEndpoints": [
                        {
                            "interval": "60s",
                            "port": "supervisor",
                            "scrapeTimeout": "5s",
                        }
                    ],
                },
            },
            _network_policy(
                "workspace",
                _labels("workspace"),
                {"component": "workspace"},
                ports=[{"port": 22999, "protocol": "TCP"}],
            ),
        ]

    return render


def proxy_caddy_objects() -> RenderFunc:
    """Objects for the proxy's Caddy metrics, which use their own port and selector."""

    def render(ctx: RenderContext) -> list[Manifest]:
        caddy_labels = _labels("proxy-caddy")
        return [
            _service_monitor("gitpod-proxy-caddy", caddy_labels),
            _service(
                "gitpod-proxy-caddy",
                caddy_labels,
                "caddy-metrics",
                8003,
                {"component": "proxy"},
            ),
            _network_policy("proxy-caddy", caddy_labels, {"component": "proxy"}),
        ]

    return render


def messagebus_objects() -> RenderFunc:
    """Objects for scraping the RabbitMQ message bus."""

    def render(ctx: RenderContext) -> list[Manifest]:
        bus_labels = _labels("messagebus")
        return [
            _network_policy("messagebus", bus_labels, {"component": "messagebus"}),
            _service(
                f"{APP}-messagebus",
                bus_labels,
                "metrics",
                9419,
                {"app.kubernetes.io/name": "rabbitmq"},
            ),
            _service_monitor(f"{APP}-messagebus", bus_labels),
        ]

    return render


def objects(ctx: RenderContext) -> RenderFunc:
    """Render function for all Gitpod monitoring objects, empty unless enabled."""
    if not ctx.setting("gitpod", "installServiceMonitors", default=False):
        return lambda _ctx: []
    return composite_render_func(
        *(target_objects(target) for target in TARGETS),
        workspace_objects(),
        proxy_caddy_objects(),
        messagebus_objects(),
    )