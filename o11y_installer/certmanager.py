"""Monitoring objects for an existing cert-manager installation."""

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

DEFAULT_NAMESPACE = "certmanager"
SERVICE_MONITOR_NAMESPACE = "monitoring-satellite"
APP = "certmanager"
COMPONENT = "certmanager"

_PROMETHEUS_MATCH_LABELS = {
    "app.kubernetes.io/component": "prometheus",
    "app.kubernetes.io/instance": "k8s",
    "app.kubernetes.io/name": "prometheus",
    "app.kubernetes.io/part-of": "kube-prometheus",
    "app.kubernetes.io/version": "2.41.0",
}

_CONTROLLER_SELECTOR = {
    "app": "cert-manager",
    "app.kubernetes.io/component": "controller",
}


def _labels() -> dict[str, str]:
    return {
        "app.kubernetes.io/component": COMPONENT,
        "app.kubernetes.io/name": APP,
        "app.kubernetes.io/part-of": "kube-prometheus",
    }


def _namespace(ctx: RenderContext) -> str:
    return ctx.setting("certmanager", "namespace", default="") or DEFAULT_NAMESPACE


def network_policy(ctx: RenderContext) -> list[Manifest]:
    """Allow Prometheus to reach the cert-manager controller."""
    return [
        {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "NetworkPolicy",
            "metadata": {
                "name": f"{COMPONENT}-allow-kube-prometheus",
                "namespace": _namespace(ctx),
                "labels": _labels(),
            },
            "spec": {
                "podSelector": {"matchLabels": dict(_CONTROLLER_SELECTOR)},
                "ingress": [
                    {
                        "from": [
                            {
                                "namespaceSelector": {
                                    "matchLabels": {"namespace": "monitoring-satellite"},
                                },
                                "podSelector": {
                                    "matchLabels": dict(_PROMETHEUS_MATCH_LABELS),
                                },
                            }
                        ]
                    }
                ],
                "policyTypes": ["Ingress"],
            },
        }
    ]


def service(ctx: RenderContext) -> list[Manifest]:
    """Service exposing the cert-manager metrics port."""
    return [
        {
            **SERVICE_TYPE,
            "metadata": {
                "name": f"{APP}-metrics",
                "namespace": _namespace(ctx),
                "labels": _labels(),
            },
            "spec": {
                "ports": [{"name": "metrics", "port": 9402}],
                "selector": dict(_CONTROLLER_SELECTOR),
            },
        }
    ]


def service_monitor(ctx: RenderContext) -> list[Manifest]:
    """ServiceMonitor scraping the cert-manager metrics service."""
    endpoint: dict[str, Any] = {
        "interval": "60s",
        "port": "metrics",
        "honorLabels": True,
    }
    relabelings = drop_metrics_relabeling(ctx)
    if relabelings is not None:
        endpoint["metricRelabelings"] = relabelings
    return [
        {
            "apiVersion": "monitoring.coreos.com/v1",
            "kind": "ServiceMonitor",
            "metadata": {
                "name": APP,
                "namespace": SERVICE_MONITOR_NAMESPACE,
                "labels": _labels(),
                "annotations": {"argocd.argoproj.io/sync-options": "Replace=true"},
            },
            "spec": {
                "jobLabel": "app.kubernetes.io/name",
                "endpoints": [endpoint],
                "namespaceSelector": {"matchNames": [_namespace(ctx)]},
                "selector": {"matchLabels": _labels()},
            },
        }
    ]


def objects(ctx: RenderContext) -> RenderFunc:
    """Render function for cert-manager monitoring, empty unless enabled."""
    if ctx.setting("certmanager", "installServiceMonitors", default=False):
        return composite_render_func(network_policy, service, service_monitor)
    return lambda _ctx: []