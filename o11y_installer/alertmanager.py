"""Alertmanager instance, its routing configuration and supporting objects."""

from __future__ import annotations

from typing import Any

import yaml

from o11y_installer.common import (
    Manifest,
    RenderContext,
    composite_render_func,
    drop_metrics_relabeling,
    labels,
)

NAME = "main"
APP = "kube-prometheus"
VERSION = "0.24.0"
NAMESPACE = "monitoring-satellite"
IMAGE_URL = "quay.io/prometheus/alertmanager"
COMPONENT = "alert-router"

RESOURCE_NAME = f"alertmanager-{NAME}"

SLACK_API_URL = "https://slack.com/api/chat.postMessage"

QUERY_STRING = (
    '{{ reReplaceAll "%22" "%5C%22" (index .Alerts 0).GeneratorURL | reReplaceAll ".*expr=" '
    '"https://grafana.gitpod.io/explore?orgId=1&left=%7B%22range%22:%7B%22from%22:%22now-1h%22,'
    "%22to%22:%22now%22%7D,%22datasource%22:%22VictoriaMetrics%22,%22queries%22:%5B%7B%22refId"
    '%22:%22A%22,%22expr%22:%22" | reReplaceAll "&g0.tab=1" "%22%7D%5D%7D" | reReplaceAll '
    '`\\+` "%20" | reReplaceAll "%0A" "" | reReplaceAll "%28" "(" | reReplaceAll "%29" ")" }}'
)

_SLACK_COLOR = (
    '{{ if eq .Status "firing" -}}{{ if eq .CommonLabels.severity "warning" -}}warning'
    '{{- else if eq .CommonLabels.severity "critical" -}}danger{{- else -}}#439FE0'
    "{{- end -}}{{ else -}}good{{- end }}"
)
_SLACK_TITLE = (
    '[{{ .CommonLabels.alertname }} {{ .Status | toUpper }} {{ if eq .Status "firing" }}{{ end }}]'
)
_SLACK_TEXT = (
    "{{ range .Alerts }}\n*Summary*: {{ .Annotations.summary }}\n"
    "*Severity: {{ .Labels.severity }}*\n*Cluster:* {{ .Labels.cluster }}\n"
    "*Alert:* {{ .Labels.alertname }}\n*Description:* {{ .Annotations.description }}\n{{ end }}"
)

_RUNBOOK_URL = "{{ .CommonAnnotations.runbook_url }}"
_DASHBOARD_URL = "{{ .CommonAnnotations.dashboard_url}}"


def _labels() -> dict[str, str]:
    return labels(NAME, COMPONENT, APP, VERSION)


def _metadata(name: str = RESOURCE_NAME, **extra: Any) -> dict[str, Any]:
    return {"name": name, "namespace": NAMESPACE, "labels": _labels(), **extra}


def _team_routes(ctx: RenderContext) -> list[Any]:
    return list(ctx.setting("alerting", "teamRoutes", default=None) or [])


def _slack_buttons() -> list[dict[str, str]]:
    return [
        {"type": "button", "text": "Runbook :book:", "url": _RUNBOOK_URL},
        {"type": "button", "text": "Query :prometheus:", "url": QUERY_STRING},
        {"type": "button", "text": "Dashboard :grafana:", "url": _DASHBOARD_URL},
    ]


def _slack_config(ctx: RenderContext, channel: str) -> dict[str, Any]:
    return {
        "send_resolved": True,
        "api_url": SLACK_API_URL,
        "channel": channel,
        "color": _SLACK_COLOR,
        "title": _SLACK_TITLE,
        "text": _SLACK_TEXT,
        "http_config": {
            "authorization": {
                "credentials": ctx.setting("alerting", "slackOAuthToken", default="") or "",
            },
        },
        "actions": _slack_buttons(),
    }


def _generic_channel(ctx: RenderContext) -> str:
    return ctx.setting("alerting", "genericSlackChannel", default="") or ""


def _critical_receiver(ctx: RenderContext) -> dict[str, Any]:
    routing_key = ctx.setting("alerting", "pagerDutyRoutingKey", default="") or ""
    if routing_key:
        return {
            "name": "criticalReceiver",
            "pagerduty_configs": [
                {
                    "send_resolved": True,
                    "routing_key": routing_key,
                    "links": [
                        {"href": _RUNBOOK_URL, "text": "Runbook"},
                        {"href": QUERY_STRING, "text": "Query"},
                        {"href": _DASHBOARD_URL, "text": "Dashboard"},
                    ],
                }
            ],
        }
    return {
        "name": "criticalReceiver",
        "slack_configs": [_slack_config(ctx, _generic_channel(ctx))],
    }


def _default_receivers(ctx: RenderContext) -> list[dict[str, Any]]:
    return [
        {"name": "Black_Hole"},
        {
            "name": "genericReceiver",
            "slack_configs": [_slack_config(ctx, _generic_channel(ctx))],
        },
    ]


def _team_slack_receivers(ctx: RenderContext) -> list[dict[str, Any]]:
    return [
        {
            "name": f"{route['teamLabel']}-slackReceiver",
            "slack_configs": [_slack_config(ctx, route.get("slackChannel", ""))],
        }
        for route in _team_routes(ctx)
    ]


def _routes(ctx: RenderContext) -> list[dict[str, Any]]:
    routes: list[dict[str, Any]] = [
        {
            "receiver": "criticalReceiver",
            "match": {"severity": "critical"},
            "continue": False,
        }
    ]
    routes.extend(
        {
            "receiver": f"{route['teamLabel']}-slackReceiver",
            "match": {"team": route["teamLabel"]},
            "continue": False,
        }
        for route in _team_routes(ctx)
    )
    routes.append(
        {
            "receiver": "genericReceiver",
            "match_re": {"severity": "info|warning"},
            "continue": False,
        }
    )
    return routes


def _inhibit_rules() -> list[dict[str, Any]]:
    return [
        {
            "source_match": {"severity": "critical"},
            "target_match_re": {"severity": "info|warning"},
            "equal": ["alertname"],
        },
        {
            "source_match": {"severity": "warning"},
            "target_match_re": {"severity": "info"},
            "equal": ["alertname"],
        },
    ]


def alertmanager_config(ctx: RenderContext) -> dict[str, Any]:
    """The Alertmanager routing configuration as a plain mapping."""
    return {
        "global": {"resolve_timeout": "5m"},
        "route": {
            "receiver": "Black_Hole",
            "group_by": ["..."],
            "group_wait": "30s",
            "group_interval": "5m",
            "repeat_interval": "6h",
            "routes": _routes(ctx),
        },
        "inhibit_rules": _inhibit_rules(),
        "receivers": [
            _critical_receiver(ctx),
            *_default_receivers(ctx),
            *_team_slack_receivers(ctx),
        ],
    }


def alertmanager(ctx: RenderContext) -> list[Manifest]:
    """The Alertmanager custom resource."""
    spec: dict[str, Any] = {
        "image": f"{IMAGE_URL}:v{VERSION}",
        "podMetadata": {"labels": _labels()},
        "replicas": 1,
        "resources": {"requests": {"cpu": "4m", "memory": "100Mi"}},
        "securityContext": {
            "fsGroup": 2000,
            "runAsUser": 1000,
            "runAsNonRoot": True,
        },
        "serviceAccountName": RESOURCE_NAME,
        "version": VERSION,
    }
    node_selector = ctx.setting("nodeSelector")
    if node_selector:
        spec["nodeSelector"] = dict(node_selector)
    tolerations = ctx.setting("tolerations")
    if tolerations:
        spec["tolerations"] = list(tolerations)
    return [
        {
            "apiVersion": "monitoring.coreos.com/v1",
            "kind": "Alertmanager",
            "metadata": _metadata(NAME),
            "spec": spec,
        }
    ]


def config_secret(ctx: RenderContext) -> list[Manifest]:
    """Secret holding the rendered alertmanager.yaml."""
    rendered = yaml.safe_dump(
        alertmanager_config(ctx), sort_keys=False, default_flow_style=False
    )
    return [
        {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": _metadata(),
            "stringData": {"alertmanager.yaml": rendered},
        }
    ]


def role_binding(ctx: RenderContext) -> list[Manifest]:
    """Binds the Alertmanager role to its service account."""
    return [
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "RoleBinding",
            "metadata": _metadata(),
            "subjects": [
                {"kind": "ServiceAccount", "name": RESOURCE_NAME, "namespace": NAMESPACE}
            ],
            "roleRef": {
                "kind": "Role",
                "apiGroup": "rbac.authorization.k8s.io",
                "name": RESOURCE_NAME,
            },
        }
    ]


def service(ctx: RenderContext) -> list[Manifest]:
    """Service exposing the Alertmanager web and reloader ports."""
    return [
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": _metadata(),
            "spec": {
                "ports": [
                    {"name": "web", "port": 9093, "targetPort": "web"},
                    {"name": "reloader-web", "port": 8080, "targetPort": "reloader-web"},
                ],
                "selector": {"app.kubernetes.io/name": "alertmanager"},
            },
        }
    ]


def service_account(ctx: RenderContext) -> list[Manifest]:
    """Service account used by the Alertmanager pods."""
    return [
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": _metadata(),
            "automountServiceAccountToken": False,
        }
    ]


def service_monitor(ctx: RenderContext) -> list[Manifest]:
    """ServiceMonitor scraping Alertmanager and its config reloader."""

    def endpoint(port: str) -> dict[str, Any]:
        result: dict[str, Any] = {"port": port, "interval": "60s"}
        relabelings = drop_metrics_relabeling(ctx)
        if relabelings is not None:
            result["metricRelabelings"] = relabelings
        return result

    return [
        {
            "apiVersion": "monitoring.coreos.com/v1",
            "kind": "ServiceMonitor",
            "metadata": _metadata(
                annotations={"argocd.argoproj.io/sync-options": "Replace=true"}
            ),
            "spec": {
                "endpoints": [endpoint("web"), endpoint("reloader-web")],
                "selector": {"matchLabels": _labels()},
            },
        }
    ]


_render_all = composite_render_func(
    alertmanager,
    config_secret,
    role_binding,
    service,
    service_account,
    service_monitor,
)


def objects(ctx: RenderContext) -> list[Manifest]:
    """Render every Alertmanager object."""
    return _render_all(ctx)