"""kube-state-metrics deployment, its RBAC and its scrape configuration."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from o11y_installer.common import (
    DEPLOYMENT_TYPE,
    Manifest,
    RenderContext,
    composite_render_func,
    drop_metrics_relabeling,
    labels,
)

NAME = "kube-state-metrics"
APP = "kube-prometheus"
VERSION = "2.5.0"
NAMESPACE = "monitoring-satellite"
COMPONENT = "exporter"
IMAGE_URL = "k8s.gcr.io/kube-state-metrics/kube-state-metrics"
RBAC_PROXY_URL = "quay.io/brancz/kube-rbac-proxy"
RBAC_PROXY_VERSION = "0.13.0"

BEARER_TOKEN_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"

_TLS_CIPHER_SUITES = ",".join(
    (
        "TLS_ECDHE_RSA_WITH_AES_128_GCM_SHA256",
        "TLS_ECDHE_ECDSA_WITH_AES_128_GCM_SHA256",
        "TLS_ECDHE_RSA_WITH_AES_256_GCM_SHA384",
        "TLS_ECDHE_ECDSA_WITH_AES_256_GCM_SHA384",
        "TLS_ECDHE_RSA_WITH_CHACHA20_POLY1305",
        "TLS_ECDHE_ECDSA_WITH_CHACHA20_POLY1305",
    )
)

_LIST_WATCH = ("list", "watch")

# Label renames applied to the main metrics endpoint: (source, target).
LABEL_REPLACEMENTS: tuple[tuple[str, str], ...] = (
    ("label_cloud_google_com_gke_nodepool", "nodepool"),
    ("label_topology_kubernetes_io_region", "region"),
    ("label_component", "component"),
    ("label_workspace_type", "workspace_type"),
    ("label_owner", "owner"),
    ("label_meta_id", "metaID"),
)


def _labels() -> dict[str, str]:
    return labels(NAME, COMPONENT, APP, VERSION)


def _rule(
    api_groups: Iterable[str],
    resources: Iterable[str],
    verbs: Iterable[str] = _LIST_WATCH,
    resource_names: Iterable[str] | None = None,
) -> dict[str, Any]:
    rule: dict[str, Any] = {
        "apiGroups": list(api_groups),
        "resources": list(resources),
        "verbs": list(verbs),
    }
    if resource_names is not None:
        rule["resourceNames"] = list(resource_names)
    return rule


def cluster_role(ctx: RenderContext) -> list[Manifest]:
    """ClusterRole granting read access to the objects kube-state-metrics reports on."""
    rules = [
        _rule(
            [""],
            [
                "configmaps",
                "secrets",
                "nodes",
                "pods",
                "services",
                "serviceaccounts",
                "resourcequotas",
                "replicationcontrollers",
                "limitranges",
                "persistentvolumeclaims",
                "persistentvolumes",
                "namespaces",
                "endpoints",
            ],
        ),
        _rule(["apps"], ["statefulsets", "daemonsets", "deployments", "replicasets"]),
        _rule(["batch"], ["jobs", "cronjobs"]),
        _rule(["autoscaling"], ["horizontalpodautoscalers"]),
        _rule(["policy"], ["poddisruptionbudgets"]),
        _rule(["certificates.k8s.io"], ["certificatesigningrequests"]),
        _rule(["storage.k8s.io"], ["storageclasses", "volumeattachments"]),
        _rule(
            ["admissionregistration.k8s.io"],
            ["mutatingwebhookconfigurations", "validatingwebhookconfigurations"],
        ),
        _rule(["networking.k8s.io"], ["networkpolicies", "ingresses"]),
        _rule(["coordination.k8s.io"], ["leases"]),
        _rule(["rbac.authorization.k8s.io"], ["clusterroles", "roles"]),
        _rule(["authentication.k8s.io"], ["tokenreviews"], ["create"]),
        _rule(["authorization.k8s.io"], ["subjectaccessreviews"], ["create"]),
        _rule(["policy"], ["podsecuritypolicies"], ["use"], [NAME]),
    ]
    return [
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": {"name": NAME, "labels": _labels()},
            "rules": rules,
        }
    ]


def cluster_role_binding(ctx: RenderContext) -> list[Manifest]:
    """Binds the kube-state-metrics ClusterRole to its service account."""
    return [
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": NAME, "labels": _labels()},
            "subjects": [{"kind": "ServiceAccount", "name": NAME, "namespace": NAMESPACE}],
            "roleRef": {
                "kind": "ClusterRole",
                "apiGroup": "rbac.authorization.k8s.io",
                "name": NAME,
            },
        }
    ]


def rbac_proxy_container(port_name: str, port_number: int, listen_port: int) -> dict[str, Any]:
    """A kube-rbac-proxy sidecar guarding a local port behind TLS."""
    return {
        "name": f"kube-rbac-proxy-{port_name}",
        "image": f"{RBAC_PROXY_URL}:v{RBAC_PROXY_VERSION}",
        "args": [
            "--logtostderr",
            f"--secure-listen-address=:{listen_port}",
            f"--tls-cipher-suites={_TLS_CIPHER_SUITES}",
            f"--upstream=http://127.0.0.1:{port_number}/",
        ],
        "resources": {
            "requests": {"cpu": "20m", "memory": "20Mi"},
            "limits": {"cpu": "40m", "memory": "40Mi"},
        },
        "ports": [{"containerPort": listen_port, "name": f"https-{port_name}"}],
        "securityContext": {
            "allowPrivilegeEscalation": False,
            "capabilities": {"drop": ["ALL"]},
            "readOnlyRootFilesystem": True,
            "runAsUser": 65532,
            "runAsGroup": 65532,
            "runAsNonRoot": True,
        },
    }


def deployment(ctx: RenderContext) -> list[Manifest]:
    """The kube-state-metrics Deployment with its two rbac-proxy sidecars."""
    pod_spec: dict[str, Any] = {
        "serviceAccountName": NAME,
        "automountServiceAccountToken": True,
    }
    node_selector = ctx.setting("nodeSelector")
    if node_selector:
        pod_spec["nodeSelector"] = dict(node_selector)
    tolerations = ctx.setting("tolerations")
    if tolerations:
        pod_spec["tolerations"] = list(tolerations)
    pod_spec["containers"] = [
        {
            "name": NAME,
            "image": f"{IMAGE_URL}:v{VERSION}",
            "args": [
                "--host=127.0.0.1",
                "--port=8081",
                "--telemetry-host=127.0.0.1",
                "--telemetry-port=8082",
                "--metric-labels-allowlist=nodes=[cloud.google.com/gke-nodepool,"
                "topology.kubernetes.io/region],pods=[component,workspaceType,owner,metaID]",
            ],
            "resources": {"requests": {"cpu": "10m", "memory": "190Mi"}},
            "securityContext": {
                "allowPrivilegeEscalation": False,
                "capabilities": {"drop": ["ALL"]},
                "readOnlyRootFilesystem": True,
                "runAsUser": 65534,
            },
        },
        rbac_proxy_container("main", 8081, 8443),
        rbac_proxy_container("self", 8082, 9443),
    ]
    return [
        {
            **DEPLOYMENT_TYPE,
            "metadata": {"name": NAME, "namespace": NAMESPACE, "labels": _labels()},
            "spec": {
                "selector": {"matchLabels": _labels()},
                "replicas": 1,
                "template": {
                    "metadata": {
                        "labels": _labels(),
                        "annotations": {
                            "kubectl.kubernetes.io/default-container": NAME,
                        },
                    },
                    "spec": pod_spec,
                },
            },
        }
    ]


def pod_security_policy(ctx: RenderContext) -> list[Manifest]:
    """Restrictive PodSecurityPolicy used by kube-state-metrics."""
    id_ranges = [{"min": 1, "max": 65535}]
    return [
        {
            "apiVersion": "policy/v1beta1",
            "kind": "PodSecurityPolicy",
            "metadata": {"name": NAME, "labels": _labels()},
            "spec": {
                "allowPrivilegeEscalation": False,
                "fsGroup": {"rule": "MustRunAs", "ranges": [dict(r) for r in id_ranges]},
                "requiredDropCapabilities": ["ALL"],
                "runAsUser": {"rule": "RunAsAny"},
                "seLinux": {"rule": "RunAsAny"},
                "supplementalGroups": {
                    "rule": "MustRunAs",
                    "ranges": [dict(r) for r in id_ranges],
                },
                "volumes": [
                    "configMap",
                    "emptyDir",
                    "secret",
                    "projected",
                    "persistentVolumeClaim",
                ],
            },
        }
    ]


def service(ctx: RenderContext) -> list[Manifest]:
    """Service exposing both rbac-proxy ports."""
    return [
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": NAME, "namespace": NAMESPACE, "labels": _labels()},
            "spec": {
                "ports": [
                    {"name": "https-main", "port": 8443, "targetPort": "https-main"},
                    {"name": "https-self", "port": 9443, "targetPort": "https-self"},
                ],
                "selector": _labels(),
            },
        }
    ]


def service_account(ctx: RenderContext) -> list[Manifest]:
    """Service account used by kube-state-metrics."""
    return [
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": {"name": NAME, "namespace": NAMESPACE, "labels": _labels()},
            "automountServiceAccountToken": False,
        }
    ]


def labels_replace_and_drop(replacements: Iterable[tuple[str, str]]) -> list[dict[str, Any]]:
    """For each (source, target) pair, copy the source label to the target and drop the source."""
    configs: list[dict[str, Any]] = []
    for source, target in replacements:
        configs.append(
            {
                "action": "replace",
                "regex": "(.*)",
                "replacement": "$1",
                "sourceLabels": [source],
                "targetLabel": target,
            }
        )
        configs.append({"action": "labeldrop", "regex": source})
    return configs


def service_monitor(ctx: RenderContext) -> list[Manifest]:
    """ServiceMonitor scraping kube-state-metrics through its rbac proxies."""
    metric_relabelings = labels_replace_and_drop(LABEL_REPLACEMENTS)
    metric_relabelings.extend(drop_metrics_relabeling(ctx) or [])
    return [
        {
            "apiVersion": "monitoring.coreos.com/v1",
            "kind": "ServiceMonitor",
            "metadata": {
                "name": NAME,
                "namespace": NAMESPACE,
                "labels": _labels(),
                "annotations": {"argocd.argoproj.io/sync-options": "Replace=true"},
            },
            "spec": {
                "endpoints": [
                    {
                        "bearerTokenFile": BEARER_TOKEN_FILE,
                        "port": "https-main",
                        "interval": "60s",
                        "scrapeTimeout": "30s",
                        "scheme": "https",
                        "honorLabels": True,
                        "tlsConfig": {"insecureSkipVerify": True},
                        "metricRelabelings": metric_relabelings,
                        "relabelings": [
                            {
                                "action": "labeldrop",
                                "regex": "(pod|service|endpoint|namespace)",
                            }
                        ],
                    },
                    {
                        "bearerTokenFile": BEARER_TOKEN_FILE,
                        "port": "https-self",
                        "interval": "60s",
                        "scheme": "https",
                        "tlsConfig": {"insecureSkipVerify": True},
                    },
                ],
                "jobLabel": "app.kubernetes.io/name",
                "selector": {"matchLabels": _labels()},
            },
        }
    ]


_render_all = composite_render_func(
    cluster_role,
    cluster_role_binding,
    deployment,
    pod_security_policy,
    service,
    service_account,
    service_monitor,
)


def objects(ctx: RenderContext) -> list[Manifest]:
    """Render every kube-state-metrics object."""
    return _render_all(ctx)