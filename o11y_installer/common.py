"""Shared helpers for building, parsing and ordering Kubernetes manifests."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

Manifest = dict[str, Any]
RenderFunc = Callable[["RenderContext"], list[Manifest]]

TYPE_META_CONFIGMAP: Mapping[str, str] = {"apiVersion": "v1", "kind": "ConfigMap"}
TYPE_META_BATCH_JOB: Mapping[str, str] = {"apiVersion": "batch/v1", "kind": "Job"}
TYPE_META_NETWORK_POLICY: Mapping[str, str] = {
    "apiVersion": "networking.k8s.io/v1",
    "kind": "NetworkPolicy",
}
DEPLOYMENT_TYPE: Mapping[str, str] = {"apiVersion": "apps/v1", "kind": "Deployment"}
SERVICE_TYPE: Mapping[str, str] = {"apiVersion": "v1", "kind": "Service"}

# Kinds earlier in the list are installed before those later in the list.
SORT_ORDER: tuple[str, ...] = (
    "Namespace",
    "NetworkPolicy",
    "ResourceQuota",
    "Issuer",
    "Certificate",
    "LimitRange",
    "PodSecurityPolicy",
    "PodDisruptionBudget",
    "ServiceAccount",
    "Secret",
    "SecretList",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "CustomResourceDefinition",
    "ClusterRole",
    "ClusterRoleList",
    "ClusterRoleBinding",
    "ClusterRoleBindingList",
    "Role",
    "RoleList",
    "RoleBinding",
    "RoleBindingList",
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicationController",
    "ReplicaSet",
    "StatefulSet",
    "Deployment",
    "HorizontalPodAutoscaler",
    "Job",
    "CronJob",
    "Ingress",
    "APIService",
    "Prometheus",
    "Alertmanager",
    "ServiceMonitor",
    "PodMonitor",
    "PrometheusRule",
)
_SORT_RANK = {kind: rank for rank, kind in enumerate(SORT_ORDER)}

_DOCUMENT_SEPARATOR = re.compile(r"(?:^|\n)---")


@dataclass
class RenderContext:
    """Configuration and target namespace handed to every render function."""

    config: Mapping[str, Any] = field(default_factory=dict)
    namespace: str = ""

    def setting(self, *keys: str, default: Any = None) -> Any:
        """Look up a nested configuration value, or return ``default`` if absent."""
        value: Any = self.config
        for key in keys:
            if not isinstance(value, Mapping) or key not in value:
                return default
            value = value[key]
        return value


@dataclass
class RuntimeObject:
    """A single parsed manifest together with its original YAML text."""

    api_version: str = ""
    kind: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""


def labels(name: str, component: str, app: str, version: str) -> dict[str, str]:
    """Standard recommended Kubernetes labels."""
    return {
        "app.kubernetes.io/component": component,
        "app.kubernetes.io/name": name,
        "app.kubernetes.io/part-of": app,
        "app.kubernetes.io/version": version,
    }


def drop_metrics_relabeling(ctx: RenderContext) -> list[dict[str, Any]] | None:
    """Relabel config dropping the configured metrics, or None if none are set."""
    metrics = ctx.setting("prometheus", "metricsToDrop")
    if metrics is None:
        return None
    return [
        {
            "sourceLabels": ["__name__"],
            "regex": "|".join(metrics),
            "action": "drop",
        }
    ]


def dependency_sort(objects: Iterable[RuntimeObject]) -> list[RuntimeObject]:
    """Order objects so that dependencies are installed first, then by name."""
    return sorted(objects, key=lambda obj: (_SORT_RANK.get(obj.kind, 0), obj.name))


def yaml_to_runtime_objects(documents: Iterable[str]) -> list[RuntimeObject]:
    """Split multi-document YAML strings into runtime objects, skipping empty ones."""
    result: list[RuntimeObject] = []
    for document in documents:
        for part in _DOCUMENT_SEPARATOR.split(document):
            parsed = yaml.safe_load(part)
            if parsed is not None and not isinstance(parsed, Mapping):
                raise ValueError(f"manifest is not a mapping: {part!r}")
            content = part.strip("\n")
            if not content.strip():
                continue
            parsed = parsed or {}
            result.append(
                RuntimeObject(
                    api_version=parsed.get("apiVersion") or "",
                    kind=parsed.get("kind") or "",
                    metadata=dict(parsed.get("metadata") or {}),
                    content=content,
                )
            )
    return result


def composite_render_func(*funcs: RenderFunc) -> RenderFunc:
    """Combine render functions into one that concatenates their output."""

    def render(ctx: RenderContext) -> list[Manifest]:
        rendered: list[Manifest] = []
        for func in funcs:
            rendered.extend(func(ctx))
        return rendered

    return render


_ALNUM = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]*)"
_PATH_COMPONENT = rf"{_ALNUM}(?:{_SEPARATOR}{_ALNUM})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_REFERENCE = re.compile(rf"({_NAME})(?::({_TAG}))?(?:@({_DIGEST}))?", re.ASCII)
_NAME_MAX_LENGTH = 255


def _is_canonical(name: str) -> bool:
    domain, slash, remainder = name.partition("/")
    if not slash:
        return False
    if "." not in domain and ":" not in domain and domain != "localhost":
        return False
    if domain == "index.docker.io":
        return False
    if domain == "docker.io" and "/" not in remainder:
        return False
    return True


def image_name(image_url: str, tag: str) -> str:
    """Join an image URL and tag, checking that the result is a canonical tagged reference."""
    ref = f"{image_url}:{tag}"
    match = _REFERENCE.fullmatch(ref)
    if match is None:
        raise ValueError(f"cannot parse image ref {ref}: invalid reference format")
    name, ref_tag, _digest = match.groups()
    if len(name) > _NAME_MAX_LENGTH:
        raise ValueError(
            f"cannot parse image ref {ref}: repository name must not be more than "
            f"{_NAME_MAX_LENGTH} characters"
        )
    if not _is_canonical(name):
        raise ValueError(
            f"cannot parse image ref {ref}: repository name must be canonical"
        )
    if ref_tag is None:
        raise ValueError(f"image ref {ref} has no tag")
    return ref


def deployment_strategy(max_surge: int, max_unavailable: int) -> dict[str, Any]:
    """A rolling-update deployment strategy."""
    return {
        "type": "RollingUpdate",
        "rollingUpdate": {
            "maxSurge": max_surge,
            "maxUnavailable": max_unavailable,
        },
    }