# o11y-installer

A library for building the Kubernetes manifests of a monitoring stack that
runs beside a single cluster. Every component is a set of render functions.
Each one takes a `RenderContext` and returns the Kubernetes objects as plain
Python dictionaries. You can dump them to YAML and apply them however you like.

## Installation

```
pip install o11y-installer
```

## Components

Each component module has an `objects(ctx)` function:

- `o11y_installer.alertmanager`: the `Alertmanager` custom resource, a
  `Secret` that holds the rendered `alertmanager.yaml`, a RoleBinding, a
  Service, a ServiceAccount and a ServiceMonitor. `objects(ctx)` returns the
  list of objects. `alertmanager_config(ctx)` returns the routing
  configuration as a mapping. It holds a critical receiver (PagerDuty if
  `alerting.pagerDutyRoutingKey` is set, Slack otherwise), a generic Slack
  receiver and a receiver for each entry in `alerting.teamRoutes`.
- `o11y_installer.kubestate_metrics`: the kube-state-metrics Deployment with
  two kube-rbac-proxy sidecars, plus its ClusterRole, ClusterRoleBinding,
  PodSecurityPolicy, Service, ServiceAccount and ServiceMonitor.
  `objects(ctx)` returns the list of objects.
- `o11y_installer.certmanager`: a NetworkPolicy, a Service and a
  ServiceMonitor for an existing cert-manager installation. `objects(ctx)`
  returns a render function. That function produces nothing unless
  `certmanager.installServiceMonitors` is true.
- `o11y_installer.gitpod`: a NetworkPolicy, a Service and a ServiceMonitor
  for each component in `gitpod.TARGETS`. It also covers workspaces, the
  proxy's Caddy metrics and the message bus. `objects(ctx)` returns a render
  function. That function produces nothing unless
  `gitpod.installServiceMonitors` is true.

## Configuration keys

`RenderContext.config` is a mapping. The components read these keys:

| Key | Used for |
| --- | --- |
| `prometheus.metricsToDrop` | list of metric names dropped by every ServiceMonitor |
| `nodeSelector`, `tolerations` | scheduling for Alertmanager and kube-state-metrics |
| `alerting.genericSlackChannel`, `alerting.slackOAuthToken` | Slack receivers |
| `alerting.pagerDutyRoutingKey` | PagerDuty critical receiver |
| `alerting.teamRoutes` | list of `{teamLabel, slackChannel}` entries |
| `certmanager.namespace`, `certmanager.installServiceMonitors` | cert-manager objects |
| `gitpod.installServiceMonitors` | Gitpod component objects |

`RenderContext.setting("alerting", "slackOAuthToken", default="")` looks up
a nested key and returns the default when the key is missing.

## Example

```python
import yaml

from o11y_installer import alertmanager, certmanager, gitpod, kubestate_metrics
from o11y_installer.common import (
    RenderContext,
    composite_render_func,
    dependency_sort,
    yaml_to_runtime_objects,
)

ctx = RenderContext(
    config={
        "alerting": {
            "genericSlackChannel": "#alerts",
            "slackOAuthToken": "token",
        },
        "gitpod": {"installServiceMonitors": True},
    },
    namespace="monitoring-satellite",
)

render = composite_render_func(
    alertmanager.objects,
    kubestate_metrics.objects,
    certmanager.objects(ctx),
    gitpod.objects(ctx),
)
documents = [yaml.safe_dump(m, sort_keys=False) for m in render(ctx)]

for obj in dependency_sort(yaml_to_runtime_objects(documents)):
    print(f"---\n# {obj.api_version}/{obj.kind} {obj.name}\n{obj.content}")
```

## Helpers in `o11y_installer.common`

- `composite_render_func(*funcs)` combines render functions into one. The
  combined function concatenates their output.
- `yaml_to_runtime_objects(documents)` splits multi-document YAML strings
  into `RuntimeObject`s and skips empty documents.
- `dependency_sort(objects)` orders objects by kind, and by name within a
  kind, so that dependencies come first. Namespaces and network policies
  come first, then service accounts and roles, and so on.
- `labels(name, component, app, version)` returns the standard
  `app.kubernetes.io/*` labels.
- `drop_metrics_relabeling(ctx)` returns the relabel config for
  `prometheus.metricsToDrop`.
- `image_name(image_url, tag)` joins an image and a tag. It raises
  `ValueError` if the result is not a canonical, tagged reference.
- `deployment_strategy(max_surge, max_unavailable)` returns a rolling-update
  strategy.

## What this package does not do

- It has no command-line tool and reads no config files. You build the
  `RenderContext` yourself and write the output yourself.
- It does not render node-exporter, Prometheus, the Prometheus operator or
  the OpenTelemetry collector.
- It does not render the Role that the Alertmanager RoleBinding refers to.
- It does not fetch or import manifests from remote repositories.

## Running the tests

```
pip install -e ".[test]"
pytest
```