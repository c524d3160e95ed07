"""Build Kubernetes manifests for cluster monitoring components."""

__version__ = "0.1.0"