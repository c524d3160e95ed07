[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "o11y-installer"
version = "0.1.0"
description = "Build the Kubernetes manifests for a cluster monitoring stack as plain Python data"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = [
    "kubernetes",
    "monitoring",
    "observability",
    "prometheus",
    "alertmanager",
    "manifests",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["o11y_installer"]

[tool.pytest.ini_options]
addopts = "-ra"
