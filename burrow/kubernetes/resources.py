"""Priority classes and container resource profiles for k3s nodes.

Databases get the highest priority so the kubelet evicts app pods first
under memory pressure. Containers request CPU for scheduling weight and
cap memory only.
"""

from copy import deepcopy
from typing import Any, Literal

import yaml


WorkloadClass = Literal["database", "platform", "app"]

PRIORITIES: dict[WorkloadClass, int] = {
    "database": 1_000_000_000,
    "platform": 100_000,
    "app": 1_000,
}

PRIORITY_CLASS_NAMES: dict[WorkloadClass, str] = {
    "database": "database-critical",
    "platform": "platform",
    "app": "app",
}

PROFILES: dict[str, dict[str, dict[str, str]]] = {
    "database": {"requests": {"memory": "512Mi", "cpu": "250m"}, "limits": {"memory": "1536Mi"}},
    "platform": {"requests": {"memory": "64Mi", "cpu": "50m"}, "limits": {"memory": "256Mi"}},
    "small": {"requests": {"memory": "256Mi", "cpu": "100m"}, "limits": {"memory": "512Mi"}},
    "medium": {"requests": {"memory": "256Mi", "cpu": "200m"}, "limits": {"memory": "512Mi"}},
    "large": {"requests": {"memory": "512Mi", "cpu": "300m"}, "limits": {"memory": "1Gi"}},
}
DEFAULT_APP_SIZE = "small"

_DESCRIPTIONS: dict[WorkloadClass, str] = {
    "database": "Database workloads - never evict",
    "platform": "Platform services - evict after apps",
    "app": "Application workloads - evict first",
}


def profile(size: str) -> dict[str, dict[str, str]]:
    """Resource requests/limits for a profile, defaulting to the small app size."""
    return deepcopy(PROFILES.get(size, PROFILES[DEFAULT_APP_SIZE]))


def priority_class_for(kind: WorkloadClass) -> str:
    return PRIORITY_CLASS_NAMES.get(kind, PRIORITY_CLASS_NAMES["app"])


def priority_class_manifests() -> list[dict[str, Any]]:
    manifests = []
    for kind, value in PRIORITIES.items():
        manifest: dict[str, Any] = {
            "apiVersion": "scheduling.k8s.io/v1",
            "kind": "PriorityClass",
            "metadata": {"name": PRIORITY_CLASS_NAMES[kind]},
            "value": value,
            "globalDefault": kind == "app",
            "description": _DESCRIPTIONS[kind],
        }
        manifests.append(manifest)
    return manifests


def priority_class_yaml() -> str:
    return "\n---\n".join(yaml.safe_dump(m, sort_keys=False) for m in priority_class_manifests())
