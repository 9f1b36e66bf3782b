"""Kubernetes manifests for releases on single-node k3s."""

from __future__ import annotations

import base64
import secrets
from typing import Any

import yaml

from burrow.core.types import ProcessConfig, ServiceConfig, Settings, resolve
from burrow.kubernetes.resources import DEFAULT_APP_SIZE, WorkloadClass, priority_class_for, profile


NAMESPACE = "default"
MANAGED_BY = "burrow"
DATA_ROOT = "/mnt/data"
CLOUDFLARED_IMAGE = "cloudflare/cloudflared:latest"

Manifest = dict[str, Any]


def app_secret_name(prefix: str) -> str:
    return f"{prefix}-app-secret"


def postgres_secret_name(prefix: str) -> str:
    return f"{prefix}-postgres-secret"


def to_yaml(manifests: list[Manifest]) -> str:
    """Join manifests as a multi-document YAML stream."""
    return "\n---\n".join(yaml.safe_dump(m, sort_keys=False) for m in manifests)


class K3sGenerator:
    """Builds every manifest a release applies.

    Args:
        settings: Databases, services, app processes and env.
        prefix: Object name prefix (``release_prefix(app, env)``).
        zone: Domain that process subdomains live under.
        target: Deployment target for target-keyed settings.
        db_password: Postgres password. Generated when not given.
        registry_tag: Image to run app processes from. App manifests are
            skipped without one.
        tunnel_token: Token for an in-cluster cloudflared deployment.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        prefix: str,
        zone: str | None,
        target: str,
        db_password: str | None = None,
        registry_tag: str | None = None,
        tunnel_token: str | None = None,
    ):
        self.settings = settings
        self.prefix = prefix
        self.zone = zone
        self.target = target
        self.db_password = db_password or secrets.token_hex(16)
        self.registry_tag = registry_tag
        self.tunnel_token = tunnel_token

    def generate(self) -> str:
        return to_yaml(self.manifests())

    def manifests(self) -> list[Manifest]:
        manifests = [self.app_secret()]
        manifests.extend(self.database_manifests())
        manifests.extend(self.service_manifests())
        if self.settings.app.processes and self.registry_tag:
            for name, process in self.settings.app.processes.items():
                manifests.extend(self.process_manifests(name, process))
        if self.tunnel_token:
            manifests.append(self.tunnel_manifest())
        return manifests

    def hostname(self, subdomain: str) -> str:
        return f"{subdomain}.{self.zone}"

    def app_secret(self) -> Manifest:
        data = self.settings.env_for(self.target)
        if self.settings.database("postgres"):
            host = f"{self.prefix}-postgres"
            data.update(
                DATABASE_URL=f"postgresql://app:{self.db_password}@{host}:5432/app",
                POSTGRES_HOST=host,
                POSTGRES_USER="app",
                POSTGRES_PASSWORD=self.db_password,
                POSTGRES_DB="app",
                POSTGRES_PORT="5432",
            )
        if self.settings.database("redis") and "redis" not in self.settings.services:
            data["REDIS_URL"] = f"redis://{self.prefix}-redis:6379"
        for name, config in self.settings.services.items():
            port = config.port_for(name)
            if not port:
                continue
            protocol = "redis" if name == "redis" else "http"
            data[f"{name.upper()}_URL"] = f"{protocol}://{self.prefix}-{name}:{port}"
        return secret(app_secret_name(self.prefix), data)

    def database_manifests(self) -> list[Manifest]:
        manifests: list[Manifest] = []
        for db_type, config in self.settings.databases.items():
            image = config.image_for(db_type)
            if db_type == "postgres":
                manifests.extend(self._postgres(image))
            elif db_type == "redis":
                manifests.extend(self._redis(image))
        return manifests

    def _postgres(self, image: str | None) -> list[Manifest]:
        name = f"{self.prefix}-postgres"
        secret_name = postgres_secret_name(self.prefix)
        container = {
            "name": "postgres",
            "image": image,
            "ports": [{"containerPort": 5432}],
            "env": [
                {"name": "POSTGRES_USER", "value": "app"},
                {"name": "POSTGRES_DB", "value": "app"},
                {
                    "name": "POSTGRES_PASSWORD",
                    "valueFrom": {"secretKeyRef": {"name": secret_name, "key": "DB_PASSWORD"}},
                },
                {"name": "PGDATA", "value": "/var/lib/postgresql/data/pgdata"},
            ],
            "volumeMounts": [{"name": "data", "mountPath": "/var/lib/postgresql/data"}],
            "readinessProbe": {
                "exec": {"command": ["pg_isready", "-U", "app"]},
                "initialDelaySeconds": 5,
                "periodSeconds": 5,
            },
        }
        return [
            secret(secret_name, {"DB_PASSWORD": self.db_password}),
            self.deployment(
                name,
                [container],
                volumes=[host_path_volume("data", f"{DATA_ROOT}/{name}")],
                workload_class="database",
            ),
            self.service(name, 5432),
        ]

    def _redis(self, image: str | None) -> list[Manifest]:
        name = f"{self.prefix}-redis"
        container = {
            "name": "redis",
            "image": image,
            "ports": [{"containerPort": 6379}],
            "volumeMounts": [{"name": "data", "mountPath": "/data"}],
        }
        return [
            self.deployment(
                name,
                [container],
                volumes=[host_path_volume("data", f"{DATA_ROOT}/{name}")],
                workload_class="database",
            ),
            self.service(name, 6379),
        ]

    def service_manifests(self) -> list[Manifest]:
        manifests: list[Manifest] = []
        for name, config in self.settings.services.items():
            if name == "redis" and self.settings.database("redis"):
                continue
            manifests.extend(self._service_manifests(name, config))
        return manifests

    def _service_manifests(self, name: str, config: ServiceConfig) -> list[Manifest]:
        deployment_name = f"{self.prefix}-{name}"
        secret_name = f"{deployment_name}-secret"
        port = config.port_for(name)
        manifests: list[Manifest] = []

        container: dict[str, Any] = {"name": name, "image": config.image_for(name)}
        if port:
            container["ports"] = [{"containerPort": port}]
        if config.env:
            manifests.append(secret(secret_name, dict(config.env)))
            container["envFrom"] = [{"secretRef": {"name": secret_name}}]

        manifests.append(self.deployment(deployment_name, [container], workload_class="platform"))
        if port:
            manifests.append(self.service(deployment_name, port))
            subdomain = resolve(config.subdomain, self.target)
            if subdomain and self.zone:
                manifests.append(self.ingress(deployment_name, self.hostname(subdomain), port))
        return manifests

    def process_manifests(self, name: str, process: ProcessConfig) -> list[Manifest]:
        deployment_name = f"{self.prefix}-{name}"
        replicas = resolve(process.replicas, self.target) or 1
        subdomain = resolve(process.subdomain, self.target)
        manifests: list[Manifest] = []

        container: dict[str, Any] = {
            "name": name,
            "image": self.registry_tag,
            "envFrom": [{"secretRef": {"name": app_secret_name(self.prefix)}}],
        }
        if process.command:
            container["command"] = ["/bin/sh", "-c", process.command]
        if process.port:
            container["ports"] = [{"containerPort": process.port}]
            http_get: dict[str, Any] = {"path": "/", "port": process.port}
            if subdomain and self.zone:
                http_get["httpHeaders"] = [{"name": "Host", "value": self.hostname(subdomain)}]
            container["readinessProbe"] = {
                "httpGet": http_get,
                "initialDelaySeconds": 10,
                "periodSeconds": 10,
            }

        manifests.append(self.deployment(deployment_name, [container], replicas=replicas))
        if process.port:
            manifests.append(self.service(deployment_name, process.port))
            if subdomain and self.zone:
                manifests.append(
                    self.ingress(deployment_name, self.hostname(subdomain), process.port)
                )
        return manifests

    def tunnel_manifest(self) -> Manifest:
        container = {
            "name": "cloudflared",
            "image": CLOUDFLARED_IMAGE,
            "args": ["tunnel", "--no-autoupdate", "run", "--token", self.tunnel_token],
        }
        return self.deployment(
            f"{self.prefix}-cloudflared",
            [container],
            host_network=True,
            workload_class="platform",
        )

    def labels(self, name: str) -> dict[str, str]:
        return {
            "app.kubernetes.io/name": name,
            "app.kubernetes.io/instance": self.prefix,
            "app.kubernetes.io/managed-by": MANAGED_BY,
        }

    def deployment(
        self,
        name: str,
        containers: list[dict[str, Any]],
        *,
        volumes: list[dict[str, Any]] | None = None,
        replicas: int = 1,
        host_network: bool = False,
        workload_class: WorkloadClass = "app",
    ) -> Manifest:
        size = DEFAULT_APP_SIZE if workload_class == "app" else workload_class
        for container in containers:
            container.setdefault("resources", profile(size))
        pod_spec: dict[str, Any] = {
            "priorityClassName": priority_class_for(workload_class),
            "containers": containers,
        }
        if volumes:
            pod_spec["volumes"] = volumes
        if host_network:
            pod_spec["hostNetwork"] = True
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": name, "namespace": NAMESPACE, "labels": self.labels(name)},
            "spec": {
                "replicas": replicas,
                "selector": {"matchLabels": {"app.kubernetes.io/name": name}},
                "template": {"metadata": {"labels": self.labels(name)}, "spec": pod_spec},
            },
        }

    def service(self, name: str, port: int) -> Manifest:
        return {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": name, "namespace": NAMESPACE, "labels": self.labels(name)},
            "spec": {
                "selector": {"app.kubernetes.io/name": name},
                "ports": [{"port": port, "targetPort": port}],
            },
        }

    def ingress(self, name: str, hostname: str, port: int) -> Manifest:
        return {
            "apiVersion": "networking.k8s.io/v1",
            "kind": "Ingress",
            "metadata": {
                "name": name,
                "namespace": NAMESPACE,
                "annotations": {"nginx.ingress.kubernetes.io/proxy-body-size": "50m"},
            },
            "spec": {
                "ingressClassName": "nginx",
                "rules": [
                    {
                        "host": hostname,
                        "http": {
                            "paths": [
                                {
                                    "path": "/",
                                    "pathType": "Prefix",
                                    "backend": {
                                        "service": {"name": name, "port": {"number": port}}
                                    },
                                }
                            ]
                        },
                    }
                ],
            },
        }


def secret(name: str, data: dict[str, str]) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": name, "namespace": NAMESPACE},
        "type": "Opaque",
        "data": {k: base64.b64encode(str(v).encode()).decode() for k, v in data.items()},
    }


def host_path_volume(name: str, path: str) -> dict[str, Any]:
    return {"name": name, "hostPath": {"path": path, "type": "DirectoryOrCreate"}}
