"""Docker Compose generation for generated projects.

``sargen gen:db --docker`` adds a MySQL or PostgreSQL service to
``docker/docker-compose.yml`` and ``sargen gen:middleware monitor`` adds the
Grafana / Prometheus / Loki stack next to it.  The compose file is built as
plain data and dumped with PyYAML; services already present in an existing
file are kept.  ``sargen gen:util redis --docker`` gets its own standalone
compose file.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from sargen.utils import print_success

from .structure import DirEntry, FileEntry, StructureError

COMPOSE_PATH = "docker/docker-compose.yml"
MONITORING_DIR = "docker/services/monitoring"
NETWORK_NAME = "sargen-network"
DATABASE_NAME = "database_development"

# Adapter -> (service name, port, user)
_ADAPTER_SERVICES: dict[str, tuple[str, int, str]] = {
    "mysql": ("mysql", 3306, "mysql_user"),
    "postgres": ("postgres", 5432, "postgres_user"),
}


@dataclass(frozen=True)
class DatabaseCredentials:
    """Credentials baked into the compose service and ``config.json``."""

    username: str
    password: str
    database: str = DATABASE_NAME
    root_password: str = ""


def generate_credentials(adapter: str) -> DatabaseCredentials:
    """Random passwords for a fresh database container."""
    _service, _port, user = _ADAPTER_SERVICES[adapter]
    return DatabaseCredentials(
        username=user,
        password=secrets.token_urlsafe(16),
        root_password=secrets.token_urlsafe(16),
    )


class DockerGenerator:
    """Writes database services into the project's Docker Compose file."""

    def __init__(self, project_path: str | Path) -> None:
        self.project_path = Path(project_path)

    @property
    def compose_file(self) -> Path:
        return self.project_path / COMPOSE_PATH

    def database_service(self, adapter: str, credentials: DatabaseCredentials) -> dict[str, Any]:
        """Compose service definition for *adapter*."""
        service, port, _user = _ADAPTER_SERVICES[adapter]
        container = f"{self.project_path.resolve().name}-{service}"

        if adapter == "mysql":
            return {
                "image": "mysql:8.0",
                "container_name": container,
                "restart": "unless-stopped",
                "environment": {
                    "MYSQL_ROOT_PASSWORD": credentials.root_password,
                    "MYSQL_DATABASE": credentials.database,
                    "MYSQL_USER": credentials.username,
                    "MYSQL_PASSWORD": credentials.password,
                },
                "ports": [f"{port}:{port}"],
                "volumes": ["./data/mysql:/var/lib/mysql"],
                "networks": [NETWORK_NAME],
                "healthcheck": {
                    "test": ["CMD", "mysqladmin", "ping", "-h", "localhost"],
                    "timeout": "20s",
                    "retries": 10,
                },
            }
        return {
            "image": "postgres:latest",
            "container_name": container,
            "restart": "unless-stopped",
            "environment": {
                "POSTGRES_DB": credentials.database,
                "POSTGRES_USER": credentials.username,
                "POSTGRES_PASSWORD": credentials.password,
            },
            "ports": [f"{port}:{port}"],
            "volumes": ["./data/postgres:/var/lib/postgresql/data"],
            "networks": [NETWORK_NAME],
            "healthcheck": {
                "test": [
                    "CMD-SHELL",
                    f"pg_isready -U {credentials.username} -d {credentials.database}",
                ],
                "interval": "10s",
                "timeout": "5s",
                "retries": 5,
            },
        }

    def load_compose(self) -> dict[str, Any]:
        """Return the existing compose data, or an empty mapping."""
        if not self.compose_file.is_file():
            return {}
        try:
            data = yaml.safe_load(self.compose_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StructureError(
                f"Invalid Docker Compose file at {self.compose_file}: {exc}", COMPOSE_PATH
            ) from exc
        return data or {}

    def add_database_service(
        self, adapter: str, credentials: DatabaseCredentials | None = None
    ) -> DatabaseCredentials:
        """Add (or replace) the database service for *adapter*.

        Args:
            adapter: ``mysql`` or ``postgres``.
            credentials: Explicit credentials; random ones are generated when
                omitted.

        Returns:
            The credentials written into the service.
        """
        if adapter not in _ADAPTER_SERVICES:
            raise ValueError(f"Unsupported database adapter for Docker: {adapter}")
        credentials = credentials or generate_credentials(adapter)

        self.merge_services(
            {_ADAPTER_SERVICES[adapter][0]: self.database_service(adapter, credentials)}
        )
        print_success(f"{adapter} service added to {COMPOSE_PATH}")
        return credentials

    def monitoring_services(self) -> dict[str, dict[str, Any]]:
        """Grafana, Prometheus and Loki services reading ``MONITORING_DIR`` configs."""
        prefix = self.project_path.resolve().name
        config = "./services/monitoring"
        return {
            "grafana": {
                "image": "grafana/grafana-oss:latest",
                "container_name": f"{prefix}-grafana",
                "restart": "unless-stopped",
                "ports": ["3000:3000"],
                "environment": {
                    "GF_AUTH_ANONYMOUS_ENABLED": "true",
                    "GF_AUTH_ANONYMOUS_ORG_ROLE": "Admin",
                    "GF_PATHS_PROVISIONING": "/etc/grafana/provisioning",
                },
                "volumes": [
                    "./data/grafana:/var/lib/grafana",
                    f"{config}/grafana/grafana.ini:/etc/grafana/grafana.ini",
                    f"{config}/grafana/datasources.yml:"
                    "/etc/grafana/provisioning/datasources/datasources.yml",
                ],
                "networks": [NETWORK_NAME],
            },
            "prometheus": {
                "image": "prom/prometheus:latest",
                "container_name": f"{prefix}-prometheus",
                "restart": "unless-stopped",
                "ports": ["9090:9090"],
                "volumes": [
                    "./data/prometheus:/prometheus",
                    f"{config}/prometheus/prometheus.yml:/etc/prometheus/prometheus.yml",
                ],
                "extra_hosts": ["host.docker.internal:host-gateway"],
                "networks": [NETWORK_NAME],
            },
            "loki": {
                "image": "grafana/loki:latest",
                "container_name": f"{prefix}-loki",
                "restart": "unless-stopped",
                # the monitor middleware ships logs to localhost:3100 by default
                "ports": ["3100:3100"],
                "volumes": [
                    "./data/loki:/loki",
                    f"{config}/loki/loki-config.yml:/etc/loki/local-config.yaml",
                ],
                "command": "-config.file=/etc/loki/local-config.yaml",
                "networks": [NETWORK_NAME],
            },
        }

    def add_monitoring_services(self) -> list[str]:
        """Add (or replace) the monitoring stack services.

        Returns:
            The service names written.
        """
        services = self.monitoring_services()
        self.merge_services(services)
        print_success(f"Monitoring services added to {COMPOSE_PATH}")
        return list(services)

    def merge_services(self, services: dict[str, dict[str, Any]]) -> dict[str, Any]:
        """Merge *services* into the compose file and write it back.

        Raises:
            StructureError: If the existing file is invalid or cannot be written.
        """
        compose = self.load_compose()
        compose.setdefault("services", {})
        compose["services"].update(services)
        compose.setdefault("networks", {})
        compose["networks"][NETWORK_NAME] = {"driver": "bridge"}

        try:
            for sub in ("docker/services", "docker/data"):
                (self.project_path / sub).mkdir(parents=True, exist_ok=True)
            self.compose_file.write_text(dump_compose(compose), encoding="utf-8")
        except OSError as exc:
            raise StructureError(
                f"Failed writing {COMPOSE_PATH}: {exc}", COMPOSE_PATH
            ) from exc
        return compose


def dump_compose(compose: dict[str, Any]) -> str:
    return yaml.safe_dump(compose, sort_keys=False, default_flow_style=False, indent=2)


def plan_monitoring_files(project_name: str, app_port: int = 8000) -> list[DirEntry | FileEntry]:
    """Config files mounted by :meth:`DockerGenerator.monitoring_services`."""
    return [
        DirEntry(paths=[f"{MONITORING_DIR}/{name}" for name in ("grafana", "prometheus", "loki")]),
        FileEntry(
            path=f"{MONITORING_DIR}/grafana/datasources.yml",
            template_ref="docker/monitoring/datasources.yml.j2",
        ),
        FileEntry(
            path=f"{MONITORING_DIR}/grafana/grafana.ini",
            template_ref="docker/monitoring/grafana.ini.j2",
            template_data={"secret_key": secrets.token_urlsafe(24)},
        ),
        FileEntry(
            path=f"{MONITORING_DIR}/prometheus/prometheus.yml",
            template_ref="docker/monitoring/prometheus.yml.j2",
            template_data={"project_name": project_name, "app_port": app_port},
        ),
        FileEntry(
            path=f"{MONITORING_DIR}/loki/loki-config.yml",
            template_ref="docker/monitoring/loki-config.yml.j2",
        ),
    ]


def redis_compose(project_name: str) -> dict[str, Any]:
    """Standalone compose file for ``gen:util redis --docker``."""
    return {
        "services": {
            "redis": {
                "image": "redis:7-alpine",
                "container_name": f"{project_name}-redis",
                "restart": "unless-stopped",
                "ports": ["6379:6379"],
                "volumes": ["redis_data:/data"],
                "command": "redis-server --appendonly yes",
                "healthcheck": {
                    "test": ["CMD", "redis-cli", "ping"],
                    "interval": "10s",
                    "timeout": "5s",
                    "retries": 5,
                },
            }
        },
        "volumes": {"redis_data": {"driver": "local"}},
    }
