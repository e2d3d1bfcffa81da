"""Middleware plans for ``sargen gen:middleware``.

Each supported middleware is a member of :class:`MiddlewareName` with one
planning function in ``_PLANNERS``; the table covers the whole enum.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from sargen.config import StructureType, structure_path

from .docker_gen import plan_monitoring_files
from .module_gen import ValidationError
from .structure import DirEntry, FileEntry


class MiddlewareName(str, Enum):
    """Middlewares sargen can generate."""
    AUTH = "auth"
    ACL = "acl"
    MONITOR = "monitor"
    VALIDATOR = "validator"


@dataclass
class MiddlewarePlan:
    """Files, npm packages, package.json scripts and follow-up hints for one middleware."""

    name: MiddlewareName
    entries: list[DirEntry | FileEntry]
    dependencies: list[str] = field(default_factory=list)
    scripts: dict[str, str] = field(default_factory=dict)
    info_messages: list[str] = field(default_factory=list)

    @property
    def file_paths(self) -> list[str]:
        return [entry.path for entry in self.entries if isinstance(entry, FileEntry)]


def _plan_auth(structure: StructureType, project_name: str) -> MiddlewarePlan:
    middlewares = structure_path(structure, "middlewares")
    return MiddlewarePlan(
        name=MiddlewareName.AUTH,
        entries=[
            FileEntry(
                path=f"{middlewares}/authMiddleware.js",
                template_ref="middlewares/auth/authMiddleware.js.j2",
            ),
            FileEntry(
                path=f"{middlewares}/jwtService.js",
                template_ref="middlewares/auth/jwtService.js.j2",
                template_data={"keys_path": structure_path(structure, "config")},
            ),
        ],
        dependencies=["jsonwebtoken", "bcrypt"],
        info_messages=[
            'Add "JWT_PASSPHRASE" and "JWT_EXPIRATION" to .env before running the project',
            'Default passphrase is "jwt_passphrase" and expiration is "24h"',
        ],
    )


def _plan_acl(structure: StructureType, project_name: str) -> MiddlewarePlan:
    middlewares = structure_path(structure, "middlewares")
    config = structure_path(structure, "config")
    return MiddlewarePlan(
        name=MiddlewareName.ACL,
        entries=[
            FileEntry(
                path=f"{middlewares}/aclMiddleware.js",
                template_ref="middlewares/acl/aclMiddleware.js.j2",
                # config/ and middlewares/ are siblings in both structures
                template_data={"acl_json_path": "../config/acl.json"},
            ),
            FileEntry(path=f"{config}/acl.json", template_ref="middlewares/acl/acl.json.j2"),
        ],
        info_messages=[
            f"Edit roles and resources in {config}/acl.json",
            "Usage in routes: router.get('/', aclMiddleware.enforcePermission('users', 'read'), handler)",
        ],
    )


def _plan_monitor(structure: StructureType, project_name: str) -> MiddlewarePlan:
    middlewares = structure_path(structure, "middlewares")
    compose = "docker compose -f docker/docker-compose.yml"
    return MiddlewarePlan(
        name=MiddlewareName.MONITOR,
        entries=[
            FileEntry(
                path=f"{middlewares}/monitorMiddleware.js",
                template_ref="middlewares/monitor/monitorMiddleware.js.j2",
                template_data={"project_name": project_name},
            ),
            *plan_monitoring_files(project_name),
        ],
        dependencies=["prom-client", "winston", "winston-loki", "response-time"],
        scripts={
            "monitor:up": f"{compose} up -d grafana prometheus loki",
            "monitor:down": f"{compose} stop grafana prometheus loki",
        },
        info_messages=[
            f"Monitoring middleware created at {middlewares}/monitorMiddleware.js",
            "Attach it in app.js:",
            f"  const {{ attachMonitoring }} = require('./{middlewares}/monitorMiddleware');",
            "  attachMonitoring(app);",
            "Metrics are served on /metrics; logs are shipped to LOKI_URL (default http://localhost:3100)",
            "Start the monitoring stack with: npm run monitor:up",
            "Grafana: http://localhost:3000  Prometheus: http://localhost:9090  Loki: http://localhost:3100",
        ],
    )


def _plan_validator(structure: StructureType, project_name: str) -> MiddlewarePlan:
    middlewares = structure_path(structure, "middlewares")
    dto = structure_path(structure, "dto")
    return MiddlewarePlan(
        name=MiddlewareName.VALIDATOR,
        entries=[
            DirEntry(paths=[dto]),
            FileEntry(
                path=f"{middlewares}/validationService.js",
                template_ref="middlewares/validator/validationService.js.j2",
                template_data={"dto_path": dto},
            ),
            FileEntry(
                path=f"{dto}/example.dto.js",
                template_ref="middlewares/validator/example.dto.js.j2",
            ),
        ],
        dependencies=["fastest-validator"],
        info_messages=[
            f"Validation service created at {middlewares}/validationService.js",
            f"Example DTO file created at {dto}/example.dto.js",
            "Usage in routes:",
            "  router.post('/', validationService.validate('user_create_schema'), controller.create);",
            "DTO files must be named <name>.dto.js",
        ],
    )


_PLANNERS: dict[MiddlewareName, Callable[[StructureType, str], MiddlewarePlan]] = {
    MiddlewareName.AUTH: _plan_auth,
    MiddlewareName.ACL: _plan_acl,
    MiddlewareName.MONITOR: _plan_monitor,
    MiddlewareName.VALIDATOR: _plan_validator,
}


def parse_middleware_name(name: MiddlewareName | str) -> MiddlewareName:
    """Raises :class:`ValidationError` for names outside :class:`MiddlewareName`."""
    if not name:
        raise ValidationError("Middleware name is required")
    try:
        return MiddlewareName(name)
    except ValueError:
        available = ", ".join(m.value for m in MiddlewareName)
        raise ValidationError(
            f'Middleware name "{name}" is not a valid middleware. Available: {available}'
        ) from None


def plan_middleware(
    name: MiddlewareName | str,
    structure: StructureType | str = StructureType.LAYERED,
    project_name: str = "express-app",
) -> MiddlewarePlan:
    """Return the plan of middleware *name* for *structure*."""
    middleware = parse_middleware_name(name)
    return _PLANNERS[middleware](StructureType(structure), project_name)


def ensure_middleware_absent(project_path: str | Path, plan: MiddlewarePlan) -> None:
    """Raises :class:`ValidationError` if any file of *plan* already exists."""
    root = Path(project_path)
    for rel in plan.file_paths:
        if (root / rel).exists():
            raise ValidationError(f"Middleware {plan.name.value} already exists at {rel}")
