"""Utility service plans for ``sargen gen:util``.

Utilities are ready-to-use service modules (cache client, mailer, push
notifications, file uploads) written into the structure's ``utils``
directory.  Like middlewares, each one is a member of :class:`UtilName`
with one planning function in ``_PLANNERS``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field

from sargen.config import StructureType, structure_path

from .docker_gen import dump_compose, redis_compose
from .module_gen import ValidationError
from .structure import DirEntry, FileEntry


class UtilName(str, Enum):
    """Utility services sargen can generate."""
    REDIS = "redis"
    SMTP = "smtp"
    NOTIFICATION = "notification"
    FILEUPLOAD = "fileupload"


class CloudProvider(str, Enum):
    """Cloud storage backends for the file upload service."""
    AWS = "aws"
    GCP = "gcp"


_CLOUD_DEPENDENCIES: dict[CloudProvider, list[str]] = {
    CloudProvider.AWS: ["@aws-sdk/client-s3", "@aws-sdk/s3-request-presigner"],
    CloudProvider.GCP: ["@google-cloud/storage"],
}

_CLOUD_ENV: dict[CloudProvider, list[str]] = {
    CloudProvider.AWS: ["AWS_REGION", "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_S3_BUCKET"],
    CloudProvider.GCP: ["GCP_KEY_FILENAME", "GCP_PROJECT_ID", "GCP_BUCKET"],
}


class UtilOptions(BaseModel):
    """Options of one ``gen:util`` run."""

    docker: bool = Field(default=False, description="Start a Redis container (redis only)")
    cloud: Optional[CloudProvider] = Field(
        default=None, description="Cloud storage backend (fileupload only)"
    )
    force: bool = Field(default=False, description="Overwrite existing util files")


@dataclass
class UtilPlan:
    """Files, npm packages and follow-up hints for one utility service.

    ``compose_dir`` is set when the plan ships its own compose file that
    should be started with ``docker compose up -d``.
    """

    name: UtilName
    entries: list[DirEntry | FileEntry]
    dependencies: list[str] = field(default_factory=list)
    info_messages: list[str] = field(default_factory=list)
    compose_dir: Optional[str] = None

    @property
    def file_paths(self) -> list[str]:
        return [entry.path for entry in self.entries if isinstance(entry, FileEntry)]


def _plan_redis(utils: str, project_name: str, options: UtilOptions) -> UtilPlan:
    plan = UtilPlan(
        name=UtilName.REDIS,
        entries=[
            FileEntry(
                path=f"{utils}/redis.js",
                template_ref="utils/redis/redisService.js.j2",
                force=options.force,
            )
        ],
        dependencies=["ioredis"],
        info_messages=[
            'Add "REDIS_HOST" and "REDIS_PORT" to .env (defaults: localhost, 6379)',
            f"Usage: const redisService = require('./{utils}/redis');",
        ],
    )
    if not options.docker:
        plan.info_messages.append("Start your redis server before running the project")
        return plan

    compose_dir = f"{utils}/__redisConfig"
    plan.entries += [
        DirEntry(paths=[compose_dir]),
        FileEntry(
            path=f"{compose_dir}/docker-compose.yml",
            content=dump_compose(redis_compose(project_name)),
            force=options.force,
        ),
    ]
    plan.compose_dir = compose_dir
    return plan


def _plan_smtp(utils: str, project_name: str, options: UtilOptions) -> UtilPlan:
    return UtilPlan(
        name=UtilName.SMTP,
        entries=[
            FileEntry(
                path=f"{utils}/emailService.js",
                template_ref="utils/smtp/emailService.js.j2",
                template_data={"project_name": project_name},
                force=options.force,
            )
        ],
        dependencies=["nodemailer"],
        info_messages=[
            "Required .env variables: SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS",
            "Optional .env variables: SMTP_SECURE, SMTP_FROM_NAME",
        ],
    )


def _plan_notification(utils: str, project_name: str, options: UtilOptions) -> UtilPlan:
    return UtilPlan(
        name=UtilName.NOTIFICATION,
        entries=[
            FileEntry(
                path=f"{utils}/notificationService.js",
                template_ref="utils/notification/notificationService.js.j2",
                force=options.force,
            )
        ],
        dependencies=["firebase-admin"],
        info_messages=[
            "Download a service account key from the Firebase console",
            "Required .env variables: FIREBASE_SERVICE_ACCOUNT_PATH, FIREBASE_DATABASE_URL",
        ],
    )


def _plan_fileupload(utils: str, project_name: str, options: UtilOptions) -> UtilPlan:
    cloud = options.cloud
    plan = UtilPlan(
        name=UtilName.FILEUPLOAD,
        entries=[
            FileEntry(
                path=f"{utils}/fileUploadService.js",
                template_ref="utils/fileupload/fileUploadService.js.j2",
                template_data={"cloud": cloud.value if cloud else ""},
                force=options.force,
            )
        ],
        dependencies=["multer"],
    )
    if cloud is None:
        plan.info_messages.append("Files are stored on local disk under uploads/")
        return plan

    plan.dependencies += _CLOUD_DEPENDENCIES[cloud]
    plan.info_messages.append(
        f"Required .env variables for {cloud.value}: {', '.join(_CLOUD_ENV[cloud])}"
    )
    return plan


_PLANNERS: dict[UtilName, Callable[[str, str, UtilOptions], UtilPlan]] = {
    UtilName.REDIS: _plan_redis,
    UtilName.SMTP: _plan_smtp,
    UtilName.NOTIFICATION: _plan_notification,
    UtilName.FILEUPLOAD: _plan_fileupload,
}


def parse_util_name(name: UtilName | str) -> UtilName:
    """Raises :class:`ValidationError` for names outside :class:`UtilName`."""
    if not name:
        raise ValidationError("Util name is required")
    try:
        return UtilName(name)
    except ValueError:
        available = ", ".join(u.value for u in UtilName)
        raise ValidationError(
            f'Util name "{name}" is not a valid util. Available: {available}'
        ) from None


def plan_util(
    name: UtilName | str,
    structure: StructureType | str = StructureType.LAYERED,
    project_name: str = "express-app",
    options: UtilOptions | None = None,
) -> UtilPlan:
    """Return the plan of utility *name* for *structure*.

    ``docker`` only affects redis and ``cloud`` only affects fileupload;
    other utils ignore them.
    """
    util = parse_util_name(name)
    utils = structure_path(StructureType(structure), "utils")
    return _PLANNERS[util](utils, project_name, options or UtilOptions())


def ensure_util_absent(project_path: str | Path, plan: UtilPlan, force: bool = False) -> None:
    """Raises :class:`ValidationError` if a file of *plan* exists and *force* is off."""
    if force:
        return
    root = Path(project_path)
    for rel in plan.file_paths:
        if (root / rel).exists():
            raise ValidationError(
                f"Util {plan.name.value} already exists at {rel}; use --force to overwrite"
            )
