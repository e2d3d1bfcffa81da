"""sargen configuration.

Typed settings for the CLI and the ``.sargen.json`` project metadata file.
All settings use Pydantic v2 models so they are validated once at the CLI
boundary and serialised to/from JSON without boiler-plate.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from sargen.utils import DEFAULT_COMMAND_TIMEOUT, DEFAULT_MAX_OUTPUT_BYTES

METADATA_FILENAME = ".sargen.json"


class StructureType(str, Enum):
    """Layout of a generated project."""
    LAYERED = "layered"
    MODULAR = "modular"


class MetadataError(Exception):
    """Raised when ``.sargen.json`` is missing, invalid or already present."""


# ---------------------------------------------------------------------------
# Per-structure path layout
# ---------------------------------------------------------------------------

STRUCTURE_PATHS: dict[StructureType, dict[str, str]] = {
    StructureType.LAYERED: {
        "src": "src",
        "config": "src/config",
        "controllers": "src/controllers",
        "middlewares": "src/middlewares",
        "migrations": "src/migrations",
        "models": "src/models",
        "routes": "src/routes",
        "services": "src/services",
        "utils": "src/utils",
        "dto": "src/dto",
        "route_index": "src/routes/index.js",
        "models_index": "src/models/index.js",
    },
    StructureType.MODULAR: {
        "src": "src",
        "modules": "src/modules",
        "common": "src/common",
        "config": "src/common/config",
        "middlewares": "src/common/middlewares",
        "migrations": "src/common/migrations",
        "models": "src/common/models",
        "routes": "src/common/routes",
        "utils": "src/common/utils",
        "dto": "src/common/dto",
        "route_index": "src/common/routes/index.js",
        "models_index": "src/common/models/index.js",
    },
}


def structure_path(structure: StructureType, key: str) -> str:
    """Return the project-relative path registered under *key* for *structure*."""
    return STRUCTURE_PATHS[StructureType(structure)][key]


# ---------------------------------------------------------------------------
# Generated project defaults
# ---------------------------------------------------------------------------


class ProjectDefaults(BaseModel):
    """npm packages, scripts and environment written into every new project."""

    dependencies: list[str] = Field(
        default_factory=lambda: ["express", "body-parser", "dotenv", "helmet", "cors"]
    )
    dev_dependencies: list[str] = Field(default_factory=lambda: ["nodemon"])
    scripts: dict[str, str] = Field(
        default_factory=lambda: {"start": "node app.js", "dev": "nodemon app.js"}
    )
    env: dict[str, Any] = Field(
        default_factory=lambda: {"port": 8000, "node_env": "development"}
    )


class SargenSettings(BaseModel):
    """Tuning knobs for the CLI itself."""

    default_structure: StructureType = Field(default=StructureType.LAYERED)
    command_timeout: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT, ge=1, description="Per-command timeout in seconds"
    )
    max_output_bytes: int = Field(
        default=DEFAULT_MAX_OUTPUT_BYTES, ge=1024, description="Captured output limit per command"
    )
    project: ProjectDefaults = Field(default_factory=ProjectDefaults)

    @classmethod
    def from_env(cls) -> "SargenSettings":
        """Build settings from environment variables.

        Recognised variables (all optional):
            SARGEN_STRUCTURE, SARGEN_COMMAND_TIMEOUT, SARGEN_MAX_OUTPUT_BYTES.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("SARGEN_STRUCTURE"):
            kwargs["default_structure"] = os.environ["SARGEN_STRUCTURE"]
        if os.environ.get("SARGEN_COMMAND_TIMEOUT"):
            kwargs["command_timeout"] = int(os.environ["SARGEN_COMMAND_TIMEOUT"])
        if os.environ.get("SARGEN_MAX_OUTPUT_BYTES"):
            kwargs["max_output_bytes"] = int(os.environ["SARGEN_MAX_OUTPUT_BYTES"])
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# .sargen.json
# ---------------------------------------------------------------------------


class DbConf(BaseModel):
    """ORM and adapter recorded by ``gen:db`` or detected by ``setup``."""
    orm: Optional[str] = None
    adapter: Optional[str] = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SargenMetadata(BaseModel):
    """Contents of the ``.sargen.json`` file at a project root.

    Every ``gen:*`` command refuses to run in a directory without one.
    """

    project_name: str = Field(..., min_length=1)
    project_path: str = Field(..., min_length=1)
    structure: StructureType = Field(default=StructureType.LAYERED)
    created_at: str = Field(default_factory=_utc_now)
    updated_at: Optional[str] = None
    paths: dict[str, str] = Field(default_factory=dict)
    db_conf: Optional[DbConf] = None

    @classmethod
    def for_project(
        cls,
        project_name: str,
        project_path: str | Path,
        structure: StructureType | str = StructureType.LAYERED,
        db_conf: DbConf | None = None,
    ) -> "SargenMetadata":
        """Create metadata with the path map of *structure* filled in."""
        structure = StructureType(structure or StructureType.LAYERED)
        return cls(
            project_name=project_name,
            project_path=str(project_path),
            structure=structure,
            paths=dict(STRUCTURE_PATHS[structure]),
            db_conf=db_conf,
        )

    @property
    def orm(self) -> str:
        return (self.db_conf.orm or "") if self.db_conf else ""

    @property
    def adapter(self) -> str:
        return (self.db_conf.adapter or "") if self.db_conf else ""

    def save(self, project_root: str | Path, overwrite: bool = True) -> Path:
        """Persist the metadata to ``<project_root>/.sargen.json``.

        Args:
            project_root: Directory holding the project.
            overwrite: When ``False`` an existing metadata file is an error.

        Returns:
            The path that was written.
        """
        target = Path(project_root) / METADATA_FILENAME
        if not overwrite and target.exists():
            raise MetadataError(f"Metadata file already exists at {target}")
        target.write_text(self.model_dump_json(indent=2) + "\n", encoding="utf-8")
        return target

    @classmethod
    def load(cls, project_root: str | Path) -> "SargenMetadata":
        """Load and validate ``<project_root>/.sargen.json``.

        Raises:
            MetadataError: If the file is missing or is not valid metadata.
        """
        path = Path(project_root) / METADATA_FILENAME
        if not path.is_file():
            raise MetadataError(
                "This does not appear to be a sargen project. "
                f"Unable to find '{METADATA_FILENAME}' in {Path(project_root).resolve()}"
            )
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise MetadataError(f"Invalid '{METADATA_FILENAME}' file: {exc}") from exc

    def update_db_conf(self, project_root: str | Path, orm: str, adapter: str) -> Path:
        """Record the database configuration and persist the file."""
        self.db_conf = DbConf(orm=orm, adapter=adapter)
        self.updated_at = _utc_now()
        return self.save(project_root)
