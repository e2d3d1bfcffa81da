"""Database (ORM) setup for ``sargen gen:db``.

Installs the ORM packages for the chosen adapter, runs ``sequelize-cli init``
inside ``src/``, writes ``config.json`` with the adapter's dialect and port
and records the choice in ``.sargen.json``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from sargen.config import DbConf, SargenMetadata, StructureType, structure_path
from sargen.scaffolder.docker_gen import DatabaseCredentials, DockerGenerator
from sargen.scaffolder.structure import FileEntry, StructureResolver
from sargen.utils import CommandRunner, print_info, print_success, print_verbose

from .npm import NpmManager

SUPPORTED_ORMS = ("sequelize",)


class DatabaseSetupError(Exception):
    """Raised for unsupported ORM / adapter choices or an existing configuration."""


@dataclass(frozen=True)
class AdapterConfig:
    """npm packages and connection defaults of one ORM adapter."""

    dependencies: tuple[str, ...]
    dev_dependencies: tuple[str, ...]
    dialect: str
    port: int


DB_CONFIG: dict[str, dict[str, AdapterConfig]] = {
    "sequelize": {
        "mysql": AdapterConfig(
            dependencies=("sequelize", "mysql2"),
            dev_dependencies=("sequelize-cli",),
            dialect="mysql",
            port=3306,
        ),
        "postgres": AdapterConfig(
            dependencies=("sequelize", "pg", "pg-hstore"),
            dev_dependencies=("sequelize-cli",),
            dialect="postgres",
            port=5432,
        ),
    },
}

_INIT_COMMANDS: dict[StructureType, list[str]] = {
    StructureType.LAYERED: ["npx", "sequelize-cli", "init"],
    StructureType.MODULAR: [
        "npx", "sequelize-cli", "init",
        "--config", "common/config/config.json",
        "--models-path", "common/models",
        "--migrations-path", "common/migrations",
        "--seeders-path", "common/seeders",
    ],
}


def adapter_config(orm: str, adapter: str) -> AdapterConfig:
    """Look up *orm* / *adapter*.

    Raises:
        DatabaseSetupError: If either is unsupported.
    """
    adapters = DB_CONFIG.get(orm)
    if adapters is None:
        raise DatabaseSetupError(
            f"Unsupported ORM: {orm}. Supported: {', '.join(SUPPORTED_ORMS)}"
        )
    config = adapters.get(adapter)
    if config is None:
        raise DatabaseSetupError(
            f"Unsupported adapter '{adapter}' for ORM '{orm}'. "
            f"Supported: {', '.join(adapters)}"
        )
    return config


def detect_db_conf(package_json: dict[str, Any]) -> Optional[DbConf]:
    """Infer the ORM and adapter from the dependencies of a ``package.json``."""
    dependencies = package_json.get("dependencies") or {}
    for orm, adapters in DB_CONFIG.items():
        if orm not in dependencies:
            continue
        for adapter, config in adapters.items():
            # the first package after the ORM itself is the driver
            if config.dependencies[1] in dependencies:
                return DbConf(orm=orm, adapter=adapter)
        return DbConf(orm=orm)
    return None


class DatabaseManager:
    """Sets up the ORM of one project."""

    def __init__(
        self,
        project_path: str | Path,
        structure: StructureType = StructureType.LAYERED,
        runner: CommandRunner | None = None,
        resolver: StructureResolver | None = None,
    ) -> None:
        self.project_path = Path(project_path)
        self.structure = StructureType(structure)
        self.runner = runner or CommandRunner()
        self.npm = NpmManager(self.project_path, self.runner)
        self.resolver = resolver or StructureResolver()

    @property
    def config_file(self) -> str:
        """Project-relative path of the ORM ``config.json``."""
        return f"{structure_path(self.structure, 'config')}/config.json"

    async def setup(
        self,
        orm: str = "sequelize",
        adapter: str = "mysql",
        docker: bool = False,
        metadata: SargenMetadata | None = None,
    ) -> Optional[DatabaseCredentials]:
        """Install and configure the ORM.

        Args:
            orm: ORM name; only ``sequelize`` is supported.
            adapter: ``mysql`` or ``postgres``.
            docker: Also add a database service to ``docker/docker-compose.yml``.
            metadata: Project metadata to record ``db_conf`` in.

        Returns:
            The credentials of the Docker database, or ``None`` without Docker.

        Raises:
            DatabaseSetupError: On an unsupported choice or when a database
                configuration already exists.
            ExternalCommandError: If npm or sequelize-cli fails.
        """
        config = adapter_config(orm, adapter)
        if (self.project_path / self.config_file).exists():
            raise DatabaseSetupError(
                f"Database configuration already exists at {self.config_file}"
            )

        print_info("Setting up database...")
        await self.npm.install(config.dependencies, config.dev_dependencies)

        src_dir = self.project_path / structure_path(self.structure, "src")
        if not src_dir.is_dir():
            src_dir = self.project_path

        if self.structure is StructureType.MODULAR:
            self.resolver.materialize(
                src_dir, [FileEntry(path=".sequelizerc", template_ref="database/sequelizerc.j2")]
            )

        print_verbose(f"Running sequelize-cli init in {src_dir}")
        result = await self.runner.run(_INIT_COMMANDS[self.structure], cwd=src_dir)
        result.check()

        credentials = None
        if docker:
            credentials = DockerGenerator(self.project_path).add_database_service(adapter)

        self.resolver.materialize(
            self.project_path,
            [
                FileEntry(
                    path=self.config_file,
                    template_ref="database/config.json.j2",
                    template_data={
                        "dialect": config.dialect,
                        "port": config.port,
                        "database": "database",
                        "username": credentials.username if credentials else "root",
                        "password": credentials.password if credentials else None,
                    },
                    # replaces the default written by sequelize-cli init
                    force=True,
                )
            ],
        )

        if metadata is not None:
            metadata.update_db_conf(self.project_path, orm, adapter)

        print_success(f"Database setup completed: {orm} with {adapter}")
        if docker:
            print_info("Start the database with: docker compose -f docker/docker-compose.yml up -d")
        return credentials
