"""sargen command orchestrator.

Implements the commands of the ``sargen`` CLI on top of the scaffolding core:

init          -- Create a new Express.js project (layered or modular).
gen:module    -- Add a controller / route / service / model bundle.
gen:middleware-- Add an auth, acl, monitor or validator middleware.
gen:util      -- Add a redis, smtp, notification or fileupload service.
gen:db        -- Install and configure Sequelize for mysql or postgres.
gen:git       -- Initialise git, commit, connect a remote and push.
setup         -- Adopt an existing Express.js project (write .sargen.json).

Usage::

    sargen init shop --struct modular --test --security rateLimit
    sargen gen:module orders --crud --model-attributes "title:string,userId:ref(users)"
"""

from __future__ import annotations

import asyncio
import re
import sys
from pathlib import Path
from typing import Any, Iterable, Optional

from sargen.builder.database import DatabaseManager, DatabaseSetupError, detect_db_conf
from sargen.builder.git import GitManager, GitOptions, GitSetupError
from sargen.builder.npm import NpmManager
from sargen.config import (
    METADATA_FILENAME,
    MetadataError,
    SargenMetadata,
    SargenSettings,
    StructureType,
    structure_path,
)
from sargen.parser import ParseError, parse_attributes
from sargen.scaffolder.docker_gen import DockerGenerator
from sargen.scaffolder.middleware_gen import (
    MiddlewareName,
    MiddlewarePlan,
    ensure_middleware_absent,
    plan_middleware,
)
from sargen.scaffolder.module_gen import (
    ModuleOptions,
    ModulePlanner,
    ValidationError,
    ensure_module_absent,
    migration_entry,
    route_registration_patch,
    validate_module_name,
)
from sargen.scaffolder.patcher import AnchorPatch, PatchError, apply_patch
from sargen.scaffolder.project_gen import ProjectPlanner
from sargen.scaffolder.structure import FileEntry, MaterializeReport, StructureError, StructureResolver
from sargen.scaffolder.templates import TemplateError, TemplateRenderer
from sargen.scaffolder.util_gen import (
    CloudProvider,
    UtilName,
    UtilOptions,
    UtilPlan,
    ensure_util_absent,
    plan_util,
)
from sargen.utils import (
    CommandRunner,
    ExternalCommandError,
    console,
    print_error,
    print_info,
    print_success,
    print_summary_table,
    print_verbose,
    print_warning,
    save_json,
    set_verbose,
)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

PROJECT_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")


class PipelineError(Exception):
    """Raised when a command cannot continue with the current project state."""

    def __init__(self, command: str, message: str) -> None:
        self.command = command
        super().__init__(f"{command}: {message}")


# Errors reported as a single red line by the CLI.
SARGEN_ERRORS: tuple[type[Exception], ...] = (
    PipelineError,
    ParseError,
    ValidationError,
    TemplateError,
    StructureError,
    PatchError,
    ExternalCommandError,
    GitSetupError,
    MetadataError,
    DatabaseSetupError,
    OSError,
)


def register_route(patch: AnchorPatch) -> bool:
    """Apply a route-index patch unless its line is already registered.

    Returns:
        ``True`` if the index was changed.  A project without a route index
        is left alone.
    """
    if not patch.target_file.is_file():
        print_warning(f"Route index not found at {patch.target_file}; register the route manually.")
        return False
    if patch.insertion in patch.target_file.read_text(encoding="utf-8"):
        print_verbose(f"Route already registered in {patch.target_file}")
        return False
    apply_patch(patch)
    return True


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


class Builder:
    """Creates new projects (``sargen init``)."""

    def __init__(
        self,
        settings: SargenSettings | None = None,
        runner: CommandRunner | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.settings = settings or SargenSettings()
        self.runner = runner or CommandRunner(
            timeout=self.settings.command_timeout,
            max_output_bytes=self.settings.max_output_bytes,
        )
        self.resolver = StructureResolver(renderer or TemplateRenderer())
        self.planner = ProjectPlanner(self.settings.project)

    async def initialize(
        self,
        project_name: str,
        output_dir: str | Path = ".",
        structure: StructureType | str | None = None,
        test: bool = False,
        security: Iterable[str] = (),
        skip_install: bool = False,
    ) -> Path:
        """Create ``<output_dir>/<project_name>`` and everything in it.

        Args:
            project_name: Directory and npm package name.
            output_dir: Parent directory of the new project.
            structure: ``layered`` or ``modular``; defaults to the settings.
            test: Add the ``/api/v1/test/test-api`` endpoint.
            security: Security middleware names, e.g. ``["rateLimit"]``.
            skip_install: Write ``package.json`` directly instead of running npm.

        Returns:
            Path to the project root.

        Raises:
            ValidationError: On an invalid name or an existing directory.
        """
        if not project_name or not PROJECT_NAME_RE.match(project_name):
            raise ValidationError(
                f"Invalid project name '{project_name}'. Use letters, digits, '.', '_' and '-'."
            )
        structure = StructureType(structure or self.settings.default_structure)
        project_root = Path(output_dir).resolve() / project_name
        if project_root.exists():
            raise ValidationError(f"Directory {project_root} already exists")

        project_root.mkdir(parents=True)
        plan = self.planner.plan(project_name, structure, security)

        # 1. Project tree
        report = self.resolver.materialize(project_root, plan.entries)

        # 2. Optional test endpoint
        if test:
            entries, patch = self.planner.plan_test_endpoint(project_root, structure)
            self.resolver.materialize(project_root, entries)
            apply_patch(patch)

        # 3. Metadata
        SargenMetadata.for_project(project_name, project_root, structure).save(
            project_root, overwrite=False
        )

        # 4. npm
        npm = NpmManager(project_root, self.runner)
        if skip_install:
            save_json(
                {
                    "name": project_name,
                    "version": "1.0.0",
                    "main": "app.js",
                    "scripts": plan.scripts,
                },
                npm.package_json_path,
            )
            print_info(f"Skipped npm install. Install later with: npm install {' '.join(plan.dependencies)}")
        else:
            await npm.init()
            await npm.install(plan.dependencies, plan.dev_dependencies)
            npm.update_package_json("scripts", plan.scripts)

        print_summary_table(
            {"Project": project_name, "Structure": structure.value, **report.summary()},
            title="Project created",
        )
        print_success(f'Project "{project_name}" initialized with {structure.value} structure!')
        print_info(f"To get started, run:\n  cd {project_name} && npm run dev")
        if test:
            port = self.settings.project.env.get("port", 8000)
            print_info(f"Check the test API at: http://localhost:{port}/api/v1/test/test-api")
        return project_root


# ---------------------------------------------------------------------------
# gen:*
# ---------------------------------------------------------------------------


class Generator:
    """Adds code to an existing sargen project (``sargen gen:*``).

    Raises:
        MetadataError: On construction, if the directory has no valid
            ``.sargen.json``.
    """

    def __init__(
        self,
        project_path: str | Path = ".",
        runner: CommandRunner | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.project_path = Path(project_path).resolve()
        self.metadata = SargenMetadata.load(self.project_path)
        self.runner = runner or CommandRunner()
        self.renderer = renderer or TemplateRenderer()
        self.resolver = StructureResolver(self.renderer)

    @property
    def structure(self) -> StructureType:
        return self.metadata.structure

    async def generate_module(
        self,
        module_name: str,
        crud: bool = False,
        include_model: bool = True,
        model_attributes: Optional[str] = None,
    ) -> MaterializeReport:
        """Generate one module and register its routes.

        Attributes are parsed (and rejected) before anything is written.
        They are only used once Sequelize is configured; otherwise the
        module falls back to placeholder CRUD bodies.
        """
        validate_module_name(module_name)
        attributes = parse_attributes(model_attributes)

        if attributes and self.metadata.orm != "sequelize":
            print_warning("--model-attributes requires Sequelize; run 'sargen gen:db' first.")
            print_warning("The module is generated without custom attributes.")
            attributes = []
        elif attributes and not (
            self.project_path / structure_path(self.structure, "models_index")
        ).exists():
            print_warning("Database models not found; run 'sargen gen:db' to set them up.")
            print_warning("The module is generated with placeholder CRUD methods.")
            attributes = []

        options = ModuleOptions(
            crud=crud,
            include_model=include_model,
            structure=self.structure,
            orm=self.metadata.orm,
        )
        ensure_module_absent(self.project_path, module_name, options)

        plan = ModulePlanner(self.renderer).plan(module_name, attributes, options)
        report = self.resolver.materialize(self.project_path, plan)

        patch = route_registration_patch(self.project_path, module_name, self.structure)
        if register_route(patch):
            print_verbose(f"Registered /{module_name} in {patch.target_file}")

        if include_model and self.metadata.orm == "sequelize":
            migration = migration_entry(
                module_name, attributes, self.structure, renderer=self.renderer
            )
            migration_report = self.resolver.materialize(self.project_path, [migration])
            report.created_files.extend(migration_report.created_files)

        print_success(f"Module '{module_name}' generated successfully!")
        if include_model and attributes:
            print_info("Next steps for the database migration:")
            print_info("  cd src && npx sequelize-cli db:migrate")
        elif crud:
            print_info("Add columns to the model and migration, then run: npx sequelize-cli db:migrate")
        return report

    async def generate_middleware(self, middleware_name: str) -> MiddlewarePlan:
        """Generate one middleware and install its npm packages."""
        plan = plan_middleware(middleware_name, self.structure, self.metadata.project_name)
        ensure_middleware_absent(self.project_path, plan)

        print_info(f"Generating middleware: {plan.name.value}")
        if plan.dependencies:
            await NpmManager(self.project_path, self.runner).install(plan.dependencies)
        self.resolver.materialize(self.project_path, plan.entries)

        if plan.name is MiddlewareName.MONITOR:
            DockerGenerator(self.project_path).add_monitoring_services()
        if plan.scripts:
            NpmManager(self.project_path, self.runner).add_scripts(plan.scripts)

        print_success(f"Middleware '{plan.name.value}' generated successfully!")
        for message in plan.info_messages:
            print_info(message)
        return plan

    async def generate_util(
        self,
        util_name: str,
        docker: bool = False,
        cloud: CloudProvider | str | None = None,
        force: bool = False,
    ) -> UtilPlan:
        """Generate one utility service and install its npm packages.

        Existing util files are refused unless *force* is set.  With
        ``docker`` the redis util also writes a compose file and tries to
        start it; a missing or failing Docker only produces instructions.
        """
        options = UtilOptions(docker=docker, cloud=cloud or None, force=force)
        plan = plan_util(util_name, self.structure, self.metadata.project_name, options)
        if docker and plan.name is not UtilName.REDIS:
            print_warning("--docker only applies to the redis util; ignored")
        if cloud and plan.name is not UtilName.FILEUPLOAD:
            print_warning("--cloud only applies to the fileupload util; ignored")
        ensure_util_absent(self.project_path, plan, force)

        print_info(f"Generating util: {plan.name.value}")
        if plan.dependencies:
            await NpmManager(self.project_path, self.runner).install(plan.dependencies)
        self.resolver.materialize(self.project_path, plan.entries)

        if plan.compose_dir:
            await self._start_compose(plan.compose_dir)

        print_success(f"Util '{plan.name.value}' generated successfully!")
        for message in plan.info_messages:
            print_info(message)
        return plan

    async def _start_compose(self, compose_dir: str) -> bool:
        """Run ``docker compose up -d`` in *compose_dir*; ``False`` if it did not start."""
        manual = f"Start it manually with: cd {compose_dir} && docker compose up -d"
        try:
            version = await self.runner.run(["docker", "--version"])
            if not version.success:
                print_warning("Docker is not available")
                print_info(manual)
                return False
            result = await self.runner.run(
                ["docker", "compose", "up", "-d"], cwd=self.project_path / compose_dir
            )
        except ExternalCommandError as exc:
            print_warning(f"Docker failed: {exc}")
            print_info(manual)
            return False
        if not result.success:
            print_warning(f"docker compose up failed: {result.stderr or result.stdout}")
            print_info(manual)
            return False
        print_success("Redis container started")
        return True

    async def setup_database(
        self, orm: str = "sequelize", adapter: str = "mysql", docker: bool = False
    ) -> None:
        manager = DatabaseManager(self.project_path, self.structure, self.runner, self.resolver)
        await manager.setup(orm, adapter, docker, metadata=self.metadata)

    async def setup_git(self, options: GitOptions | None = None) -> None:
        await GitManager(self.project_path, self.runner).setup(options)


# ---------------------------------------------------------------------------
# setup
# ---------------------------------------------------------------------------


class Setup:
    """Adopts an existing Express.js project (``sargen setup``)."""

    def __init__(self, project_path: str | Path = ".", runner: CommandRunner | None = None) -> None:
        self.project_path = Path(project_path).resolve()
        self.npm = NpmManager(self.project_path, runner)
        self.resolver = StructureResolver()

    def validate_package_json(self) -> dict[str, Any]:
        """Return ``package.json`` if it describes a CommonJS Express project.

        Raises:
            ValidationError: If the file is missing or invalid, has no name,
                uses ES modules or does not depend on express.
        """
        if not self.npm.package_json_path.is_file():
            raise ValidationError(
                "No package.json found. Run this command in a Node.js project directory."
            )
        try:
            package = self.npm.read_package_json()
        except ValueError as exc:
            raise ValidationError(f"Invalid package.json file: {exc}") from exc

        if not package.get("name"):
            raise ValidationError("package.json has no 'name' field")
        if package.get("type") == "module":
            raise ValidationError(
                "ES module projects are not supported; sargen generates CommonJS code"
            )
        if "express" not in (package.get("dependencies") or {}):
            raise ValidationError("express is not a dependency; this is not an Express.js project")
        print_verbose(f"Validated Express.js project: {package['name']}")
        return package

    def detect_structure(self) -> StructureType:
        """Detect the layout from the ``src`` directory.

        Raises:
            ValidationError: If neither layout is recognised.
        """
        src = self.project_path / "src"
        if (src / "routes").is_dir() and (src / "controllers").is_dir():
            return StructureType.LAYERED
        if (src / "modules").is_dir() and (src / "common").is_dir():
            return StructureType.MODULAR
        raise ValidationError(
            "Could not detect the project structure. Expected src/routes and "
            "src/controllers (layered) or src/modules and src/common (modular)."
        )

    async def run(self) -> SargenMetadata:
        """Validate the project and write its ``.sargen.json``."""
        package = self.validate_package_json()
        if (self.project_path / METADATA_FILENAME).exists():
            raise MetadataError(f"A {METADATA_FILENAME} file already exists in this directory")

        structure = self.detect_structure()
        print_verbose(f"Detected project structure: {structure.value}")

        self.resolver.materialize(
            self.project_path,
            [FileEntry(path=".gitignore", template_ref="project/gitignore.j2")],
        )

        metadata = SargenMetadata.for_project(
            package["name"],
            self.project_path,
            structure,
            db_conf=detect_db_conf(package),
        )
        metadata.save(self.project_path, overwrite=False)
        print_success(f"Created {METADATA_FILENAME} at {self.project_path}")
        print_info("You can now use other sargen commands in this project.")
        return metadata


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def _build_parser() -> Any:
    import argparse

    parser = argparse.ArgumentParser(
        prog="sargen",
        description="sargen -- Express.js project scaffolding",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  sargen init shop --struct modular --test\n"
            "  sargen gen:module orders --crud --model-attributes \"title:string,status:enum(open|closed)\"\n"
            "  sargen gen:middleware auth\n"
            "  sargen gen:util fileupload --cloud aws\n"
            "  sargen gen:db --adapter postgres --docker\n"
        ),
    )
    sub = parser.add_subparsers(dest="command", required=True)

    verbose = argparse.ArgumentParser(add_help=False)
    verbose.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")

    init = sub.add_parser("init", parents=[verbose], help="Create a new Express.js project")
    init.add_argument("project_name", help="Name of the project directory")
    init.add_argument(
        "--struct",
        choices=[s.value for s in StructureType],
        default=None,
        help="Project structure (default: layered)",
    )
    init.add_argument("--test", action="store_true", help="Add a test API endpoint")
    init.add_argument(
        "--security", nargs="*", default=[], help="Security middlewares, e.g. rateLimit"
    )
    init.add_argument(
        "--skip-install", action="store_true", help="Do not run npm (write package.json only)"
    )

    module = sub.add_parser("gen:module", parents=[verbose], help="Generate a module")
    module.add_argument("module_name")
    module.add_argument("--crud", action="store_true", help="Generate CRUD operations")
    module.add_argument(
        "--no-model", dest="model", action="store_false", help="Do not generate a model"
    )
    module.add_argument(
        "--model-attributes",
        default=None,
        help='Model attributes, e.g. "name:string,age:integer,owner:ref(users)"',
    )

    middleware = sub.add_parser("gen:middleware", parents=[verbose], help="Generate a middleware")
    middleware.add_argument("middleware_name", help="auth, acl, monitor or validator")

    util = sub.add_parser("gen:util", parents=[verbose], help="Generate a utility service")
    util.add_argument("util_name", help=", ".join(u.value for u in UtilName))
    util.add_argument(
        "--docker", action="store_true", help="Write and start a Redis compose file (redis only)"
    )
    util.add_argument(
        "--cloud",
        choices=[c.value for c in CloudProvider],
        default=None,
        help="Cloud storage backend (fileupload only)",
    )
    util.add_argument("--force", action="store_true", help="Overwrite existing util files")

    db = sub.add_parser("gen:db", parents=[verbose], help="Set up the database ORM")
    db.add_argument("--orm", default="sequelize")
    db.add_argument("--adapter", default="mysql", help="mysql or postgres")
    db.add_argument("--docker", action="store_true", help="Add a database Docker Compose service")

    git = sub.add_parser("gen:git", parents=[verbose], help="Initialise git and push")
    git.add_argument("--remote", default=None, help="Remote repository URL")
    git.add_argument("--branch", default="main")
    git.add_argument("--message", default=None, help="Initial commit message")
    git.add_argument("--public", action="store_true", help="Create a public GitHub repository")
    git.add_argument("--description", default=None)
    git.add_argument("--no-push", action="store_true")

    sub.add_parser("setup", parents=[verbose], help="Adopt an existing Express.js project")
    return parser


async def run_command(args: Any, project_path: str | Path = ".") -> None:
    """Dispatch parsed CLI arguments to the matching command."""
    settings = SargenSettings.from_env()
    runner = CommandRunner(
        timeout=settings.command_timeout, max_output_bytes=settings.max_output_bytes
    )

    if args.command == "init":
        await Builder(settings, runner).initialize(
            args.project_name,
            output_dir=project_path,
            structure=args.struct,
            test=args.test,
            security=args.security or [],
            skip_install=args.skip_install,
        )
    elif args.command == "setup":
        await Setup(project_path, runner).run()
    else:
        generator = Generator(project_path, runner)
        if args.command == "gen:module":
            await generator.generate_module(
                args.module_name,
                crud=args.crud,
                include_model=args.model,
                model_attributes=args.model_attributes,
            )
        elif args.command == "gen:middleware":
            await generator.generate_middleware(args.middleware_name)
        elif args.command == "gen:util":
            await generator.generate_util(
                args.util_name, docker=args.docker, cloud=args.cloud, force=args.force
            )
        elif args.command == "gen:db":
            await generator.setup_database(args.orm, args.adapter, args.docker)
        elif args.command == "gen:git":
            options = GitOptions(
                remote=args.remote,
                branch=args.branch,
                public=args.public,
                no_push=args.no_push,
                **{
                    key: value
                    for key, value in (("message", args.message), ("description", args.description))
                    if value
                },
            )
            await generator.setup_git(options)
        else:
            raise PipelineError(args.command, "unknown command")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``sargen``."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)

    try:
        asyncio.run(run_command(args))
    except SARGEN_ERRORS as exc:
        print_error(f"Error: {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Aborted.[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
