"""Tests for the sargen command orchestrator (sargen.pipeline).

Covers:
- init: layered / modular trees, test endpoint, security, --skip-install
- gen:module: files, route registration, attributes and migrations
- gen:middleware (including the monitoring stack) and gen:db delegation
- gen:util: files, packages, Redis compose startup and --force
- setup: adopting an existing Express.js project
- CLI argument handling and error exit codes
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
import yaml

from sargen.builder.git import GitOptions
from sargen.config import (
    METADATA_FILENAME,
    DbConf,
    MetadataError,
    SargenMetadata,
    SargenSettings,
    StructureType,
)
from sargen.parser import ParseError
from sargen.pipeline import (
    Builder,
    Generator,
    PipelineError,
    Setup,
    _build_parser,
    main,
    register_route,
    run_command,
)
from sargen.scaffolder.docker_gen import COMPOSE_PATH
from sargen.scaffolder.module_gen import ValidationError, route_registration_patch
from sargen.utils import console


# ---------------------------------------------------------------------------
# Markers
# ---------------------------------------------------------------------------

pytestmark = pytest.mark.unit


def _with_sequelize(project: Path, structure: StructureType = StructureType.LAYERED) -> Path:
    """Mark *project* as having run ``gen:db`` (metadata and models index)."""
    SargenMetadata.load(project).update_db_conf(project, "sequelize", "mysql")
    models_dir = "src/models" if structure is StructureType.LAYERED else "src/common/models"
    (project / models_dir).mkdir(parents=True, exist_ok=True)
    (project / models_dir / "index.js").write_text("module.exports = {};\n", encoding="utf-8")
    return project


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


class TestBuilder:
    @pytest.mark.asyncio
    async def test_layered_project(self, tmp_path: Path, fake_runner, commands_of):
        runner = fake_runner()

        root = await Builder(runner=runner).initialize("shop", output_dir=tmp_path)

        assert root == tmp_path.resolve() / "shop"
        for rel in ("app.js", ".env", ".gitignore", "README.md", "src/routes/index.js"):
            assert (root / rel).is_file(), rel
        assert (root / "src" / "services").is_dir()

        metadata = SargenMetadata.load(root)
        assert metadata.project_name == "shop"
        assert metadata.structure is StructureType.LAYERED

        assert commands_of(runner) == [
            "npm init -y",
            "npm install express body-parser dotenv helmet cors",
            "npm install -D nodemon",
        ]
        package = json.loads((root / "package.json").read_text())
        assert package["scripts"] == {"start": "node app.js", "dev": "nodemon app.js"}

    @pytest.mark.asyncio
    async def test_modular_with_test_and_security(self, tmp_path: Path, fake_runner, commands_of):
        runner = fake_runner()

        root = await Builder(runner=runner).initialize(
            "shop", tmp_path, structure="modular", test=True, security=["rateLimit", "waf"]
        )

        index = (root / "src/common/routes/index.js").read_text()
        assert "router.use('/test', require('../../modules/test/routes/testRoute'));" in index
        assert (root / "src/modules/test/controllers/testController.js").is_file()
        assert (root / ".env.development").is_file()
        assert "express-rate-limit" in commands_of(runner)[1]
        assert "rateLimit" in (root / "app.js").read_text()

    @pytest.mark.asyncio
    async def test_default_structure_from_settings(self, tmp_path: Path, fake_runner):
        settings = SargenSettings(default_structure="modular")

        root = await Builder(settings, runner=fake_runner()).initialize("shop", tmp_path)

        assert SargenMetadata.load(root).structure is StructureType.MODULAR

    @pytest.mark.asyncio
    async def test_skip_install(self, tmp_path: Path, fake_runner):
        runner = fake_runner()

        root = await Builder(runner=runner).initialize("shop", tmp_path, skip_install=True)

        runner.run.assert_not_awaited()
        package = json.loads((root / "package.json").read_text())
        assert package["name"] == "shop"
        assert package["scripts"]["dev"] == "nodemon app.js"

    @pytest.mark.asyncio
    async def test_existing_directory(self, tmp_path: Path, fake_runner):
        (tmp_path / "shop").mkdir()

        with pytest.raises(ValidationError, match="already exists"):
            await Builder(runner=fake_runner()).initialize("shop", tmp_path)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "my shop", "../shop", "-shop"])
    async def test_invalid_name(self, tmp_path: Path, fake_runner, name):
        with pytest.raises(ValidationError, match="Invalid project name"):
            await Builder(runner=fake_runner()).initialize(name, tmp_path)


# ---------------------------------------------------------------------------
# gen:module
# ---------------------------------------------------------------------------


class TestGenerateModule:
    def test_requires_metadata(self, tmp_path: Path):
        with pytest.raises(MetadataError, match="does not appear to be a sargen project"):
            Generator(tmp_path)

    @pytest.mark.asyncio
    async def test_layered_module(self, layered_project: Path):
        report = await Generator(layered_project).generate_module("orders", crud=True)

        assert "src/controllers/ordersController.js" in report.created_files
        assert (layered_project / "src/models/ordersModel.js").is_file()
        index = (layered_project / "src/routes/index.js").read_text()
        line = 'router.use("/orders", require("./ordersRoute.js"));'
        assert index.index(line) < index.index("module.exports = router;")
        assert not (layered_project / "src/migrations").exists()

    @pytest.mark.asyncio
    async def test_modular_module(self, modular_project: Path):
        await Generator(modular_project).generate_module("orders")

        assert (modular_project / "src/modules/orders/routes/ordersRoute.js").is_file()
        index = (modular_project / "src/common/routes/index.js").read_text()
        assert 'require("../../modules/orders/routes/ordersRoute.js")' in index

    @pytest.mark.asyncio
    async def test_two_modules_register_in_order(self, layered_project: Path):
        generator = Generator(layered_project)
        await generator.generate_module("orders")
        await generator.generate_module("users")

        index = (layered_project / "src/routes/index.js").read_text()
        assert index.index('"/orders"') < index.index('"/users"') < index.index("module.exports")

    @pytest.mark.asyncio
    async def test_existing_module_rejected(self, layered_project: Path):
        generator = Generator(layered_project)
        await generator.generate_module("orders")

        with pytest.raises(ValidationError, match="already exist"):
            await generator.generate_module("orders")

    @pytest.mark.asyncio
    async def test_invalid_attributes_write_nothing(self, layered_project: Path):
        with pytest.raises(ParseError):
            await Generator(layered_project).generate_module(
                "orders", model_attributes="price:decimal"
            )
        assert not (layered_project / "src/controllers/ordersController.js").exists()

    @pytest.mark.asyncio
    async def test_attributes_dropped_without_sequelize(self, layered_project: Path):
        await Generator(layered_project).generate_module(
            "orders", crud=True, model_attributes="title:string"
        )

        model = (layered_project / "src/models/ordersModel.js").read_text()
        assert "title" not in model
        assert not (layered_project / "src/services/paginationService.js").exists()

    @pytest.mark.asyncio
    async def test_sequelize_module_with_migration(self, layered_project: Path):
        _with_sequelize(layered_project)

        await Generator(layered_project).generate_module(
            "orders", crud=True, model_attributes="title:string,userId:ref(users)"
        )

        model = (layered_project / "src/models/ordersModel.js").read_text()
        assert "class Orders extends Model" in model
        assert "userId: {" in model
        assert (layered_project / "src/services/paginationService.js").is_file()
        (migration,) = (layered_project / "src/migrations").glob("*-create-orders.js")
        assert 'createTable("orders"' in migration.read_text()

    @pytest.mark.asyncio
    async def test_sequelize_without_models_index(self, layered_project: Path):
        SargenMetadata.load(layered_project).update_db_conf(layered_project, "sequelize", "mysql")

        await Generator(layered_project).generate_module("orders", model_attributes="title:string")

        model = (layered_project / "src/models/ordersModel.js").read_text()
        assert "// No custom attributes defined" in model

    @pytest.mark.asyncio
    async def test_no_model_skips_migration(self, layered_project: Path):
        _with_sequelize(layered_project)

        await Generator(layered_project).generate_module("orders", include_model=False)

        assert not (layered_project / "src/models/ordersModel.js").exists()
        assert not (layered_project / "src/migrations").exists()


class TestRegisterRoute:
    def test_already_registered_is_skipped(self, layered_project: Path):
        patch_ = route_registration_patch(layered_project, "orders", StructureType.LAYERED)

        assert register_route(patch_) is True
        before = patch_.target_file.read_text()
        assert register_route(patch_) is False
        assert patch_.target_file.read_text() == before

    def test_missing_index(self, tmp_path: Path):
        patch_ = route_registration_patch(tmp_path, "orders", StructureType.LAYERED)
        assert register_route(patch_) is False


# ---------------------------------------------------------------------------
# gen:middleware / gen:db / gen:git
# ---------------------------------------------------------------------------


class TestGenerateMiddleware:
    @pytest.mark.asyncio
    async def test_auth(self, layered_project: Path, fake_runner, commands_of):
        runner = fake_runner()

        plan = await Generator(layered_project, runner).generate_middleware("auth")

        assert commands_of(runner) == ["npm install jsonwebtoken bcrypt"]
        for rel in plan.file_paths:
            assert (layered_project / rel).is_file()

    @pytest.mark.asyncio
    async def test_acl_installs_nothing(self, modular_project: Path, fake_runner):
        runner = fake_runner()

        await Generator(modular_project, runner).generate_middleware("acl")

        runner.run.assert_not_awaited()
        assert (modular_project / "src/common/config/acl.json").is_file()

    @pytest.mark.asyncio
    async def test_existing_middleware(self, layered_project: Path, fake_runner):
        generator = Generator(layered_project, fake_runner())
        await generator.generate_middleware("validator")

        with pytest.raises(ValidationError, match="already exists"):
            await generator.generate_middleware("validator")

    @pytest.mark.asyncio
    async def test_unknown_middleware(self, layered_project: Path, fake_runner):
        with pytest.raises(ValidationError, match="not a valid middleware"):
            await Generator(layered_project, fake_runner()).generate_middleware("cache")

    @pytest.mark.asyncio
    async def test_monitor_adds_stack(self, layered_project: Path, fake_runner):
        await Generator(layered_project, fake_runner()).generate_middleware("monitor")

        compose = yaml.safe_load((layered_project / COMPOSE_PATH).read_text(encoding="utf-8"))
        assert {"grafana", "prometheus", "loki"} <= set(compose["services"])
        monitoring = layered_project / "docker/services/monitoring"
        assert (monitoring / "grafana/grafana.ini").is_file()
        assert (monitoring / "prometheus/prometheus.yml").is_file()

        package = json.loads((layered_project / "package.json").read_text(encoding="utf-8"))
        assert package["dependencies"]["prom-client"] == "^1.0.0"
        assert package["scripts"]["monitor:up"].endswith("up -d grafana prometheus loki")
        assert "monitor:down" in package["scripts"]

    @pytest.mark.asyncio
    async def test_auth_leaves_compose_alone(self, layered_project: Path, fake_runner):
        await Generator(layered_project, fake_runner()).generate_middleware("auth")
        assert not (layered_project / COMPOSE_PATH).exists()


class TestGenerateUtil:
    @pytest.mark.asyncio
    async def test_smtp(self, layered_project: Path, fake_runner, commands_of):
        runner = fake_runner()

        plan = await Generator(layered_project, runner).generate_util("smtp")

        assert commands_of(runner) == ["npm install nodemailer"]
        content = (layered_project / plan.file_paths[0]).read_text(encoding="utf-8")
        assert plan.file_paths == ["src/utils/emailService.js"]
        assert "'shop'" in content

    @pytest.mark.asyncio
    async def test_fileupload_aws_modular(self, modular_project: Path, fake_runner, commands_of):
        runner = fake_runner()

        await Generator(modular_project, runner).generate_util("fileupload", cloud="aws")

        assert commands_of(runner) == [
            "npm install multer @aws-sdk/client-s3 @aws-sdk/s3-request-presigner"
        ]
        content = (modular_project / "src/common/utils/fileUploadService.js").read_text()
        assert "new S3Client(" in content

    @pytest.mark.asyncio
    async def test_redis_docker_starts_compose(self, layered_project: Path, fake_runner, commands_of):
        runner = fake_runner()

        await Generator(layered_project, runner).generate_util("redis", docker=True)

        assert commands_of(runner) == [
            "npm install ioredis",
            "docker --version",
            "docker compose up -d",
        ]
        compose_dir = layered_project / "src/utils/__redisConfig"
        assert Path(runner.run.await_args_list[-1].kwargs["cwd"]).resolve() == compose_dir.resolve()
        assert (compose_dir / "docker-compose.yml").is_file()

    @pytest.mark.asyncio
    async def test_redis_docker_unavailable(self, layered_project: Path, fake_runner, commands_of):
        runner = fake_runner({"docker --version": (127, "", "docker: not found")})

        with console.capture() as capture:
            await Generator(layered_project, runner).generate_util("redis", docker=True)

        assert "docker compose up -d" not in commands_of(runner)
        assert "Start it manually" in capture.get()
        assert (layered_project / "src/utils/redis.js").is_file()

    @pytest.mark.asyncio
    async def test_redis_compose_failure_is_reported(self, layered_project: Path, fake_runner):
        runner = fake_runner({"docker compose up": (1, "", "port is already allocated")})

        with console.capture() as capture:
            await Generator(layered_project, runner).generate_util("redis", docker=True)

        output = capture.get()
        assert "port is already allocated" in output
        assert "Start it manually" in output

    @pytest.mark.asyncio
    async def test_redis_without_docker_runs_no_docker(self, layered_project: Path, fake_runner, commands_of):
        runner = fake_runner()

        await Generator(layered_project, runner).generate_util("redis")

        assert commands_of(runner) == ["npm install ioredis"]
        assert not (layered_project / "src/utils/__redisConfig").exists()

    @pytest.mark.asyncio
    async def test_existing_util_requires_force(self, layered_project: Path, fake_runner):
        generator = Generator(layered_project, fake_runner())
        await generator.generate_util("notification")
        target = layered_project / "src/utils/notificationService.js"
        target.write_text("// edited\n", encoding="utf-8")

        with pytest.raises(ValidationError, match="use --force"):
            await generator.generate_util("notification")
        assert target.read_text() == "// edited\n"

        await generator.generate_util("notification", force=True)
        assert target.read_text() != "// edited\n"

    @pytest.mark.asyncio
    async def test_irrelevant_flags_are_warned(self, layered_project: Path, fake_runner, commands_of):
        runner = fake_runner()

        with console.capture() as capture:
            await Generator(layered_project, runner).generate_util("smtp", docker=True, cloud="gcp")

        output = capture.get()
        assert "--docker only applies to the redis util" in output
        assert "--cloud only applies to the fileupload util" in output
        assert commands_of(runner) == ["npm install nodemailer"]

    @pytest.mark.asyncio
    async def test_unknown_util(self, layered_project: Path, fake_runner):
        with pytest.raises(ValidationError, match="not a valid util"):
            await Generator(layered_project, fake_runner()).generate_util("sms")


class TestSetupDatabase:
    @pytest.mark.asyncio
    async def test_records_db_conf(self, modular_project: Path, fake_runner):
        generator = Generator(modular_project, fake_runner())

        await generator.setup_database(adapter="postgres")

        assert generator.metadata.adapter == "postgres"
        assert SargenMetadata.load(modular_project).db_conf == DbConf(
            orm="sequelize", adapter="postgres"
        )
        assert (modular_project / "src/common/config/config.json").is_file()


# ---------------------------------------------------------------------------
# setup
# ---------------------------------------------------------------------------


def _express_project(root: Path, dirs: tuple[str, ...], **package) -> Path:
    root.mkdir()
    for rel in dirs:
        (root / rel).mkdir(parents=True)
    data = {"name": "legacy", "dependencies": {"express": "^4.21.0"}, **package}
    (root / "package.json").write_text(json.dumps(data), encoding="utf-8")
    return root


class TestSetup:
    @pytest.mark.asyncio
    async def test_layered_project(self, tmp_path: Path):
        root = _express_project(
            tmp_path / "legacy",
            ("src/routes", "src/controllers"),
            dependencies={"express": "^4", "sequelize": "^6", "mysql2": "^3"},
        )

        metadata = await Setup(root).run()

        assert metadata.structure is StructureType.LAYERED
        assert metadata.db_conf == DbConf(orm="sequelize", adapter="mysql")
        assert (root / METADATA_FILENAME).is_file()
        assert (root / ".gitignore").is_file()

    @pytest.mark.asyncio
    async def test_modular_project(self, tmp_path: Path):
        root = _express_project(tmp_path / "legacy", ("src/modules", "src/common"))

        metadata = await Setup(root).run()

        assert metadata.structure is StructureType.MODULAR
        assert metadata.db_conf is None

    @pytest.mark.asyncio
    async def test_existing_gitignore_kept(self, tmp_path: Path):
        root = _express_project(tmp_path / "legacy", ("src/routes", "src/controllers"))
        (root / ".gitignore").write_text("dist/\n", encoding="utf-8")

        await Setup(root).run()

        assert (root / ".gitignore").read_text() == "dist/\n"

    @pytest.mark.asyncio
    async def test_missing_package_json(self, tmp_path: Path):
        with pytest.raises(ValidationError, match="No package.json"):
            await Setup(tmp_path).run()

    @pytest.mark.asyncio
    async def test_invalid_package_json(self, tmp_path: Path):
        (tmp_path / "package.json").write_text("{", encoding="utf-8")
        with pytest.raises(ValidationError, match="Invalid package.json"):
            await Setup(tmp_path).run()

    @pytest.mark.asyncio
    async def test_es_module_rejected(self, tmp_path: Path):
        root = _express_project(tmp_path / "legacy", ("src/routes", "src/controllers"), type="module")
        with pytest.raises(ValidationError, match="ES module"):
            await Setup(root).run()

    @pytest.mark.asyncio
    async def test_express_required(self, tmp_path: Path):
        root = _express_project(tmp_path / "legacy", (), dependencies={"koa": "^2"})
        with pytest.raises(ValidationError, match="express is not a dependency"):
            await Setup(root).run()

    @pytest.mark.asyncio
    async def test_unknown_structure(self, tmp_path: Path):
        root = _express_project(tmp_path / "legacy", ("lib",))
        with pytest.raises(ValidationError, match="Could not detect"):
            await Setup(root).run()
        assert not (root / METADATA_FILENAME).exists()

    @pytest.mark.asyncio
    async def test_existing_metadata(self, layered_project: Path):
        with pytest.raises(MetadataError, match="already exists"):
            await Setup(layered_project).run()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class TestCli:
    def test_parser_gen_module(self):
        args = _build_parser().parse_args(
            ["gen:module", "orders", "--crud", "--no-model", "--model-attributes", "a:string"]
        )
        assert args.command == "gen:module"
        assert args.crud is True
        assert args.model is False
        assert args.model_attributes == "a:string"

    def test_parser_init_defaults(self):
        args = _build_parser().parse_args(["init", "shop"])
        assert args.struct is None
        assert args.security == []
        assert args.verbose is False

    def test_parser_rejects_unknown_structure(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["init", "shop", "--struct", "hexagonal"])

    def test_parser_gen_util(self):
        args = _build_parser().parse_args(["gen:util", "fileupload", "--cloud", "gcp", "--force"])
        assert args.command == "gen:util"
        assert args.util_name == "fileupload"
        assert args.cloud == "gcp"
        assert args.force is True
        assert args.docker is False

    def test_parser_rejects_unknown_cloud(self):
        with pytest.raises(SystemExit):
            _build_parser().parse_args(["gen:util", "fileupload", "--cloud", "azure"])

    @pytest.mark.asyncio
    async def test_gen_util_dispatch(self, layered_project: Path):
        args = _build_parser().parse_args(["gen:util", "redis", "--docker"])

        with patch.object(Generator, "generate_util", AsyncMock()) as generate_util:
            await run_command(args, layered_project)

        generate_util.assert_awaited_once_with("redis", docker=True, cloud=None, force=False)

    @pytest.mark.asyncio
    async def test_gen_git_options(self, layered_project: Path):
        args = _build_parser().parse_args(
            ["gen:git", "--remote", "git@github.com:acme/shop.git", "--public", "--no-push"]
        )

        with patch.object(Generator, "setup_git", AsyncMock()) as setup_git:
            await run_command(args, layered_project)

        options = setup_git.await_args.args[0]
        assert isinstance(options, GitOptions)
        assert options.remote == "git@github.com:acme/shop.git"
        assert options.public and options.no_push
        assert options.message == "Initial commit: Project Setup"

    @pytest.mark.asyncio
    async def test_unknown_command(self, layered_project: Path):
        args = _build_parser().parse_args(["setup"])
        args.command = "gen:cache"
        with pytest.raises(PipelineError, match="unknown command"):
            await run_command(args, layered_project)

    def test_main_init_skip_install(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        main(["init", "shop", "--struct", "modular", "--skip-install"])

        assert SargenMetadata.load(tmp_path / "shop").structure is StructureType.MODULAR

    def test_main_exits_on_error(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        with pytest.raises(SystemExit) as excinfo:
            main(["gen:module", "orders"])

        assert excinfo.value.code == 1

    def test_main_reports_parse_errors(self, layered_project: Path, monkeypatch):
        monkeypatch.chdir(layered_project)

        with pytest.raises(SystemExit) as excinfo:
            main(["gen:module", "orders", "--model-attributes", "x:blob"])

        assert excinfo.value.code == 1
