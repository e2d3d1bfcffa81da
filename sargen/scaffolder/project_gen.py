"""Initial project layouts for ``sargen init``.

Plans the skeleton of a new Express.js project in either the ``layered`` or
the ``modular`` structure: the source directories, ``app.js`` with the
selected security middlewares wired in, the router index, environment files,
``.gitignore`` and ``README.md``.  An optional test endpoint module can be
planned on top, together with the patch that mounts it in the router index.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from sargen.config import ProjectDefaults, StructureType, structure_path
from sargen.utils import print_info, print_warning

from .patcher import AnchorPatch, PatchPosition
from .structure import DirEntry, FileEntry


# ---------------------------------------------------------------------------
# Security middlewares
# ---------------------------------------------------------------------------

# Option name -> npm package.
SECURITY_MIDDLEWARES: dict[str, str] = {
    "rateLimit": "express-rate-limit",
}

# Option name -> app.use(...) line added to app.js.
_SECURITY_USAGE: dict[str, str] = {
    "rateLimit": (
        "app.use(rateLimit({ windowMs: 1 * 60 * 1000, limit: 100, "
        'message: "Too many requests, please try again after a minute." }));'
    ),
}


@dataclass
class SecurityWiring:
    """``app.js`` lines and npm packages for the selected security middlewares."""

    import_lines: list[str] = field(default_factory=list)
    use_lines: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)

    def template_data(self) -> dict[str, str]:
        return {
            "import_middlewares": "\n".join(self.import_lines),
            "use_middlewares": "\n".join(self.use_lines),
        }


def resolve_security(security: Iterable[str]) -> SecurityWiring:
    """Map security option names to app.js wiring.

    Unknown names are reported and skipped; duplicates are wired once.
    """
    wiring = SecurityWiring()
    for name in security:
        package = SECURITY_MIDDLEWARES.get(name)
        if package is None:
            print_warning(f"Security middleware '{name}' is not available. Skipping...")
            print_info(f"Available security options: {', '.join(SECURITY_MIDDLEWARES)}")
            continue
        if package in wiring.dependencies:
            continue
        wiring.dependencies.append(package)
        wiring.import_lines.append(f'const {name} = require("{package}");')
        wiring.use_lines.append(_SECURITY_USAGE[name])
    return wiring


# ---------------------------------------------------------------------------
# Project plan
# ---------------------------------------------------------------------------


@dataclass
class ProjectPlan:
    """Everything ``sargen init`` writes and installs for a new project."""

    entries: list[DirEntry | FileEntry]
    dependencies: list[str]
    dev_dependencies: list[str]
    scripts: dict[str, str]


_LAYOUT_DIRS: dict[StructureType, tuple[str, ...]] = {
    StructureType.LAYERED: (
        "config", "controllers", "middlewares", "models", "routes", "services", "utils",
    ),
    StructureType.MODULAR: (
        "modules", "config", "middlewares", "models", "routes", "utils",
    ),
}


class ProjectPlanner:
    """Plans new projects and their optional test endpoint."""

    def __init__(self, defaults: ProjectDefaults | None = None) -> None:
        self.defaults = defaults or ProjectDefaults()

    def plan(
        self,
        project_name: str,
        structure: StructureType | str = StructureType.LAYERED,
        security: Iterable[str] = (),
    ) -> ProjectPlan:
        """Plan the initial tree of *project_name*.

        Args:
            project_name: Name shown in the welcome route and README.
            structure: ``layered`` or ``modular``.
            security: Security middleware option names, e.g. ``["rateLimit"]``.

        Returns:
            A :class:`ProjectPlan`; its dependencies include the packages of
            the recognised security middlewares.
        """
        structure = StructureType(structure)
        wiring = resolve_security(security)

        env_data = {
            "port": self.defaults.env.get("port", 8000),
            "node_env": self.defaults.env.get("node_env", "development"),
        }
        app_data = {"project_name": project_name, **wiring.template_data()}

        entries: list[DirEntry | FileEntry] = [
            DirEntry(
                paths=[structure_path(structure, key) for key in _LAYOUT_DIRS[structure]]
            ),
            FileEntry(
                path="app.js",
                template_ref=f"{structure.value}/app.js.j2",
                template_data=app_data,
            ),
            FileEntry(
                path=structure_path(structure, "route_index"),
                template_ref="layered/routeIndex.js.j2",
            ),
            FileEntry(path=".env", template_ref="project/env.j2", template_data=env_data),
            FileEntry(path=".gitignore", template_ref="project/gitignore.j2"),
            FileEntry(
                path="README.md",
                template_ref="project/README.md.j2",
                template_data={
                    "project_name": project_name,
                    "structure": structure.value,
                    "port": env_data["port"],
                },
            ),
        ]
        if structure is StructureType.MODULAR:
            # app.js loads .env.<NODE_ENV> when NODE_ENV is set
            entries.append(
                FileEntry(
                    path=f".env.{env_data['node_env']}",
                    template_ref="project/env.j2",
                    template_data=env_data,
                )
            )

        dependencies = list(self.defaults.dependencies)
        dependencies.extend(d for d in wiring.dependencies if d not in dependencies)
        return ProjectPlan(
            entries=entries,
            dependencies=dependencies,
            dev_dependencies=list(self.defaults.dev_dependencies),
            scripts=dict(self.defaults.scripts),
        )

    def plan_test_endpoint(
        self, project_path: str | Path, structure: StructureType | str
    ) -> tuple[list[DirEntry | FileEntry], AnchorPatch]:
        """Plan the ``GET /api/v1/test/test-api`` endpoint.

        Returns:
            The controller / route plan and the patch mounting the route in
            the router index.
        """
        structure = StructureType(structure)
        if structure is StructureType.MODULAR:
            base = f"{structure_path(structure, 'modules')}/test"
            route_import = "../../modules/test/routes/testRoute"
            entries: list[DirEntry | FileEntry] = [
                DirEntry(
                    paths=[
                        f"{base}/{sub}"
                        for sub in ("controllers", "routes", "services", "models", "dto")
                    ]
                )
            ]
        else:
            base = structure_path(structure, "src")
            route_import = "./testRoute"
            entries = []

        entries.extend(
            [
                FileEntry(
                    path=f"{base}/controllers/testController.js",
                    template_ref="test/testController.js.j2",
                ),
                FileEntry(
                    path=f"{base}/routes/testRoute.js",
                    template_ref="test/testRoute.js.j2",
                    template_data={"controller_path": "../controllers/testController"},
                ),
            ]
        )
        patch = AnchorPatch(
            target_file=Path(project_path) / structure_path(structure, "route_index"),
            insertion=f"router.use('/test', require('{route_import}'));",
            position=PatchPosition.BEFORE_ANCHOR,
            anchor_text="module.exports = router;",
        )
        return entries, patch
