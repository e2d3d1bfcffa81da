"""Module and migration planning.

A module is the controller / route / service / model bundle generated for
one resource by ``sargen gen:module``.  :class:`ModulePlanner` turns a module
name, a parsed attribute list and :class:`ModuleOptions` into a structure
plan; it never touches the file system, so identical inputs always give
identical plans.  The migration file and the route-index patch are planned by
separate helpers from the same attribute list.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Sequence

from pydantic import BaseModel, Field

from sargen.config import StructureType, structure_path
from sargen.parser.models import AttributeDescriptor
from sargen.utils import capitalize_first

from .patcher import AnchorPatch, PatchPosition
from .structure import DirEntry, FileEntry
from .templates import TemplateRenderer

MODULE_NAME_RE = re.compile(r"^[a-z][a-zA-Z_]*$")
MAX_MODULE_NAME_LENGTH = 20

MODULE_ARTIFACTS = ("controller", "route", "service", "model")

ROUTE_INDEX_ANCHOR = "module.exports"

_SEQUELIZE_MODEL_TEMPLATE = "module/models/sequelize.model.js.j2"
_GENERIC_MODEL_TEMPLATE = "module/model.js.j2"
_MIGRATION_TEMPLATE = "module/migration.js.j2"
_PAGINATION_TEMPLATE = "module/paginationService.js.j2"


class ValidationError(ValueError):
    """Raised when a generator input is rejected before anything is written."""


class ModuleOptions(BaseModel):
    """Options of one ``gen:module`` run."""

    crud: bool = Field(default=False, description="Generate CRUD handlers, services and routes")
    include_model: bool = Field(default=True, description="Generate the model file")
    structure: StructureType = Field(default=StructureType.LAYERED)
    orm: str = Field(default="", description="ORM recorded in .sargen.json, e.g. 'sequelize'")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_module_name(module_name: str) -> None:
    """Reject names that would produce invalid identifiers or paths.

    Raises:
        ValidationError: If the name is empty, longer than 20 characters or
            does not match ``^[a-z][a-zA-Z_]*$``.
    """
    if not module_name:
        raise ValidationError("Module name is required")
    if len(module_name) > MAX_MODULE_NAME_LENGTH:
        raise ValidationError(
            f"Module name must be {MAX_MODULE_NAME_LENGTH} characters or fewer"
        )
    if not MODULE_NAME_RE.match(module_name):
        raise ValidationError(
            f"Invalid module name '{module_name}'. Module names must start with a "
            "lowercase letter and contain only letters and underscores."
        )


def module_file_path(module_name: str, artifact: str, structure: StructureType) -> str:
    """Project-relative path of one module artifact, e.g. ``src/controllers/ordersController.js``."""
    filename = f"{module_name}{capitalize_first(artifact)}.js"
    if StructureType(structure) is StructureType.MODULAR:
        return f"{structure_path(structure, 'modules')}/{module_name}/{artifact}s/{filename}"
    return f"{structure_path(structure, 'src')}/{artifact}s/{filename}"


def ensure_module_absent(
    project_path: str | Path, module_name: str, options: ModuleOptions
) -> None:
    """Refuse to generate over an existing module.

    Modular projects check the module directory; layered projects check each
    artifact file that would be generated.

    Raises:
        ValidationError: If the module (or any of its files) already exists.
    """
    root = Path(project_path)
    if options.structure is StructureType.MODULAR:
        module_dir = root / structure_path(options.structure, "modules") / module_name
        if module_dir.exists():
            raise ValidationError(
                f"Operation aborted, module '{module_name}' already exists at {module_dir}"
            )
        return

    existing = [
        rel
        for rel in (
            module_file_path(module_name, artifact, options.structure)
            for artifact in _artifacts(options)
        )
        if (root / rel).exists()
    ]
    if existing:
        raise ValidationError(
            "Operation aborted, module files already exist:\n" + "\n".join(existing)
        )


def _artifacts(options: ModuleOptions) -> tuple[str, ...]:
    if options.include_model:
        return MODULE_ARTIFACTS
    return tuple(a for a in MODULE_ARTIFACTS if a != "model")


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


class ModulePlanner:
    """Builds the structure plan of one module.

    CRUD fragments (``module/cruds/*.j2``) are rendered eagerly here and
    passed to the artifact templates as plain strings, so every artifact of
    the module shares one ``template_data`` mapping.
    """

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    def plan(
        self,
        module_name: str,
        attributes: Sequence[AttributeDescriptor] = (),
        options: ModuleOptions | None = None,
    ) -> list[DirEntry | FileEntry]:
        """Plan the directories and files of *module_name*.

        Args:
            module_name: Lower-camel module name, e.g. ``"orders"``.
            attributes: Parsed model attributes; may be empty.
            options: Generation options; defaults to a layered, non-CRUD
                module with a model.

        Returns:
            The directory entry of the layout followed by one file entry per
            artifact, plus ``paginationService.js`` for CRUD modules with
            attributes.

        Raises:
            ValidationError: If *module_name* is invalid.
        """
        options = options or ModuleOptions()
        validate_module_name(module_name)

        data = self.template_data(module_name, attributes, options)
        plan: list[DirEntry | FileEntry] = [
            DirEntry(paths=self._directories(module_name, options.structure))
        ]
        for artifact in _artifacts(options):
            plan.append(
                FileEntry(
                    path=module_file_path(module_name, artifact, options.structure),
                    template_ref=self._template_for(artifact, options.orm),
                    template_data=data,
                )
            )
        if data["pagination_import"]:
            plan.append(
                FileEntry(
                    path=_sibling(
                        module_file_path(module_name, "service", options.structure),
                        "paginationService.js",
                    ),
                    template_ref=_PAGINATION_TEMPLATE,
                )
            )
        return plan

    def template_data(
        self,
        module_name: str,
        attributes: Sequence[AttributeDescriptor],
        options: ModuleOptions,
    ) -> dict[str, Any]:
        """The mapping every artifact template of the module is rendered with."""
        capitalized = capitalize_first(module_name)
        attribute_dicts = [attribute.to_template_dict() for attribute in attributes]

        if options.structure is StructureType.MODULAR:
            models_index = "../../../common/models/index.js"
        else:
            models_index = "../models/index.js"
        uses_model = options.include_model or bool(attribute_dicts)
        uses_pagination = options.crud and bool(attribute_dicts)

        data: dict[str, Any] = {
            "module_name": module_name,
            "module_name_capitalized": capitalized,
            "controller_import": (
                f'const {module_name}Controller = require("../controllers/{module_name}Controller.js");'
            ),
            "service_import": (
                f'const {module_name}Service = require("../services/{module_name}Service.js");'
            ),
            "model_import": f'const db = require("{models_index}");' if uses_model else "",
            "pagination_import": (
                'const paginationService = require("./paginationService.js");'
                if uses_pagination
                else ""
            ),
            "attributes": attribute_dicts,
            "crud_methods": "",
            "crud_services": "",
            "crud_routes": "",
        }

        if options.crud:
            fragment_data = {
                "module_name": module_name,
                "module_name_capitalized": capitalized,
                "attributes": attribute_dicts,
            }
            for key in ("methods", "services", "routes"):
                rendered = self.renderer.render(f"module/cruds/crud.{key}.js.j2", fragment_data)
                data[f"crud_{key}"] = rendered.rstrip()
        return data

    def _directories(self, module_name: str, structure: StructureType) -> list[str]:
        if structure is StructureType.MODULAR:
            base = f"{structure_path(structure, 'modules')}/{module_name}"
            return [base] + [
                f"{base}/{sub}" for sub in ("controllers", "routes", "services", "models", "dto")
            ]
        src = structure_path(structure, "src")
        return [f"{src}/{sub}" for sub in ("controllers", "routes", "services", "models")]

    @staticmethod
    def _template_for(artifact: str, orm: str) -> str:
        if artifact == "model":
            return _SEQUELIZE_MODEL_TEMPLATE if orm == "sequelize" else _GENERIC_MODEL_TEMPLATE
        return f"module/{artifact}.js.j2"


def _sibling(path: str, filename: str) -> str:
    return f"{path.rsplit('/', 1)[0]}/{filename}"


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


def migration_content(
    module_name: str,
    attributes: Sequence[AttributeDescriptor],
    renderer: TemplateRenderer | None = None,
) -> str:
    """Render the Sequelize migration creating the table of *module_name*."""
    renderer = renderer or TemplateRenderer()
    return renderer.render(
        _MIGRATION_TEMPLATE,
        {
            "module_name": module_name,
            "attributes": [attribute.to_template_dict() for attribute in attributes],
        },
    )


def migration_filename(module_name: str, timestamp: datetime | None = None) -> str:
    """``<YYYYMMDDHHMMSS>-create-<module>.js``, the sequelize-cli naming scheme."""
    timestamp = timestamp or datetime.now()
    return f"{timestamp:%Y%m%d%H%M%S}-create-{module_name}.js"


def migration_entry(
    module_name: str,
    attributes: Sequence[AttributeDescriptor],
    structure: StructureType = StructureType.LAYERED,
    timestamp: datetime | None = None,
    renderer: TemplateRenderer | None = None,
) -> FileEntry:
    """The file entry of the migration for *module_name* under the migrations dir."""
    migrations_dir = structure_path(structure, "migrations")
    return FileEntry(
        path=f"{migrations_dir}/{migration_filename(module_name, timestamp)}",
        content=migration_content(module_name, attributes, renderer),
    )


# ---------------------------------------------------------------------------
# Route registration
# ---------------------------------------------------------------------------


def route_registration_line(module_name: str, structure: StructureType) -> str:
    """The ``router.use(...)`` line mounting the module's router."""
    if StructureType(structure) is StructureType.MODULAR:
        # src/common/routes -> src/modules
        route_file = f"../../modules/{module_name}/routes/{module_name}Route.js"
    else:
        route_file = f"./{module_name}Route.js"
    return f'router.use("/{module_name}", require("{route_file}"));'


def route_registration_patch(
    project_path: str | Path, module_name: str, structure: StructureType
) -> AnchorPatch:
    """Patch registering the module in the route index before the last ``module.exports``."""
    return AnchorPatch(
        target_file=Path(project_path) / structure_path(structure, "route_index"),
        insertion=route_registration_line(module_name, structure),
        position=PatchPosition.BEFORE_ANCHOR,
        anchor_text=ROUTE_INDEX_ANCHOR,
    )
