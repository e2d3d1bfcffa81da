"""sargen scaffolder -- plans and writes Express.js project files.

Generators never touch the file system themselves: they return structure
plans (``DirEntry`` / ``FileEntry`` lists) and anchor patches, which the
``StructureResolver`` and the patcher then apply.

Quick usage::

    from sargen.scaffolder import ModulePlanner, StructureResolver

    plan = ModulePlanner().plan("orders")
    StructureResolver().materialize("./my-api", plan)
"""

from sargen.scaffolder.docker_gen import (
    DatabaseCredentials,
    DockerGenerator,
    plan_monitoring_files,
    redis_compose,
)
from sargen.scaffolder.middleware_gen import MiddlewareName, MiddlewarePlan, plan_middleware
from sargen.scaffolder.module_gen import ModuleOptions, ModulePlanner, ValidationError
from sargen.scaffolder.patcher import AnchorPatch, PatchError, PatchPosition, apply_patch
from sargen.scaffolder.project_gen import ProjectPlan, ProjectPlanner
from sargen.scaffolder.structure import (
    DirEntry,
    FileEntry,
    MaterializeReport,
    StructureError,
    StructureResolver,
)
from sargen.scaffolder.templates import TemplateError, TemplateNotFoundError, TemplateRenderer
from sargen.scaffolder.util_gen import CloudProvider, UtilName, UtilOptions, UtilPlan, plan_util

__all__ = [
    # Plans and materialisation
    "DirEntry",
    "FileEntry",
    "MaterializeReport",
    "StructureError",
    "StructureResolver",
    # Templates
    "TemplateRenderer",
    "TemplateError",
    "TemplateNotFoundError",
    # Patching
    "AnchorPatch",
    "PatchPosition",
    "PatchError",
    "apply_patch",
    # Generators
    "ProjectPlanner",
    "ProjectPlan",
    "ModulePlanner",
    "ModuleOptions",
    "ValidationError",
    "MiddlewareName",
    "MiddlewarePlan",
    "plan_middleware",
    "UtilName",
    "UtilPlan",
    "UtilOptions",
    "CloudProvider",
    "plan_util",
    "DockerGenerator",
    "DatabaseCredentials",
    "plan_monitoring_files",
    "redis_compose",
]
