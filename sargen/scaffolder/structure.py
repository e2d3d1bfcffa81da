"""Declarative project-structure plans and their materialisation.

A plan is an ordered list of :class:`DirEntry` and :class:`FileEntry`
descriptors.  :class:`StructureResolver` creates every directory first and
then writes every file, rendering ``template_ref`` files through the
:class:`~sargen.scaffolder.templates.TemplateRenderer`.  Existing files are
left untouched unless their entry sets ``force``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Any, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from sargen.utils import print_success, print_verbose

from .templates import TemplateRenderer


class StructureError(Exception):
    """Raised when a directory or file of a plan cannot be written."""

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        super().__init__(message)


# ---------------------------------------------------------------------------
# Plan descriptors
# ---------------------------------------------------------------------------


class DirEntry(BaseModel):
    """Directories to ensure exist, relative to the base path."""
    type: Literal["dir"] = "dir"
    paths: list[str] = Field(default_factory=list)


class FileEntry(BaseModel):
    """A file to create from literal content or from a named template."""
    type: Literal["file"] = "file"
    path: str = Field(..., min_length=1)
    content: Optional[str] = None
    template_ref: Optional[str] = Field(
        default=None, description="Template path relative to the template directory"
    )
    template_data: Optional[dict[str, Any]] = None
    force: bool = Field(default=False, description="Overwrite the file if it exists")


StructureDescriptor = Annotated[Union[DirEntry, FileEntry], Field(discriminator="type")]

_PLAN_ADAPTER: TypeAdapter[list[StructureDescriptor]] = TypeAdapter(list[StructureDescriptor])


def coerce_plan(plan: Iterable[Any]) -> list[DirEntry | FileEntry]:
    """Validate a plan given as descriptor models and/or plain dicts."""
    items = [
        item.model_dump() if isinstance(item, (DirEntry, FileEntry)) else item
        for item in plan
    ]
    try:
        return _PLAN_ADAPTER.validate_python(items)
    except PydanticValidationError as exc:
        raise StructureError(f"Invalid structure plan: {exc}") from exc


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class MaterializeReport:
    """What a :meth:`StructureResolver.materialize` call did on disk."""

    created_dirs: list[str] = field(default_factory=list)
    created_files: list[str] = field(default_factory=list)
    overwritten_files: list[str] = field(default_factory=list)
    skipped_files: list[str] = field(default_factory=list)

    @property
    def written_files(self) -> list[str]:
        return self.created_files + self.overwritten_files

    def summary(self) -> dict[str, str]:
        return {
            "Directories created": str(len(self.created_dirs)),
            "Files created": str(len(self.created_files)),
            "Files overwritten": str(len(self.overwritten_files)),
            "Files skipped": str(len(self.skipped_files)),
        }


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class StructureResolver:
    """Materialises structure plans under a base directory."""

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    def materialize(self, base_path: str | Path, plan: Iterable[Any]) -> MaterializeReport:
        """Create the directories and files described by *plan*.

        All directory entries are processed first, in plan order, then all
        file entries in plan order.  Processing stops at the first failure;
        whatever was already written stays on disk.

        Args:
            base_path: Directory every plan path is relative to.
            plan: Descriptor models or their dict form.

        Returns:
            A :class:`MaterializeReport`.

        Raises:
            StructureError: If a directory or file cannot be written, or a
                path escapes *base_path*.
            TemplateNotFoundError: If a ``template_ref`` names no template.
            TemplateError: If a template fails to render.
        """
        base = Path(base_path)
        entries = coerce_plan(plan)
        report = MaterializeReport()

        for entry in entries:
            if isinstance(entry, DirEntry):
                for rel in entry.paths:
                    self._ensure_dir(base, rel, report)

        for entry in entries:
            if isinstance(entry, FileEntry):
                self._write_file(base, entry, report)

        return report

    def render_entry(self, entry: FileEntry) -> str:
        """Return the content *entry* would be written with."""
        if entry.template_ref:
            return self.renderer.render(entry.template_ref, entry.template_data or {})
        return entry.content or ""

    # -- Internal helpers --------------------------------------------------

    def _ensure_dir(self, base: Path, rel: str, report: MaterializeReport) -> None:
        dir_path = _resolve_inside(base, rel)
        if dir_path.is_dir():
            return
        try:
            dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StructureError(f"Failed creating directory {rel}: {exc}", rel) from exc
        report.created_dirs.append(rel)
        print_success(f"Created directory: {rel}")

    def _write_file(self, base: Path, entry: FileEntry, report: MaterializeReport) -> None:
        file_path = _resolve_inside(base, entry.path)
        existed = file_path.exists()
        if existed and not entry.force:
            report.skipped_files.append(entry.path)
            print_verbose(f"Skipped existing file: {entry.path}")
            return

        content = self.render_entry(entry)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StructureError(f"Failed writing file {entry.path}: {exc}", entry.path) from exc

        if existed:
            report.overwritten_files.append(entry.path)
            print_success(f"Overwrote file: {entry.path}")
        else:
            report.created_files.append(entry.path)
            source = f" from template {entry.template_ref}" if entry.template_ref else ""
            print_success(f"Created file{source}: {entry.path}")


def _resolve_inside(base: Path, rel: str) -> Path:
    """Join *rel* onto *base*, rejecting absolute paths and ``..`` escapes."""
    candidate = Path(rel)
    if candidate.is_absolute():
        raise StructureError(f"Plan paths must be relative: {rel}", rel)
    target = base / candidate
    base_resolved = base.resolve()
    if not target.resolve().is_relative_to(base_resolved):
        raise StructureError(f"Plan path escapes the project directory: {rel}", rel)
    return target
