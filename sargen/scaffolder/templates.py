"""Jinja2 template rendering for project scaffolding.

Provides the TemplateRenderer class which loads Jinja2 templates from the
``sargen/scaffolder/templates/`` directory and renders them with
per-file data.  Compiled templates are kept in a :class:`TemplateCache`
keyed by their exact source text, so repeated renders of the same source
within one process compile it once.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import jinja2
from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template


# ---------------------------------------------------------------------------
# Template directory discovery
# ---------------------------------------------------------------------------

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TemplateError(Exception):
    """Raised when a template cannot be compiled or rendered."""

    def __init__(self, message: str, template_name: str = "") -> None:
        self.template_name = template_name
        super().__init__(message)


class TemplateNotFoundError(TemplateError):
    """Raised when a named template source does not exist."""


# ---------------------------------------------------------------------------
# TemplateCache
# ---------------------------------------------------------------------------


class TemplateCache:
    """Compiled templates keyed by source text. No eviction."""

    def __init__(self) -> None:
        self._compiled: dict[str, Template] = {}

    def get(self, source: str) -> Template | None:
        return self._compiled.get(source)

    def put(self, source: str, template: Template) -> None:
        self._compiled[source] = template

    def clear(self) -> None:
        self._compiled.clear()

    def __contains__(self, source: object) -> bool:
        return source in self._compiled

    def __len__(self) -> int:
        return len(self._compiled)


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for project scaffolding.

    The renderer discovers ``.j2`` template files under a configurable
    template directory.  Undefined variables are fatal (``StrictUndefined``)
    so that a template referencing data the caller did not supply fails
    loudly instead of emitting broken JavaScript.
    """

    def __init__(
        self,
        template_dir: str | Path | None = None,
        cache: TemplateCache | None = None,
    ) -> None:
        if template_dir is None:
            template_dir = _DEFAULT_TEMPLATE_DIR
        self.template_dir = Path(template_dir)
        self.cache = cache if cache is not None else TemplateCache()
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
    # -- Compilation -------------------------------------------------------

    def compile(self, source: str, template_name: str = "") -> Template:
        """Return the compiled template for *source*, compiling at most once."""
        template = self.cache.get(source)
        if template is not None:
            return template
        try:
            template = self.env.from_string(source)
        except jinja2.TemplateSyntaxError as exc:
            label = template_name or "<string>"
            raise TemplateError(
                f"Template syntax error in {label} line {exc.lineno}: {exc.message}",
                template_name,
            ) from exc
        self.cache.put(source, template)
        return template

    # -- Rendering ---------------------------------------------------------

    def render_string(
        self,
        source: str,
        context: Mapping[str, Any] | None = None,
        template_name: str = "",
    ) -> str:
        """Render an inline template string with the provided context.

        Raises:
            TemplateError: On syntax errors or references to missing data.
        """
        template = self.compile(source, template_name)
        try:
            return template.render(dict(context or {}))
        except jinja2.UndefinedError as exc:
            label = template_name or "<string>"
            raise TemplateError(f"Missing template data in {label}: {exc.message}", template_name) from exc
        except jinja2.TemplateError as exc:
            label = template_name or "<string>"
            raise TemplateError(f"Failed rendering {label}: {exc}", template_name) from exc

    def load_source(self, template_name: str) -> str:
        """Return the raw source of a template stored under the template directory.

        Raises:
            TemplateNotFoundError: If no such template exists.
        """
        try:
            source, _filename, _uptodate = self.env.loader.get_source(self.env, template_name)
        except jinja2.TemplateNotFound as exc:
            raise TemplateNotFoundError(
                f"Template not found: {template_name}", template_name
            ) from exc
        return source

    def render(self, template_name: str, context: Mapping[str, Any] | None = None) -> str:
        """Render a named template with the provided context.

        Args:
            template_name: Path relative to the template directory (e.g.
                ``"module/controller.js.j2"``).
            context: Variables available inside the template.

        Returns:
            The rendered template content as a string.
        """
        return self.render_string(self.load_source(template_name), context, template_name)
