"""npm operations on a generated project.

All commands go through an injected :class:`~sargen.utils.CommandRunner`, so
tests can replace it with an ``AsyncMock``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from sargen.utils import (
    CommandRunner,
    load_json,
    print_success,
    print_verbose,
    print_warning,
    save_json,
)

PACKAGE_JSON = "package.json"


class NpmManager:
    """Runs ``npm`` in a project directory and edits its ``package.json``."""

    def __init__(self, project_path: str | Path, runner: CommandRunner | None = None) -> None:
        self.project_path = Path(project_path)
        self.runner = runner or CommandRunner()

    @property
    def package_json_path(self) -> Path:
        return self.project_path / PACKAGE_JSON

    def read_package_json(self) -> dict[str, Any]:
        """Parsed ``package.json``; an empty dict when the file is absent.

        Raises:
            json.JSONDecodeError: If the file is not valid JSON.
        """
        try:
            return load_json(self.package_json_path)
        except FileNotFoundError:
            return {}

    async def init(self) -> None:
        """Run ``npm init -y``.

        Raises:
            ExternalCommandError: If npm fails or times out.
        """
        print_verbose(f"Initializing npm project in {self.project_path}")
        result = await self.runner.run(["npm", "init", "-y"], cwd=self.project_path)
        result.check()

    def filter_new(
        self, dependencies: Iterable[str], dev_dependencies: Iterable[str] = ()
    ) -> tuple[list[str], list[str]]:
        """Drop packages already declared in ``package.json``, keeping order."""
        package = self.read_package_json()
        existing = package.get("dependencies") or {}
        existing_dev = package.get("devDependencies") or {}
        new = _unique(d for d in dependencies if d not in existing)
        new_dev = _unique(d for d in dev_dependencies if d not in existing_dev)
        return new, new_dev

    async def install(
        self, dependencies: Iterable[str] = (), dev_dependencies: Iterable[str] = ()
    ) -> tuple[list[str], list[str]]:
        """Install the packages not yet declared in ``package.json``.

        Returns:
            The ``(dependencies, dev_dependencies)`` that were installed.

        Raises:
            ExternalCommandError: If an ``npm install`` fails.
        """
        new, new_dev = self.filter_new(dependencies, dev_dependencies)

        if new:
            print_verbose(f"Installing dependencies... {', '.join(new)}")
            result = await self.runner.run(["npm", "install", *new], cwd=self.project_path)
            result.check()
        else:
            print_verbose("No dependencies to install")

        if new_dev:
            print_verbose(f"Installing dev dependencies... {', '.join(new_dev)}")
            result = await self.runner.run(
                ["npm", "install", "-D", *new_dev], cwd=self.project_path
            )
            result.check()
        else:
            print_verbose("No dev dependencies to install")

        return new, new_dev

    def update_package_json(self, key: str, value: Any) -> None:
        """Set top-level *key* of ``package.json`` to *value*.

        Raises:
            FileNotFoundError: If the project has no ``package.json``.
        """
        if not self.package_json_path.is_file():
            raise FileNotFoundError(f"No {PACKAGE_JSON} found in {self.project_path}")
        package = load_json(self.package_json_path)
        package[key] = value
        save_json(package, self.package_json_path)
        print_success(f"Updated {PACKAGE_JSON} {key}")

    def add_scripts(self, scripts: dict[str, str]) -> list[str]:
        """Merge *scripts* into ``package.json`` without replacing existing ones.

        Returns:
            The script names that were added.  A project without a
            ``package.json`` is left alone with a warning.
        """
        if not self.package_json_path.is_file():
            print_warning(f"No {PACKAGE_JSON} found; skipping scripts {', '.join(scripts)}")
            return []
        package = load_json(self.package_json_path)
        current = package.get("scripts") or {}
        added = [name for name in scripts if name not in current]
        if not added:
            return []
        package["scripts"] = {**current, **{name: scripts[name] for name in added}}
        save_json(package, self.package_json_path)
        print_verbose(f"Added scripts to {PACKAGE_JSON}: {', '.join(added)}")
        return added


def _unique(items: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
