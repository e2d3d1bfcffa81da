"""Shared pytest fixtures for the sargen test suite.

Provides reusable fixtures for:
- Temporary project directories
- A scripted fake CommandRunner (no real npm / git / gh processes)
- Mock asyncio subprocesses for CommandRunner itself
- Generated layered and modular projects with ``.sargen.json``
"""

from __future__ import annotations

import json
import shlex
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from sargen.config import SargenMetadata, StructureType
from sargen.scaffolder.project_gen import ProjectPlanner
from sargen.scaffolder.structure import StructureResolver
from sargen.scaffolder.templates import TemplateRenderer
from sargen.utils import CommandResult, CommandRunner


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary directory for generated projects (auto-cleanup)."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    yield project_dir


@pytest.fixture
def renderer() -> TemplateRenderer:
    """A renderer over the bundled templates."""
    return TemplateRenderer()


# ---------------------------------------------------------------------------
# Fake command runner
# ---------------------------------------------------------------------------

def _simulate_npm(cmd: list[str], cwd: Path) -> None:
    """Mimic the package.json side effects of ``npm init`` / ``npm install``."""
    package_json = cwd / "package.json"
    if cmd[:2] == ["npm", "init"]:
        package_json.write_text(
            json.dumps({"name": cwd.name, "version": "1.0.0", "main": "index.js"}, indent=2),
            encoding="utf-8",
        )
    elif cmd[:2] == ["npm", "install"] and package_json.is_file():
        package = json.loads(package_json.read_text(encoding="utf-8"))
        dev = "-D" in cmd
        key = "devDependencies" if dev else "dependencies"
        section = package.setdefault(key, {})
        for name in cmd[2:]:
            if name != "-D":
                section[name] = "^1.0.0"
        package_json.write_text(json.dumps(package, indent=2), encoding="utf-8")


@pytest.fixture
def fake_runner() -> Callable[..., AsyncMock]:
    """Factory for an ``AsyncMock`` CommandRunner with scripted results.

    Responses are keyed by a command prefix (``"git commit"``); the longest
    matching prefix wins.  Unscripted commands succeed with empty output.
    ``npm init`` / ``npm install`` also update ``package.json`` in ``cwd``.

    Usage:
        def test_thing(fake_runner):
            runner = fake_runner({"gh --version": CommandResult("gh", 127)})
            ...
            commands = [c.args[0] for c in runner.run.await_args_list]
    """
    def factory(
        responses: dict[str, CommandResult | tuple[int, str, str]] | None = None,
        simulate_npm: bool = True,
    ) -> AsyncMock:
        scripted = responses or {}

        async def run(cmd, cwd=None, timeout=None, env=None) -> CommandResult:
            parts = shlex.split(cmd) if isinstance(cmd, str) else list(cmd)
            cmd_str = " ".join(parts)
            if simulate_npm and cwd is not None:
                _simulate_npm(parts, Path(cwd))
            matches = [key for key in scripted if cmd_str.startswith(key)]
            if not matches:
                return CommandResult(command=cmd_str, exit_code=0)
            response = scripted[max(matches, key=len)]
            if isinstance(response, CommandResult):
                return response
            exit_code, stdout, stderr = response
            return CommandResult(command=cmd_str, exit_code=exit_code, stdout=stdout, stderr=stderr)

        runner = AsyncMock(spec=CommandRunner)
        runner.run = AsyncMock(side_effect=run)
        return runner

    return factory


def run_commands(runner: AsyncMock) -> list[str]:
    """Commands passed to a fake runner, joined into strings."""
    commands = []
    for call in runner.run.await_args_list:
        cmd = call.args[0] if call.args else call.kwargs["cmd"]
        commands.append(cmd if isinstance(cmd, str) else " ".join(cmd))
    return commands


@pytest.fixture
def commands_of() -> Callable[[AsyncMock], list[str]]:
    return run_commands


# ---------------------------------------------------------------------------
# Mock Subprocess (generic)
# ---------------------------------------------------------------------------

def _mock_stream(data: str | list[str]) -> MagicMock:
    """A pipe whose ``read`` yields *data* (one chunk per list item), then EOF."""
    chunks = [data] if isinstance(data, str) else list(data)
    stream = MagicMock()
    stream.read = AsyncMock(
        side_effect=[c.encode("utf-8") for c in chunks if c] + [b""]
    )
    return stream


@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.  Passing a list for ``stdout`` or
    ``stderr`` delivers one chunk per item.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str | list[str] = "",
        stderr: str | list[str] = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.stdout = _mock_stream(stdout)
        mock_proc.stderr = _mock_stream(stderr)
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


# ---------------------------------------------------------------------------
# Generated projects
# ---------------------------------------------------------------------------

def _make_project(
    root: Path,
    structure: StructureType,
    package: dict[str, Any] | None = None,
) -> Path:
    plan = ProjectPlanner().plan(root.name, structure)
    StructureResolver().materialize(root, plan.entries)
    SargenMetadata.for_project(root.name, root, structure).save(root)
    (root / "package.json").write_text(
        json.dumps(
            package
            or {
                "name": root.name,
                "version": "1.0.0",
                "dependencies": {"express": "^4.21.0"},
            },
            indent=2,
        ),
        encoding="utf-8",
    )
    return root


@pytest.fixture
def layered_project(tmp_path: Path) -> Path:
    """A freshly initialised layered project (no npm run)."""
    return _make_project(tmp_path / "shop", StructureType.LAYERED)


@pytest.fixture
def modular_project(tmp_path: Path) -> Path:
    """A freshly initialised modular project (no npm run)."""
    return _make_project(tmp_path / "shop", StructureType.MODULAR)


@pytest.fixture
def make_project() -> Callable[..., Path]:
    """Factory variant of the project fixtures."""
    return _make_project
