"""Shared utility functions for sargen.

Provides async command execution, JSON I/O, name helpers and Rich-based
terminal output.  Every shell-out made by the tool goes through
:class:`CommandRunner` so that callers can inject a fake runner in tests
instead of spawning real ``npm`` or ``git`` processes.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()

DEFAULT_COMMAND_TIMEOUT = 300
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024

_verbose = False


# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


class ExternalCommandError(Exception):
    """Raised when a shelled-out process fails, times out or floods its output."""

    def __init__(
        self,
        message: str,
        command: str = "",
        stdout: str = "",
        stderr: str = "",
        exit_code: int = -1,
    ) -> None:
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        super().__init__(message)


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    command: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "CommandResult":
        """Return ``self`` or raise :class:`ExternalCommandError` on a non-zero exit."""
        if not self.success:
            raise ExternalCommandError(
                f"Command failed (exit {self.exit_code}): {self.command}\n{self.stderr}".rstrip(),
                command=self.command,
                stdout=self.stdout,
                stderr=self.stderr,
                exit_code=self.exit_code,
            )
        return self


class _OutputLimitExceeded(Exception):
    """Internal signal: the combined output crossed ``max_output_bytes``."""


class CommandRunner:
    """Runs external commands with a bounded timeout and output buffer.

    Args:
        timeout: Default wall-clock limit in seconds for each command.
        max_output_bytes: Maximum combined size of captured stdout and stderr.
            Larger output is treated as a failure of the step.
    """

    def __init__(
        self,
        timeout: int = DEFAULT_COMMAND_TIMEOUT,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> None:
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    async def run(
        self,
        cmd: str | list[str],
        cwd: str | Path | None = None,
        timeout: int | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run *cmd* and capture its output.

        A string is executed through the shell, a list is executed directly.

        Returns:
            A :class:`CommandResult`.  A missing executable is reported as
            exit code 127 rather than raised.

        Raises:
            ExternalCommandError: If the command exceeds its timeout or the
                output buffer limit.
        """
        limit = timeout if timeout is not None else self.timeout
        cmd_str = cmd if isinstance(cmd, str) else " ".join(cmd)

        merged_env: dict[str, str] | None = None
        if env:
            merged_env = {**os.environ, **env}

        try:
            if isinstance(cmd, list):
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(cwd) if cwd else None,
                    env=merged_env,
                )
            else:
                process = await asyncio.create_subprocess_shell(
                    cmd,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(cwd) if cwd else None,
                    env=merged_env,
                )
        except FileNotFoundError as exc:
            return CommandResult(command=cmd_str, exit_code=127, stderr=str(exc))

        stdout_buf = bytearray()
        stderr_buf = bytearray()
        try:
            await asyncio.wait_for(
                self._collect(process, stdout_buf, stderr_buf), timeout=limit
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ExternalCommandError(
                f"Command timed out after {limit}s: {cmd_str}",
                command=cmd_str,
            )
        except _OutputLimitExceeded:
            process.kill()
            await process.wait()
            raise ExternalCommandError(
                f"Command output exceeded {self.max_output_bytes} bytes: {cmd_str}",
                command=cmd_str,
                stdout=_decode(stdout_buf)[-2000:],
                stderr=_decode(stderr_buf)[-2000:],
            ) from None

        stdout_str = _decode(stdout_buf)
        stderr_str = _decode(stderr_buf)

        if is_verbose():
            for line in (stdout_str, stderr_str):
                if line:
                    print_verbose(line)

        return CommandResult(
            command=cmd_str,
            exit_code=process.returncode or 0,
            stdout=stdout_str,
            stderr=stderr_str,
        )

    async def _collect(
        self, process: Any, stdout_buf: bytearray, stderr_buf: bytearray
    ) -> None:
        """Read both pipes chunk by chunk until EOF and wait for the exit.

        Raises:
            _OutputLimitExceeded: As soon as the combined size crosses
                ``max_output_bytes``; the process is still running then.
        """

        async def drain(stream: Any, buf: bytearray) -> None:
            if stream is None:
                return
            while True:
                chunk = await stream.read(READ_CHUNK_BYTES)
                if not chunk:
                    return
                buf.extend(chunk)
                if len(stdout_buf) + len(stderr_buf) > self.max_output_bytes:
                    raise _OutputLimitExceeded()

        await asyncio.gather(
            drain(process.stdout, stdout_buf), drain(process.stderr, stderr_buf)
        )
        await process.wait()


def _decode(data: bytes | bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace").strip()


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def capitalize_first(name: str) -> str:
    """Upper-case the first character only: ``orderItems`` -> ``OrderItems``."""
    return name[:1].upper() + name[1:]


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


def save_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Save data as pretty-printed JSON, creating parent directories."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    file_path.write_text(content + "\n", encoding="utf-8")


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def set_verbose(enabled: bool) -> None:
    """Toggle verbose output for the current process."""
    global _verbose
    _verbose = enabled


def is_verbose() -> bool:
    return _verbose


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{escape(message)}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{escape(message)}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{escape(message)}[/bold yellow]")


def print_info(message: str) -> None:
    """Print a blue informational message."""
    console.print(f"[blue]{escape(message)}[/blue]")


def print_verbose(message: str) -> None:
    """Print a dimmed message, only when verbose output is enabled."""
    if _verbose:
        console.print(f"[dim]{escape(message)}[/dim]", highlight=False)


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table.

    Args:
        data: Mapping of label -> value.
        title: Table title.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()
