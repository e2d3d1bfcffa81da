"""Git repository setup for generated projects (``sargen gen:git``).

Initialises a repository, commits the project and, when possible, connects a
remote and pushes.  Pre-flight failures abort with :class:`GitSetupError`;
remote creation and push failures degrade to a local-only repository with
printed guidance.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from sargen.utils import (
    CommandResult,
    CommandRunner,
    print_info,
    print_success,
    print_verbose,
    print_warning,
)

DEFAULT_COMMIT_MESSAGE = "Initial commit: Project Setup"
DEFAULT_DESCRIPTION = "Created with sargen"

_HOSTED_URL_RE = re.compile(
    r"^(https?://|git@)(github\.com|gitlab\.com|bitbucket\.org|dev\.azure\.com|.*\.dev\.azure\.com)/.*\.git$",
    re.IGNORECASE,
)
_SSH_URL_RE = re.compile(r"^git@[a-zA-Z0-9.-]+:[a-zA-Z0-9._/-]+\.git$")


class GitSetupError(Exception):
    """Raised when git setup cannot start or a local git step fails."""

    def __init__(self, message: str, command: str = "", stderr: str = "") -> None:
        self.command = command
        self.stderr = stderr
        super().__init__(message)


class GitOptions(BaseModel):
    """Options of one ``gen:git`` run."""

    remote: Optional[str] = Field(default=None, description="Remote repository URL")
    branch: str = Field(default="main", min_length=1)
    message: str = Field(default=DEFAULT_COMMIT_MESSAGE, min_length=1)
    public: bool = Field(default=False, description="Create a public GitHub repository")
    description: str = Field(default=DEFAULT_DESCRIPTION)
    no_push: bool = Field(default=False)


@dataclass
class GitSetupReport:
    """What :meth:`GitManager.setup` managed to do."""

    branch: str
    committed: bool = False
    remote_url: Optional[str] = None
    pushed: bool = False

    @property
    def local_only(self) -> bool:
        return self.remote_url is None


def validate_remote_url(url: str) -> bool:
    """Accept hosted-provider URLs, ``git@host:path.git`` and any https / git@ URL."""
    return bool(
        _HOSTED_URL_RE.match(url)
        or _SSH_URL_RE.match(url)
        or url.startswith("https://")
        or url.startswith("git@")
    )


def _print_local_only_guidance(branch: str) -> None:
    print_info("To push to a remote repository later:")
    print_info("1. Create a repository on GitHub/GitLab/Bitbucket")
    print_info("2. Run: git remote add origin <repository-url>")
    print_info(f"3. Run: git push -u origin {branch}")
    print_info("Or use: sargen gen:git --remote <repository-url>")


class GitManager:
    """Runs the git setup flow in one project directory."""

    def __init__(self, project_path: str | Path, runner: CommandRunner | None = None) -> None:
        self.project_path = Path(project_path).resolve()
        self.runner = runner or CommandRunner()

    async def _run(self, *args: str) -> CommandResult:
        return await self.runner.run(list(args), cwd=self.project_path)

    async def _git(self, *args: str) -> CommandResult:
        return await self._run("git", *args)

    # -- Checks ------------------------------------------------------------

    async def is_git_installed(self) -> bool:
        result = await self._git("--version")
        if result.success:
            print_verbose(f"Git found: {result.stdout}")
        return result.success

    def is_repository(self) -> bool:
        return (self.project_path / ".git").exists()

    async def check_user_config(self) -> bool:
        """Warn about a missing ``user.name`` / ``user.email``; never fails."""
        name = await self._git("config", "user.name")
        email = await self._git("config", "user.email")
        missing = [
            key
            for key, result in (("user.name", name), ("user.email", email))
            if not (result.success and result.stdout)
        ]
        if missing:
            print_warning(f"Git user configuration incomplete: missing {', '.join(missing)}")
            print_info('Configure it with: git config --global user.name "Your Name"')
            print_info('                   git config --global user.email "you@example.com"')
            return False
        return True

    async def preflight(self, options: GitOptions) -> None:
        """Verify git can be set up here.

        Raises:
            GitSetupError: If git is missing, the project already is a
                repository, or the remote URL is invalid.
        """
        print_verbose("Performing git setup pre-flight checks...")
        if not await self.is_git_installed():
            raise GitSetupError(
                "Git is not installed or not available in PATH. "
                "Install it from https://git-scm.com/downloads"
            )
        if self.is_repository():
            raise GitSetupError(f"Project is already a git repository: {self.project_path}")
        await self.check_user_config()
        if options.remote and not validate_remote_url(options.remote):
            raise GitSetupError(f"Invalid remote repository URL: {options.remote}")
        print_success("All pre-flight checks passed")

    async def github_cli_status(self) -> tuple[bool, bool]:
        """Return ``(installed, authenticated)`` for the GitHub CLI."""
        version = await self._run("gh", "--version")
        if not version.success:
            print_verbose("GitHub CLI not found")
            return False, False
        auth = await self._run("gh", "auth", "status")
        if not auth.success:
            print_verbose(f"GitHub CLI not authenticated: {auth.stderr}")
            return True, False
        return True, True

    # -- Steps -------------------------------------------------------------

    async def _required(self, *args: str) -> CommandResult:
        result = await self._git(*args)
        if not result.success:
            cmd = "git " + " ".join(args)
            raise GitSetupError(
                f"{cmd} failed: {result.stderr or result.stdout}", command=cmd, stderr=result.stderr
            )
        return result

    async def ensure_branch(self, branch: str) -> None:
        current = await self._git("branch", "--show-current")
        if current.success and current.stdout == branch:
            return
        result = await self._git("checkout", "-b", branch)
        if result.success:
            print_success(f"Created branch {branch}")
        else:
            print_warning(f"Could not create branch {branch}: {result.stderr}")

    async def commit(self, message: str) -> bool:
        """Commit everything staged; ``False`` when there was nothing to commit."""
        result = await self._git("commit", "-m", message)
        if result.success:
            print_success("Initial commit created")
            return True
        output = f"{result.stdout}\n{result.stderr}".lower()
        if "nothing to commit" in output:
            print_warning("No changes to commit")
            return False
        raise GitSetupError(
            f"git commit failed: {result.stderr}", command="git commit", stderr=result.stderr
        )

    async def create_github_repository(self, options: GitOptions) -> Optional[str]:
        """Create the repository with ``gh`` and return its URL, or ``None`` on failure.

        ``gh repo create --remote=origin`` also registers the ``origin`` remote.
        """
        name = self.project_path.name
        visibility = "--public" if options.public else "--private"
        result = await self._run(
            "gh", "repo", "create", name, visibility,
            "--description", options.description,
            "--source=.", "--remote=origin",
        )
        if not result.success:
            error = result.stderr or result.stdout
            if "already exists" in error.lower():
                print_warning(f"Repository '{name}' already exists on this account")
            else:
                print_warning(f"GitHub repository creation failed: {error}")
            return None

        login = await self._run("gh", "api", "user", "--jq", ".login")
        owner = login.stdout if login.success and login.stdout else None
        # the remote is registered even when the owner lookup fails
        url = f"https://github.com/{owner}/{name}.git" if owner else "origin"
        print_success(f"GitHub repository created: {url}")
        return url

    async def add_remote(self, url: str) -> bool:
        result = await self._git("remote", "add", "origin", url)
        if result.success:
            print_success("Remote origin added")
            return True
        if "already exists" in result.stderr.lower():
            print_warning("Remote origin already exists")
            return True
        print_warning(f"Could not add remote origin: {result.stderr}")
        return False

    async def push(self, branch: str) -> bool:
        result = await self._git("push", "-u", "origin", branch)
        if result.success:
            print_success("Successfully pushed to remote repository")
            return True
        print_warning(f"Push failed: {result.stderr}")
        lowered = result.stderr.lower()
        if "authentication" in lowered or "permission" in lowered:
            print_info("Check your git credentials (a personal access token or SSH key).")
        print_info(f"You can push manually later with: git push -u origin {branch}")
        return False

    # -- Flow --------------------------------------------------------------

    async def setup(self, options: GitOptions | None = None) -> GitSetupReport:
        """Run the whole flow: pre-flight, init, branch, add, commit, remote, push.

        Raises:
            GitSetupError: On pre-flight failures and failing init / add /
                commit steps.  Remote and push problems never raise.
        """
        options = options or GitOptions()
        await self.preflight(options)
        report = GitSetupReport(branch=options.branch)

        await self._required("init")
        print_success("Git repository initialized")
        await self.ensure_branch(options.branch)

        await self._required("add", ".")
        print_success("Files added to git")
        report.committed = await self.commit(options.message)

        remote_url = options.remote
        if remote_url:
            if not await self.add_remote(remote_url):
                remote_url = None
        else:
            installed, authenticated = await self.github_cli_status()
            if installed and authenticated:
                remote_url = await self.create_github_repository(options)
                if remote_url is None:
                    print_info("Falling back to local git repository only.")
            else:
                print_info("No remote repository provided. Initializing local git repository only.")

        if remote_url is None:
            _print_local_only_guidance(options.branch)
            print_success("Git repository setup completed (local only)")
            return report

        report.remote_url = remote_url
        if options.no_push:
            print_info("Skipping push to remote (--no-push)")
            print_info(f"You can push manually later with: git push -u origin {options.branch}")
        elif report.committed:
            report.pushed = await self.push(options.branch)
        else:
            print_warning("Nothing committed, skipping push")

        print_success("Git repository setup completed")
        return report
