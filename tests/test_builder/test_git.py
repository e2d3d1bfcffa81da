"""Unit tests for git repository setup (sargen.builder.git).

Tests cover:
- Remote URL validation
- Pre-flight checks (git missing, existing repository, invalid remote)
- Commit handling when there is nothing to commit
- Remote selection: explicit URL, GitHub CLI, local-only fallback
- Push and --no-push behaviour
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from sargen.builder.git import (
    DEFAULT_COMMIT_MESSAGE,
    GitManager,
    GitOptions,
    GitSetupError,
    validate_remote_url,
)


pytestmark = pytest.mark.unit

REMOTE = "https://github.com/acme/shop.git"
NO_GH = {"gh --version": (127, "", "gh: not found")}


# ---------------------------------------------------------------------------
# Remote URL validation
# ---------------------------------------------------------------------------

class TestValidateRemoteUrl:
    @pytest.mark.parametrize(
        "url",
        [
            REMOTE,
            "git@github.com:acme/shop.git",
            "https://gitlab.com/acme/shop.git",
            "https://git.example.com/acme/shop",
            "git@example.org:team/repo.git",
        ],
    )
    def test_valid(self, url):
        assert validate_remote_url(url)

    @pytest.mark.parametrize("url", ["ftp://example.com/repo.git", "shop", "", "http//x"])
    def test_invalid(self, url):
        assert not validate_remote_url(url)


class TestGitOptions:
    def test_defaults(self):
        options = GitOptions()
        assert options.branch == "main"
        assert options.message == DEFAULT_COMMIT_MESSAGE
        assert options.public is False

    def test_empty_branch_rejected(self):
        with pytest.raises(ValidationError):
            GitOptions(branch="")


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------

class TestPreflight:
    @pytest.mark.asyncio
    async def test_git_missing(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"git --version": (127, "", "not found")})

        with pytest.raises(GitSetupError, match="Git is not installed"):
            await GitManager(tmp_project_dir, runner).setup()

    @pytest.mark.asyncio
    async def test_existing_repository(self, tmp_project_dir, fake_runner, commands_of):
        (tmp_project_dir / ".git").mkdir()
        runner = fake_runner()

        with pytest.raises(GitSetupError, match="already a git repository"):
            await GitManager(tmp_project_dir, runner).setup()

        assert "git init" not in commands_of(runner)

    @pytest.mark.asyncio
    async def test_invalid_remote(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner()

        with pytest.raises(GitSetupError, match="Invalid remote repository URL"):
            await GitManager(tmp_project_dir, runner).setup(GitOptions(remote="not-a-url"))

        assert "git init" not in commands_of(runner)

    @pytest.mark.asyncio
    async def test_missing_user_config_only_warns(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"git config user.email": (1, "", "")})
        manager = GitManager(tmp_project_dir, runner)

        assert await manager.check_user_config() is False
        await manager.preflight(GitOptions())


# ---------------------------------------------------------------------------
# Setup flow
# ---------------------------------------------------------------------------

class TestSetup:
    @pytest.mark.asyncio
    async def test_explicit_remote_is_pushed(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner()

        report = await GitManager(tmp_project_dir, runner).setup(GitOptions(remote=REMOTE))

        commands = commands_of(runner)
        assert commands.index("git init") < commands.index("git add .")
        assert f"git commit -m {DEFAULT_COMMIT_MESSAGE}" in commands
        assert f"git remote add origin {REMOTE}" in commands
        assert commands[-1] == "git push -u origin main"
        assert report.committed and report.pushed
        assert report.remote_url == REMOTE
        assert not any(c.startswith("gh ") for c in commands)

    @pytest.mark.asyncio
    async def test_branch_created_when_different(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner({"git branch --show-current": (0, "master", "")})

        await GitManager(tmp_project_dir, runner).setup(
            GitOptions(branch="develop", no_push=True, remote=REMOTE)
        )

        assert "git checkout -b develop" in commands_of(runner)

    @pytest.mark.asyncio
    async def test_no_push(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner()

        report = await GitManager(tmp_project_dir, runner).setup(
            GitOptions(remote=REMOTE, no_push=True)
        )

        assert not report.pushed
        assert not any(c.startswith("git push") for c in commands_of(runner))

    @pytest.mark.asyncio
    async def test_local_only_without_gh(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner(NO_GH)

        report = await GitManager(tmp_project_dir, runner).setup()

        assert report.local_only
        assert report.committed
        assert not any(c.startswith("git push") for c in commands_of(runner))

    @pytest.mark.asyncio
    async def test_gh_not_authenticated(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner({"gh auth status": (1, "", "not logged in")})

        report = await GitManager(tmp_project_dir, runner).setup()

        assert report.local_only
        assert not any(c.startswith("gh repo create") for c in commands_of(runner))

    @pytest.mark.asyncio
    async def test_github_repository_created(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner({"gh api user": (0, "acme", "")})

        report = await GitManager(tmp_project_dir, runner).setup(GitOptions(public=True))

        create = next(c for c in commands_of(runner) if c.startswith("gh repo create"))
        assert "test-project --public" in create
        assert "--remote=origin" in create
        assert report.remote_url == "https://github.com/acme/test-project.git"
        assert report.pushed

    @pytest.mark.asyncio
    async def test_github_creation_failure_falls_back(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"gh repo create": (1, "", "name already exists on this account")})

        report = await GitManager(tmp_project_dir, runner).setup()

        assert report.local_only
        assert not report.pushed

    @pytest.mark.asyncio
    async def test_nothing_to_commit_skips_push(self, tmp_project_dir, fake_runner, commands_of):
        runner = fake_runner({"git commit": (1, "nothing to commit, working tree clean", "")})

        report = await GitManager(tmp_project_dir, runner).setup(GitOptions(remote=REMOTE))

        assert not report.committed
        assert not any(c.startswith("git push") for c in commands_of(runner))

    @pytest.mark.asyncio
    async def test_commit_failure_raises(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"git commit": (1, "", "Please tell me who you are")})

        with pytest.raises(GitSetupError, match="git commit failed"):
            await GitManager(tmp_project_dir, runner).setup(GitOptions(remote=REMOTE))

    @pytest.mark.asyncio
    async def test_init_failure_raises(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"git init": (128, "", "permission denied")})

        with pytest.raises(GitSetupError, match="git init failed") as excinfo:
            await GitManager(tmp_project_dir, runner).setup(GitOptions(remote=REMOTE))

        assert excinfo.value.command == "git init"

    @pytest.mark.asyncio
    async def test_push_failure_does_not_raise(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"git push": (1, "", "Authentication failed")})

        report = await GitManager(tmp_project_dir, runner).setup(GitOptions(remote=REMOTE))

        assert report.committed
        assert not report.pushed

    @pytest.mark.asyncio
    async def test_existing_origin_is_accepted(self, tmp_project_dir, fake_runner):
        runner = fake_runner({"git remote add": (3, "", "error: remote origin already exists.")})

        report = await GitManager(tmp_project_dir, runner).setup(GitOptions(remote=REMOTE))

        assert report.remote_url == REMOTE
        assert report.pushed

    @pytest.mark.asyncio
    async def test_commands_run_in_project(self, tmp_project_dir, fake_runner):
        runner = fake_runner(NO_GH)

        await GitManager(tmp_project_dir, runner).setup()

        cwds = {call.kwargs["cwd"] for call in runner.run.await_args_list}
        assert cwds == {Path(tmp_project_dir).resolve()}
