"""Tests for git operations in a sandbox workspace."""
import pytest

from burrow.core.exceptions import InvalidStateError, RemoteCommandError
from burrow.git_ops import GitOps, git_log, git_status
from burrow.models import SandboxState


@pytest.fixture
async def running(make_sandbox):
    return await make_sandbox(state=SandboxState.RUNNING, server_ip="203.0.113.10")


class TestGitOps:
    async def test_status_runs_in_workspace(self, engine, settings, running, fake_ssh, executions):
        fake_ssh.on("git status --short", [" M app.rb"])

        output = await git_status(engine, running, settings.git)

        assert output.strip() == "M app.rb"
        assert fake_ssh.ran("cd /home/deploy/workspace && git status --short")
        execution = (await executions.list_for_workload("sandbox", running.id))[-1]
        assert execution.tag == "git"

    async def test_log_count(self, engine, settings, running, fake_ssh):
        await git_log(engine, running, settings.git, count=3)

        assert fake_ssh.ran("git log --oneline -3")

    async def test_pull_with_token_rewrites_origin(self, engine, settings, running, fake_ssh, executions):
        await GitOps(engine, running, settings.git).pull(token="ghp_new")

        assert fake_ssh.ran("git remote set-url origin https://ghp_new@github.com/acme/shop.git")
        assert fake_ssh.ran("git pull origin HEAD")
        recorded = [e.command for e in await executions.list_for_workload("sandbox", running.id)]
        assert "cd /home/deploy/workspace && git remote set-url origin https://****@github.com/acme/shop.git" in recorded
        assert not any("ghp_new" in command for command in recorded)

    async def test_checkout_quotes_ref(self, engine, settings, running, fake_ssh):
        await GitOps(engine, running, settings.git).checkout("feature/x y")

        assert fake_ssh.ran("git checkout 'feature/x y'")

    async def test_nonzero_exit_raises(self, engine, settings, running, fake_ssh):
        fake_ssh.on("git checkout", ["error: pathspec 'nope' did not match"], exit_code=1)

        with pytest.raises(RemoteCommandError) as exc_info:
            await GitOps(engine, running, settings.git).checkout("nope")

        assert exc_info.value.exit_code == 1
        assert "pathspec" in exc_info.value.output

    async def test_requires_running_sandbox(self, engine, settings, make_sandbox, fake_ssh):
        sandbox = await make_sandbox()

        with pytest.raises(InvalidStateError):
            await GitOps(engine, sandbox, settings.git).status()

        assert fake_ssh.commands == []
