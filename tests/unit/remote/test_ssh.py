"""Tests for the ssh subprocess transport."""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from burrow.core.exceptions import ConnectivityError, RemoteCommandError, SshAuthenticationError
from burrow.models import Sandbox
from burrow.remote.ssh import ExitStatus, SshClient, ssh_client_for


def fake_process(lines: list[str], returncode: int) -> MagicMock:
    """Process whose stdout yields ``lines`` and then EOF."""
    stdout = MagicMock()
    stdout.readline = AsyncMock(side_effect=[f"{line}\n".encode() for line in lines] + [b""])
    proc = MagicMock()
    proc.stdout = stdout
    proc.returncode = None

    async def wait() -> int:
        proc.returncode = returncode
        return returncode

    proc.wait = wait
    return proc


@pytest.fixture
def client() -> SshClient:
    return SshClient(host="203.0.113.10", private_key="PEM")


async def collect(client: SshClient, command: str, **kwargs) -> list:
    return [item async for item in client.execute(command, **kwargs)]


class TestExecute:
    async def test_streams_lines_then_exit_status(self, client):
        proc = fake_process(["one", "two"], 0)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn:
            items = await collect(client, "ls", cwd="/home/deploy/app")

        assert items[:2] == ["one", "two"]
        assert isinstance(items[-1], ExitStatus)
        assert items[-1] == 0
        args = spawn.call_args.args
        assert args[0] == "ssh"
        assert "deploy@203.0.113.10" in args
        assert args[-1] == "cd /home/deploy/app && ls"

    async def test_nonzero_exit_is_data(self, client):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process(["boom"], 3))):
            items = await collect(client, "false")

        assert items == ["boom", ExitStatus(3)]

    async def test_exit_255_is_connectivity_error(self, client):
        proc = fake_process(["ssh: connect to host 203.0.113.10 port 22: Connection refused"], 255)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ConnectivityError, match="Connection refused"):
                await collect(client, "ls")

    async def test_rejected_key_is_authentication_error(self, client):
        proc = fake_process(["deploy@203.0.113.10: Permission denied (publickey)."], 255)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(SshAuthenticationError):
                await collect(client, "ls")

    async def test_missing_ssh_binary(self, client):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("ssh"))):
            with pytest.raises(ConnectivityError, match="Cannot start ssh"):
                await collect(client, "ls")

    async def test_timeout_kills_process(self, client):
        proc = fake_process([], 0)

        async def hang() -> bytes:
            await asyncio.sleep(10)
            return b""

        proc.stdout.readline = hang
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            items = await collect(client, "sleep 100", timeout=0.01)

        assert items == [ExitStatus(124)]
        proc.kill.assert_called_once()

    async def test_lines_longer_than_default_buffer(self, client, tmp_path, monkeypatch):
        fake_ssh = tmp_path / "ssh"
        fake_ssh.write_text("#!/bin/sh\nhead -c 100000 /dev/zero | tr '\\0' x\necho\necho done\n")
        fake_ssh.chmod(0o755)
        monkeypatch.setenv("PATH", f"{tmp_path}:/usr/bin:/bin")

        items = await collect(client, "claude -p hi", timeout=30)

        assert items == ["x" * 100_000, "done", ExitStatus(0)]


class TestRun:
    async def test_collects_output(self, client):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process(["a", "b"], 0))):
            result = await client.run("echo")

        assert result.exit_code == 0
        assert result.output == "a\nb"

    async def test_raises_on_failure(self, client):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process(["nope"], 2))):
            with pytest.raises(RemoteCommandError) as exc_info:
                await client.run("false")

        assert exc_info.value.exit_code == 2
        assert exc_info.value.output == "nope"

    async def test_failure_as_data(self, client):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process([], 1))):
            result = await client.run("false", raise_on_error=False)

        assert result.exit_code == 1

    async def test_available(self, client):
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process(["ok"], 0))):
            assert await client.available()
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process([], 255))):
            assert not await client.available()


def test_client_for_workload_requires_address():
    with pytest.raises(ConnectivityError):
        ssh_client_for(Sandbox(ssh_private_key="PEM"))

    client = ssh_client_for(Sandbox(server_ip="203.0.113.10", ssh_private_key="PEM"))
    assert client.host == "203.0.113.10"
    assert client.user == "deploy"
