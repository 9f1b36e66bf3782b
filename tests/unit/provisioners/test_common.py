from burrow.core.types import GitConfig
from burrow.provisioners.common import WORKSPACE, repo_sync_command


GIT = GitConfig(pat="ghp_secret", repo="acme/shop")


def test_clone_when_workspace_missing():
    action, command = repo_sync_command(GIT, "main", workspace_exists=False)

    assert action == "clone"
    assert command == f"git clone --branch main https://ghp_secret@github.com/acme/shop.git {WORKSPACE}"


def test_pull_when_workspace_exists():
    action, command = repo_sync_command(GIT, "feature/x", workspace_exists=True)

    assert action == "pull"
    assert command == (
        f"cd {WORKSPACE} && git fetch origin && git checkout feature/x && git pull origin feature/x"
    )


def test_branch_is_quoted():
    _, command = repo_sync_command(GIT, "it's", workspace_exists=True)

    assert "git checkout 'it'\"'\"'s'" in command
