"""cloud-init user data for new servers."""
import yaml

from burrow.core.naming import DEFAULT_USER


def generate(ssh_public_keys: list[str] | str, user: str = DEFAULT_USER) -> str:
    """Build the ``#cloud-config`` document creating the deploy user.

    Args:
        ssh_public_keys: One or more authorized public keys. Blank entries
            are dropped.
        user: Login user to create.

    Returns:
        cloud-init YAML beginning with ``#cloud-config``.
    """
    if isinstance(ssh_public_keys, str):
        ssh_public_keys = [ssh_public_keys]
    keys = [key.strip() for key in ssh_public_keys if key and key.strip()]
    document = {
        "users": [
            {
                "name": user,
                "groups": "sudo,docker",
                "shell": "/bin/bash",
                "sudo": "ALL=(ALL) NOPASSWD:ALL",
                "ssh_authorized_keys": keys,
            }
        ],
        "disable_root": True,
        "ssh_pwauth": False,
    }
    return "#cloud-config\n" + yaml.safe_dump(document, sort_keys=False)
