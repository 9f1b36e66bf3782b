"""Display labels for provisioning step categories."""

CATEGORIES: dict[str, str] = {
    "ssh_key": "Generating SSH key...",
    "firewall": "Creating firewall...",
    "network": "Creating network...",
    "server": "Creating server...",
    "ssh_wait": "Waiting for SSH...",
    "apt_packages": "Installing packages...",
    "docker": "Starting Docker...",
    "nodejs": "Installing Node.js...",
    "claude_code": "Installing Claude Code...",
    "gh_cli": "Installing GitHub CLI...",
    "gh_auth": "Authenticating GitHub CLI...",
    "git_config": "Configuring Git...",
    "clone": "Cloning repository...",
    "pull": "Pulling repository...",
    "branch": "Creating branch...",
    "environment": "Writing environment...",
    "compose_generate": "Generating Docker Compose file...",
    "compose_setup": "Setting up Docker Compose...",
    "tunnel_setup": "Setting up tunnel...",
    "ready": "Sandbox ready!",
    "k3s_install": "Installing k3s...",
    "wait_cloud_init": "Waiting for cloud-init...",
    "discover_network": "Discovering private network...",
    "install_docker": "Installing Docker...",
    "configure_docker": "Configuring Docker...",
    "configure_k3s_registries": "Configuring registry mirrors...",
    "install_k3s": "Installing k3s server...",
    "setup_kubeconfig": "Writing kubeconfig...",
    "deploy_priority_classes": "Creating priority classes...",
    "deploy_registry": "Deploying image registry...",
    "wait_registry": "Waiting for registry...",
    "deploy_ingress": "Deploying ingress controller...",
    "docker_build": "Building image...",
    "deploy_manifests": "Applying manifests...",
    "wait_rollout": "Waiting for rollout...",
    "deployed": "Release deployed!",
    "delete_tunnel": "Deleting tunnel...",
    "stop_containers": "Stopping containers...",
    "delete_server": "Deleting server...",
    "delete_network": "Deleting network...",
    "delete_firewall": "Deleting firewall...",
    "stopped": "Sandbox stopped.",
    "torn_down": "Release torn down.",
}

_LABEL_WIDTH = 50


def category_label(category: str | None, command: str = "") -> str:
    """Human label for a step, falling back to a title-cased key or the command.

    ``volume_<type>`` and ``delete_volume_<type>`` are labelled per database.
    """
    if category:
        if category in CATEGORIES:
            return CATEGORIES[category]
        if category.startswith("delete_volume_"):
            return f"Deleting {category.removeprefix('delete_volume_')} volume..."
        if category.startswith("volume_"):
            return f"Provisioning {category.removeprefix('volume_')} volume..."
        return category.replace("_", " ").title()
    if len(command) > _LABEL_WIDTH:
        return command[: _LABEL_WIDTH - 3] + "..."
    return command
