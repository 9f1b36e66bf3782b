"""Lifecycle orchestration for sandboxes and releases."""
from burrow.provisioners.release import ReleaseProvisioner
from burrow.provisioners.sandbox import SandboxProvisioner


__all__ = [
    "ReleaseProvisioner",
    "SandboxProvisioner",
]
