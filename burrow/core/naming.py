"""Naming conventions for every resource derived from a workload slug.

Slugs are 6 lowercase hex characters (e.g. ``a1b2c3``). Every name built
here can be parsed back to its slug with one of the ``*_REGEX`` patterns,
which the resource inspector relies on for orphan detection.
"""

import re
import secrets

from burrow.core.exceptions import NamingError


PREFIX = "burrow-sandbox"
SLUG_LENGTH = 6
SLUG_REGEX = re.compile(rf"^[a-f0-9]{{{SLUG_LENGTH}}}$")

RESOURCE_REGEX = re.compile(rf"^{PREFIX}-([a-f0-9]{{{SLUG_LENGTH}}})(?![a-f0-9])")
HOSTNAME_REGEX = re.compile(rf"^{PREFIX}-([a-f0-9]{{{SLUG_LENGTH}}})\.")
WORKER_REGEX = re.compile(rf"^{PREFIX}-widget-([a-f0-9]{{{SLUG_LENGTH}}})$")
BRANCH_REGEX = re.compile(rf"^{PREFIX}/([a-f0-9]{{{SLUG_LENGTH}}})$")

DEFAULT_USER = "deploy"
AUTH_COOKIE = f"{PREFIX}-auth"


def generate_slug() -> str:
    """Generate a new random slug."""
    return secrets.token_hex(SLUG_LENGTH // 2)


def valid_slug(slug: object) -> bool:
    return isinstance(slug, str) and SLUG_REGEX.match(slug) is not None


def validate_slug(slug: object) -> str:
    """Return the slug unchanged if it is well formed.

    Raises:
        NamingError: If the slug is not 6 lowercase hex characters.
    """
    if not valid_slug(slug):
        raise NamingError(
            f"Invalid slug format: {slug!r}. Expected {SLUG_LENGTH} hex chars."
        )
    return slug  # type: ignore[return-value]


def resource(slug: str) -> str:
    """Infrastructure name for servers, firewalls, networks and tunnels."""
    return f"{PREFIX}-{validate_slug(slug)}"


def container(slug: str, role: str) -> str:
    """Container name for a role ("app", "tunnel", "postgres", ...)."""
    if not role:
        raise NamingError("Container role must not be empty")
    return f"{PREFIX}-{validate_slug(slug)}-{role}"


def volume(slug: str, role: str) -> str:
    """Block volume name for a database role."""
    return container(slug, role)


def branch(slug: str) -> str:
    """Git branch isolating a sandbox's changes."""
    return f"{PREFIX}/{validate_slug(slug)}"


def hostname(slug: str, domain: str) -> str:
    """Public preview hostname under the configured domain."""
    if not domain:
        raise NamingError("Domain must not be empty")
    return f"{PREFIX}-{validate_slug(slug)}.{domain}"


def preview_url(slug: str, domain: str) -> str:
    return f"https://{hostname(slug, domain)}"


def worker(slug: str) -> str:
    """Edge worker name for auth gating and widget injection."""
    return f"{PREFIX}-widget-{validate_slug(slug)}"


def worker_route(slug: str, domain: str) -> str:
    return f"{hostname(slug, domain)}/*"


def ssh_comment(slug: str) -> str:
    return resource(slug)


def release_prefix(app_name: str, environment: str) -> str:
    """Kubernetes object prefix for a release (e.g. ``myapp-production``)."""
    return f"{app_name}-{environment}"


def _extract(pattern: re.Pattern[str], name: str | None) -> str | None:
    if not name:
        return None
    match = pattern.match(name)
    return match.group(1) if match else None


def extract_slug(name: str | None) -> str | None:
    """Slug from a resource, container or volume name, or None."""
    return _extract(RESOURCE_REGEX, name)


def extract_hostname_slug(name: str | None) -> str | None:
    """Slug from a hostname or worker route pattern, or None."""
    return _extract(HOSTNAME_REGEX, name)


def extract_worker_slug(name: str | None) -> str | None:
    return _extract(WORKER_REGEX, name)


def extract_branch_slug(name: str | None) -> str | None:
    return _extract(BRANCH_REGEX, name)
