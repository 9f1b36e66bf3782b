"""Configuration models shared across burrow.

Settings are loaded once by :func:`burrow.config.load_settings` and passed
explicitly to every component that needs them. All models are frozen; use
``model_copy(update={...})`` to derive modified copies in tests.

Several values may be given either as a plain value or as a mapping keyed
by deployment target (``sandbox``, ``production``, ``staging``, ...). Use
:func:`resolve` to pick the value for a target.
"""
from typing import Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from burrow.core.exceptions import ConfigurationError
from burrow.providers.registry import ComputeProvider


T = TypeVar("T")

DatabaseType = Literal["postgres", "mysql", "redis", "sqlite"]
SANDBOX_TARGET = "sandbox"

ByTarget = T | dict[str, T]


def resolve(value: "ByTarget[T] | None", target: str) -> T | None:
    """Resolve a possibly target-keyed value.

    Args:
        value: Plain value, or a mapping of target name to value.
        target: Target to select when ``value`` is a mapping.

    Returns:
        The plain value, the entry for ``target``, or None when the mapping
        has no entry for it.
    """
    if isinstance(value, dict):
        return value.get(target)
    return value


class CloudflareConfig(BaseModel):
    """Cloudflare credentials and preview settings.

    Attributes:
        api_token: API token with tunnel, DNS, worker and ruleset scopes.
        account_id: Account owning tunnels and workers.
        domain: Zone under which preview hostnames are created.
        console_script_url: Script injected into previews by the edge worker.
        websocket_url: URL the injected console connects to.
        api_url: URL the injected console calls.
    """

    model_config = ConfigDict(frozen=True)

    api_token: str | None = None
    account_id: str | None = None
    domain: str | None = None
    console_script_url: str | None = None
    websocket_url: str | None = None
    api_url: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_token and self.account_id and self.domain)

    def validate_all(self) -> None:
        if not self.configured and any([self.api_token, self.account_id, self.domain]):
            raise ConfigurationError(
                "cloudflare requires api_token, account_id and domain together"
            )


class GitConfig(BaseModel):
    """Repository access and commit identity used on remote hosts."""

    model_config = ConfigDict(frozen=True)

    pat: str | None = None
    repo: str | None = None
    default_branch: str = "main"
    username: str = "burrow"
    email: str = "sandbox@burrow.dev"

    def clone_url(self) -> str:
        if self.pat:
            return f"https://{self.pat}@github.com/{self.repo}.git"
        return f"https://github.com/{self.repo}.git"

    def validate_all(self) -> None:
        if not self.pat:
            raise ConfigurationError("git.pat is required")
        if not self.repo:
            raise ConfigurationError("git.repo is required")


class ClaudeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    auth_token: str | None = None
    base_url: str = "https://api.anthropic.com"

    @property
    def configured(self) -> bool:
        return bool(self.auth_token)


DEFAULT_DATABASE_IMAGES: dict[str, str | None] = {
    "postgres": "postgres:16-alpine",
    "mysql": "mysql:8",
    "redis": "redis:7-alpine",
    "sqlite": None,
}


class DatabaseConfig(BaseModel):
    """One self-hosted database.

    Attributes:
        image: Container image. Defaults per database type.
        volume_size: Block volume size for releases (e.g. "10Gi").
        password: Release database password. Generated when unset.
    """

    model_config = ConfigDict(frozen=True)

    image: str | None = None
    volume_size: ByTarget[str] = "10Gi"
    password: str | None = None

    def image_for(self, db_type: str) -> str | None:
        return self.image or DEFAULT_DATABASE_IMAGES.get(db_type)


DEFAULT_SERVICE_IMAGES = {
    "redis": "redis:7-alpine",
    "meilisearch": "getmeili/meilisearch:latest",
}
DEFAULT_SERVICE_PORTS = {
    "redis": 6379,
    "meilisearch": 7700,
}


class ServiceConfig(BaseModel):
    """An auxiliary service container (redis, meilisearch, ...)."""

    model_config = ConfigDict(frozen=True)

    image: str | None = None
    port: int | None = None
    subdomain: ByTarget[str] | None = None
    env: dict[str, str] = Field(default_factory=dict)

    def image_for(self, name: str) -> str | None:
        return self.image or DEFAULT_SERVICE_IMAGES.get(name)

    def port_for(self, name: str) -> int | None:
        return self.port or DEFAULT_SERVICE_PORTS.get(name)


class ProcessConfig(BaseModel):
    """An application process (web, worker, ...)."""

    model_config = ConfigDict(frozen=True)

    command: str | None = None
    port: int | None = None
    replicas: ByTarget[int] = 1
    subdomain: ByTarget[str] | None = None


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    dockerfile: str = "Dockerfile"
    platform: str = "linux/amd64"
    processes: dict[str, ProcessConfig] = Field(default_factory=dict)

    @property
    def web(self) -> bool:
        return "web" in self.processes


class Settings(BaseModel):
    """Global settings for burrow.

    Attributes:
        compute: Compute provider variant, selected by its ``provider`` key.
        cloudflare: Tunnel and preview exposure settings.
        git: Repository and commit identity.
        claude: Claude CLI credentials.
        databases: Self-hosted databases keyed by type.
        services: Auxiliary services keyed by name.
        app: Application processes and image build settings.
        setup: Commands run once in the web container after databases start.
        env: Environment variables written to ``.env`` and the app secret.
        app_name: Application name used for release resource prefixes.
        database_path: Path of the local SQLite store.
    """

    model_config = ConfigDict(frozen=True)

    compute: ComputeProvider
    cloudflare: CloudflareConfig = Field(default_factory=CloudflareConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    claude: ClaudeConfig = Field(default_factory=ClaudeConfig)
    databases: dict[DatabaseType, DatabaseConfig] = Field(default_factory=dict)
    services: dict[str, ServiceConfig] = Field(default_factory=dict)
    app: AppConfig = Field(default_factory=AppConfig)
    setup: list[str] = Field(default_factory=list)
    env: dict[str, ByTarget[str]] = Field(default_factory=dict)
    app_name: str = "app"
    database_path: str = "burrow.db"

    @property
    def cloudflare_configured(self) -> bool:
        return self.cloudflare.configured

    @property
    def claude_configured(self) -> bool:
        return self.claude.configured

    def database(self, db_type: str) -> bool:
        return db_type in self.databases

    @property
    def database_type(self) -> str | None:
        """The configured database, postgres or mysql first. None when none is configured."""
        for db_type in ("postgres", "mysql"):
            if db_type in self.databases:
                return db_type
        return next(iter(self.databases), None)

    def env_for(self, target: str) -> dict[str, str]:
        """Environment variables resolved for a target, skipping unset ones."""
        resolved = {}
        for key, value in self.env.items():
            item = resolve(value, target)
            if item is not None:
                resolved[key] = str(item)
        return resolved

    def validate_all(self) -> None:
        """Check that everything needed to provision is present.

        Raises:
            ConfigurationError: On the first missing or inconsistent value.
        """
        self.compute.validate()
        self.cloudflare.validate_all()
        self.git.validate_all()

    def validate_for_target(self, target: str) -> None:
        """Check that target-keyed values all have an entry for ``target``.

        Raises:
            ConfigurationError: Listing every missing key.
        """
        errors = []
        if isinstance(self.compute.server_type, dict) and target not in self.compute.server_type:
            errors.append(f"compute.server_type missing key {target!r}")
        for key, value in self.env.items():
            if isinstance(value, dict) and target not in value:
                errors.append(f"env.{key} missing key {target!r}")
        if errors:
            raise ConfigurationError(", ".join(errors))
