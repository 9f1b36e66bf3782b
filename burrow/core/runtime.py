"""Runtime knobs read from ``BURROW_*`` environment variables."""
from pydantic_settings import BaseSettings, SettingsConfigDict


class RuntimeConfig(BaseSettings):
    """Timeouts and polling intervals for remote work.

    Attributes:
        ssh_connect_timeout: Seconds the ssh binary waits to connect.
        command_timeout: Default seconds before a remote command is killed.
        claude_timeout: Seconds before a claude CLI run is killed.
        ssh_wait_attempts: Probes while waiting for a new server's SSH.
        ssh_wait_interval: Seconds between SSH probes.
        log_level: Minimum log level for the stderr handler.
    """

    model_config = SettingsConfigDict(
        env_prefix="BURROW_",
        env_file=".env",
        extra="ignore",
    )

    ssh_connect_timeout: int = 10
    command_timeout: float = 600.0
    claude_timeout: float = 3600.0
    ssh_wait_attempts: int = 36
    ssh_wait_interval: float = 5.0
    log_level: str = "INFO"
