# burrow/core/exceptions.py
"""Custom exceptions for burrow."""

from typing import Any


class BurrowError(Exception):
    """Base exception for all burrow errors."""

    pass


class ConfigurationError(BurrowError):
    """Raised when required configuration is missing or invalid."""

    pass


class UnknownProviderError(ConfigurationError):
    """Raised when a compute provider key is not registered."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unknown compute provider: {provider}")


class NamingError(BurrowError, ValueError):
    """Raised when a slug or derived resource name is malformed."""

    pass


class ConnectivityError(BurrowError):
    """Raised when a remote host cannot be reached over SSH."""

    pass


class SshAuthenticationError(ConnectivityError):
    """Raised when the remote host rejects the workload key."""

    pass


class RemoteCommandError(BurrowError):
    """Raised when a remote command exits nonzero and the caller asked to fail.

    Attributes:
        exit_code: Exit status reported by the remote process.
        output: Collected output of the failed command.
    """

    def __init__(self, message: str, exit_code: int, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class InvalidStateError(BurrowError):
    """Raised when an operation is invalid for the workload's current state.

    Attributes:
        workload_id: ID of the workload.
        current_state: State at the time of the rejected operation.
    """

    def __init__(
        self,
        message: str,
        workload_id: int | None = None,
        current_state: str | None = None,
    ):
        self.workload_id = workload_id
        self.current_state = current_state
        super().__init__(message)


class ApiError(BurrowError):
    """HTTP API error raised by provider and edge clients.

    Attributes:
        status: HTTP status code.
        body: Decoded response body (dict when JSON, else text).
    """

    def __init__(self, message: str, status: int | None = None, body: Any = None):
        self.status = status
        self.body = body
        super().__init__(message)

    @property
    def not_found(self) -> bool:
        return self.status == 404

    @property
    def unauthorized(self) -> bool:
        return self.status == 401

    @property
    def rate_limited(self) -> bool:
        return self.status == 429
