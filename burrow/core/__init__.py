from burrow.core.exceptions import (
    ApiError as ApiError,
    BurrowError as BurrowError,
    ConfigurationError as ConfigurationError,
    ConnectivityError as ConnectivityError,
    InvalidStateError as InvalidStateError,
    NamingError as NamingError,
    RemoteCommandError as RemoteCommandError,
)
