"""burrow: sandboxes and releases on your own cloud servers."""

from burrow.config import load_settings


__version__ = "0.1.0"

__all__ = [
    "load_settings",
    "__version__",
]
