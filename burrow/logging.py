"""Logging configuration for burrow.

Colors follow the lifecycle palette used in `burrow status` so that log
levels and workload states read the same on the terminal.
"""

import sys
from typing import TYPE_CHECKING

from loguru import logger


if TYPE_CHECKING:
    from loguru import Record


PALETTE = {
    "clay": "#C2703D",  # warnings, in-flight states
    "moss": "#6A8D5A",  # success, running
    "slate": "#5E7C99",  # info, identifiers
    "ash": "#8C8C80",  # timestamps, debug, extra fields
    "soot": "#4D4D45",  # separators, trace
    "ember": "#B5412E",  # errors, failed states
    "bone": "#EDE8DC",  # message text
}

RESET = "\033[0m"


def _log_format(record: "Record") -> str:
    """Build the loguru format string for one record.

    Extra fields bound with ``logger.bind`` or passed as keyword arguments
    are appended as ``key=value`` pairs.

    Args:
        record: Loguru record for the message being emitted.

    Returns:
        Format string with loguru color tags.
    """
    level = record["level"].name
    level_colors = {
        "TRACE": f"<fg {PALETTE['soot']}>",
        "DEBUG": f"<fg {PALETTE['ash']}>",
        "INFO": f"<fg {PALETTE['slate']}>",
        "SUCCESS": f"<fg {PALETTE['moss']}>",
        "WARNING": f"<fg {PALETTE['clay']}>",
        "ERROR": f"<fg {PALETTE['ember']}>",
        "CRITICAL": f"<fg {PALETTE['ember']}><bold>",
    }
    color = level_colors.get(level, f"<fg {PALETTE['bone']}>")
    close = "</>"

    fmt = (
        f"<fg {PALETTE['ash']}>{{time:HH:mm:ss}}{close} "
        f"{color}{{level: <8}}{close}"
        f"<fg {PALETTE['soot']}>|{close} "
        f"<fg {PALETTE['ash']}>{{name}}{close}"
        f"<fg {PALETTE['soot']}>:{close} "
        f"<fg {PALETTE['bone']}>{{message}}{close}"
    )

    extra = record["extra"]
    if extra:
        pairs = " ".join(f"{key}={value!r}" for key, value in extra.items())
        # Braces in values would be read as format fields by loguru
        pairs = pairs.replace("{", "{{").replace("}", "}}").replace("<", r"\<")
        fmt += f" <fg {PALETTE['ash']}>| {pairs}{close}"

    fmt += "\n"
    if record["exception"]:
        fmt += "{exception}\n"
    return fmt


def configure_logging(level: str = "INFO") -> None:
    """Replace loguru's default handler with the burrow stderr handler.

    Args:
        level: Minimum log level to display (e.g., "DEBUG", "INFO").
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=_log_format,
        colorize=True,
    )


def state_color(state: str) -> str:
    """Rich color for a workload state in CLI tables."""
    if state in ("running", "deployed"):
        return PALETTE["moss"]
    if state in ("provisioning", "deploying", "stopping", "tearing_down"):
        return PALETTE["clay"]
    if state in ("stopped", "torn_down"):
        return PALETTE["ash"]
    return PALETTE["slate"]
