"""Recorded remote command execution."""
from burrow.execution.engine import ExecutionEngine
from burrow.execution.events import LogBus


__all__ = [
    "ExecutionEngine",
    "LogBus",
]
