"""Persistent models for workloads, executions and sessions."""

from burrow.models.execution import (
    ClaudeSession,
    CommandExecution,
    CommandLog,
    ExecutionKind,
    LogLine,
    LogStream,
)
from burrow.models.state import (
    VALID_TRANSITIONS,
    InvalidStateTransitionError,
    ReleaseState,
    SandboxState,
    validate_transition,
)
from burrow.models.workload import Release, Sandbox, Workload, WorkloadType


__all__ = [
    "ClaudeSession",
    "CommandExecution",
    "CommandLog",
    "ExecutionKind",
    "InvalidStateTransitionError",
    "LogLine",
    "LogStream",
    "Release",
    "ReleaseState",
    "Sandbox",
    "SandboxState",
    "VALID_TRANSITIONS",
    "Workload",
    "WorkloadType",
    "validate_transition",
]
