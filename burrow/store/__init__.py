"""Local SQLite store."""

from burrow.store.connection import Database
from burrow.store.repository import (
    ExecutionRepository,
    SessionRepository,
    WorkloadRepository,
)


__all__ = [
    "Database",
    "ExecutionRepository",
    "SessionRepository",
    "WorkloadRepository",
]
