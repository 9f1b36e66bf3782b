"""Workload lifecycle states and state machine validation."""

from __future__ import annotations

from enum import StrEnum


class SandboxState(StrEnum):
    """Lifecycle of a development sandbox."""

    PENDING = "pending"  # Created, nothing provisioned
    PROVISIONING = "provisioning"  # Provision in flight, or failed mid-way
    RUNNING = "running"  # Ready for sessions
    STOPPING = "stopping"  # Deprovision in flight, or failed mid-way
    STOPPED = "stopped"  # Destroyed


class ReleaseState(StrEnum):
    """Lifecycle of a release environment."""

    PENDING = "pending"
    DEPLOYING = "deploying"
    DEPLOYED = "deployed"
    TEARING_DOWN = "tearing_down"
    TORN_DOWN = "torn_down"


WorkloadState = SandboxState | ReleaseState

# Self-transitions on in-flight states allow a failed step to be retried
SANDBOX_TRANSITIONS: dict[SandboxState, set[SandboxState]] = {
    SandboxState.PENDING: {SandboxState.PROVISIONING, SandboxState.STOPPING},
    SandboxState.PROVISIONING: {
        SandboxState.PROVISIONING,
        SandboxState.RUNNING,
        SandboxState.STOPPING,
    },
    SandboxState.RUNNING: {SandboxState.STOPPING},
    SandboxState.STOPPING: {SandboxState.STOPPING, SandboxState.STOPPED},
    SandboxState.STOPPED: set(),  # Terminal state
}

RELEASE_TRANSITIONS: dict[ReleaseState, set[ReleaseState]] = {
    ReleaseState.PENDING: {ReleaseState.DEPLOYING, ReleaseState.TEARING_DOWN},
    ReleaseState.DEPLOYING: {
        ReleaseState.DEPLOYING,
        ReleaseState.DEPLOYED,
        ReleaseState.TEARING_DOWN,
    },
    ReleaseState.DEPLOYED: {ReleaseState.DEPLOYING, ReleaseState.TEARING_DOWN},
    ReleaseState.TEARING_DOWN: {ReleaseState.TEARING_DOWN, ReleaseState.TORN_DOWN},
    ReleaseState.TORN_DOWN: set(),  # Terminal state
}

# Both enums share the "pending" value, so each keeps its own table
VALID_TRANSITIONS: dict[type, dict] = {
    SandboxState: SANDBOX_TRANSITIONS,
    ReleaseState: RELEASE_TRANSITIONS,
}

IN_FLIGHT_STATES: set[WorkloadState] = {
    SandboxState.PROVISIONING,
    SandboxState.STOPPING,
    ReleaseState.DEPLOYING,
    ReleaseState.TEARING_DOWN,
}

TERMINAL_STATES: set[WorkloadState] = {SandboxState.STOPPED, ReleaseState.TORN_DOWN}


class InvalidStateTransitionError(ValueError):
    """Raised when attempting an invalid workload state transition.

    Attributes:
        current: The current state.
        target: The attempted target state.
    """

    def __init__(self, current: WorkloadState, target: WorkloadState):
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition from '{current}' to '{target}'")


def validate_transition(current: WorkloadState, target: WorkloadState) -> None:
    """Validate that a state transition is allowed.

    Args:
        current: The current state.
        target: The desired new state.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed.
    """
    table = VALID_TRANSITIONS[type(current)]
    if type(target) is not type(current) or target not in table[current]:
        raise InvalidStateTransitionError(current, target)
