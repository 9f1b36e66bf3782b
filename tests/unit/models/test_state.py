"""Tests for workload state transitions."""
import pytest

from burrow.models import Release, ReleaseState, Sandbox, SandboxState
from burrow.models.state import InvalidStateTransitionError, validate_transition


class TestSandboxTransitions:
    def test_happy_path(self):
        sandbox = Sandbox()
        for state in (SandboxState.PROVISIONING, SandboxState.RUNNING, SandboxState.STOPPING, SandboxState.STOPPED):
            sandbox.transition(state)
        assert sandbox.destroyed

    def test_in_flight_states_can_retry(self):
        validate_transition(SandboxState.PROVISIONING, SandboxState.PROVISIONING)
        validate_transition(SandboxState.STOPPING, SandboxState.STOPPING)

    def test_stopped_is_terminal(self):
        with pytest.raises(InvalidStateTransitionError, match="stopped"):
            validate_transition(SandboxState.STOPPED, SandboxState.PROVISIONING)

    def test_running_cannot_reprovision(self):
        with pytest.raises(InvalidStateTransitionError):
            Sandbox(state=SandboxState.RUNNING).transition(SandboxState.PROVISIONING)

    def test_enums_do_not_mix(self):
        with pytest.raises(InvalidStateTransitionError):
            validate_transition(SandboxState.PENDING, ReleaseState.DEPLOYING)


class TestReleaseTransitions:
    def test_deployed_can_redeploy(self):
        release = Release(state=ReleaseState.DEPLOYED)
        release.transition(ReleaseState.DEPLOYING)
        assert release.in_flight

    def test_torn_down_is_terminal(self):
        with pytest.raises(InvalidStateTransitionError):
            validate_transition(ReleaseState.TORN_DOWN, ReleaseState.DEPLOYING)


class TestWorkload:
    def test_slug_is_validated(self):
        with pytest.raises(ValueError):
            Sandbox(slug="NOT-HEX")

    def test_defaults(self):
        sandbox = Sandbox()
        assert sandbox.resource_name == f"burrow-sandbox-{sandbox.slug}"
        assert not sandbox.has_keypair
        assert len(sandbox.access_token) >= 32

    def test_release_prefix(self):
        assert Release(environment="staging").prefix("shop") == "shop-staging"
