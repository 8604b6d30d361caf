"""Tests for the pause gate and capability checks."""

import pytest

from roundclaim.access.gate import AccessControl, Capability, CapabilityToken, PauseGate
from roundclaim.models.errors import NotPaused, Paused, Unauthorized


class TestPauseGate:
    def test_starts_paused(self) -> None:
        assert PauseGate().paused is True

    def test_unpause_then_pause(self) -> None:
        gate = PauseGate()
        gate.unpause()
        gate.require_unpaused()
        gate.pause()
        gate.require_paused()

    def test_double_pause_rejected(self) -> None:
        with pytest.raises(Paused):
            PauseGate().pause()

    def test_double_unpause_rejected(self) -> None:
        gate = PauseGate(paused=False)
        with pytest.raises(NotPaused):
            gate.unpause()

    def test_require_unpaused_when_paused(self) -> None:
        with pytest.raises(Paused):
            PauseGate().require_unpaused()


class TestAccessControl:
    def test_grant_and_require(self) -> None:
        access = AccessControl("ops")
        admin = access.grant(access.owner_token, "alice", Capability.ADMIN)
        access.require(admin, Capability.ADMIN)
        assert access.has(admin, Capability.ADMIN)
        assert not access.has(admin, Capability.FINANCIER)

    def test_grant_requires_owner_token(self) -> None:
        access = AccessControl("ops")
        with pytest.raises(Unauthorized):
            access.grant("cap_wrong", "alice", Capability.ADMIN)

    def test_forged_token_rejected(self) -> None:
        access = AccessControl("ops")
        forged = CapabilityToken("mallory", Capability.ADMIN, "cap_forged")
        with pytest.raises(Unauthorized):
            access.require(forged, Capability.ADMIN)

    def test_token_from_other_registry_rejected(self) -> None:
        other = AccessControl("other")
        token = other.grant(other.owner_token, "alice", Capability.ADMIN)
        with pytest.raises(Unauthorized):
            AccessControl("ops").require(token, Capability.ADMIN)

    def test_none_token_rejected(self) -> None:
        with pytest.raises(Unauthorized):
            AccessControl("ops").require(None, Capability.FINANCIER)

    def test_revoke(self) -> None:
        access = AccessControl("ops")
        admin = access.grant(access.owner_token, "alice", Capability.ADMIN)
        access.revoke(access.owner_token, admin)
        assert not access.has(admin, Capability.ADMIN)
        with pytest.raises(ValueError, match="not active"):
            access.revoke(access.owner_token, admin)

    def test_empty_owner_rejected(self) -> None:
        with pytest.raises(ValueError):
            AccessControl("")


class TestOwnershipTransfer:
    def test_two_step_transfer(self) -> None:
        access = AccessControl("ops")
        old_token = access.owner_token
        access.propose_owner(old_token, "treasury")
        assert access.pending_owner == "treasury"
        new_token = access.accept_ownership("treasury")
        assert access.owner == "treasury"
        assert access.pending_owner is None
        assert new_token != old_token
        with pytest.raises(Unauthorized):
            access.grant(old_token, "alice", Capability.ADMIN)
        access.grant(new_token, "alice", Capability.ADMIN)

    def test_wrong_claimant_rejected(self) -> None:
        access = AccessControl("ops")
        access.propose_owner(access.owner_token, "treasury")
        with pytest.raises(Unauthorized):
            access.accept_ownership("mallory")
        assert access.owner == "ops"

    def test_accept_without_proposal_rejected(self) -> None:
        with pytest.raises(Unauthorized):
            AccessControl("ops").accept_ownership("ops")
