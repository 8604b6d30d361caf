"""Administrative policy objects — pause gate and capability checks.

Administration is composed from small independent objects instead of a
shared base class:

- PauseGate: the single pause flag. Claims require it clear;
  configuration and deadline changes require it set, so admin work and
  claim processing are mutually exclusive by construction.
- AccessControl: issues opaque capability tokens. An operation that
  needs a role takes a token and calls ``require(token, capability)``.
  The owner grants and revokes; ownership moves in two steps
  (propose, then accept) so it cannot be handed to a mistyped holder.

Who decides to grant what is outside this package.
"""

from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass
from typing import Optional

from roundclaim.models.errors import NotPaused, Paused, Unauthorized


class Capability(str, enum.Enum):
    ADMIN = "admin"          # pause/unpause, configure rounds, update deadline
    FINANCIER = "financier"  # deposit/withdraw round funding


@dataclass(frozen=True)
class CapabilityToken:
    """Proof that ``holder`` was granted ``capability`` by an AccessControl."""
    holder: str
    capability: Capability
    token_id: str


class PauseGate:
    """Global pause flag. Starts paused: a new distributor is in setup mode."""

    def __init__(self, paused: bool = True) -> None:
        self._paused = paused

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        if self._paused:
            raise Paused("Already paused")
        self._paused = True

    def unpause(self) -> None:
        if not self._paused:
            raise NotPaused("Already unpaused")
        self._paused = False

    def require_unpaused(self) -> None:
        if self._paused:
            raise Paused("Claims are paused")

    def require_paused(self) -> None:
        if not self._paused:
            raise NotPaused("Operation requires the distributor to be paused")


class AccessControl:
    """Tagged-capability registry with two-step ownership transfer.

    Usage:
        access = AccessControl(owner="ops")
        owner = access.owner_token
        admin = access.grant(owner, "alice", Capability.ADMIN)
        access.require(admin, Capability.ADMIN)
    """

    def __init__(self, owner: str) -> None:
        if not owner:
            raise ValueError("Owner must be non-empty")
        self._owner = owner
        self._owner_token = self._issue()
        self._pending_owner: Optional[str] = None
        self._granted: dict[str, CapabilityToken] = {}

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def owner_token(self) -> str:
        """Secret handed to the owner at construction (and on acceptance)."""
        return self._owner_token

    @property
    def pending_owner(self) -> Optional[str]:
        return self._pending_owner

    def grant(self, owner_token: str, holder: str, capability: Capability) -> CapabilityToken:
        self._require_owner(owner_token)
        token = CapabilityToken(holder=holder, capability=capability, token_id=self._issue())
        self._granted[token.token_id] = token
        return token

    def revoke(self, owner_token: str, token: CapabilityToken) -> None:
        self._require_owner(owner_token)
        if self._granted.pop(token.token_id, None) is None:
            raise ValueError(f"Capability token not active: {token.token_id}")

    def has(self, token: Optional[CapabilityToken], capability: Capability) -> bool:
        if token is None:
            return False
        active = self._granted.get(token.token_id)
        return active is not None and active == token and active.capability == capability

    def require(self, token: Optional[CapabilityToken], capability: Capability) -> None:
        if not self.has(token, capability):
            raise Unauthorized(
                f"Missing {capability.value} capability",
                {"holder": token.holder if token else None},
            )

    def propose_owner(self, owner_token: str, new_owner: str) -> None:
        self._require_owner(owner_token)
        if not new_owner:
            raise ValueError("New owner must be non-empty")
        self._pending_owner = new_owner

    def accept_ownership(self, claimant: str) -> str:
        """Complete a transfer. Returns the new owner's secret token."""
        if self._pending_owner is None or claimant != self._pending_owner:
            raise Unauthorized("No pending ownership transfer for claimant", {"claimant": claimant})
        self._owner = claimant
        self._pending_owner = None
        self._owner_token = self._issue()
        return self._owner_token

    def _require_owner(self, owner_token: str) -> None:
        if not secrets.compare_digest(owner_token, self._owner_token):
            raise Unauthorized("Owner token required")

    @staticmethod
    def _issue() -> str:
        return f"cap_{secrets.token_hex(16)}"
