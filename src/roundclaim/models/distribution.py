"""Distribution models — rounds, claim requests and settlement instructions.

All token amounts are integers in base units (the same uint256 values
that are bound into Merkle leaves and claim signatures). No floats.

Invariants enforced by these models and their owners:
- claimed_amount <= deposited_amount for every round, at every observable state
- start_time is non-decreasing across increasing round indices
- release_percent is non-decreasing across percentage rounds, bounded by precision
- Round state progression is one-way (no round ever returns to OPEN)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


class RoundKind(str, enum.Enum):
    """How a round authorises claims and computes settlements.

    Chosen once per round at configuration time from the
    ``commitment_or_percent`` entry:
        hex root  → PROOF
        int       → PERCENTAGE
        None      → SIGNATURE
    """
    PROOF = "proof"
    SIGNATURE = "signature"
    PERCENTAGE = "percentage"


class RoundState(str, enum.Enum):
    """Derived claim-window state of a round.

    State machine:
        PENDING → OPEN → EXHAUSTED
        PENDING → OPEN → DEADLINE_PASSED
        PENDING → DEADLINE_PASSED
    EXHAUSTED and DEADLINE_PASSED are terminal for claiming and enable
    withdrawal of the unclaimed deposit.
    """
    PENDING = "pending"
    OPEN = "open"
    EXHAUSTED = "exhausted"
    DEADLINE_PASSED = "deadline_passed"


ROUND_STATE_TRANSITIONS: Dict[RoundState, frozenset] = {
    RoundState.PENDING: frozenset({RoundState.OPEN, RoundState.DEADLINE_PASSED}),
    RoundState.OPEN: frozenset({RoundState.EXHAUSTED, RoundState.DEADLINE_PASSED}),
    RoundState.EXHAUSTED: frozenset(),
    RoundState.DEADLINE_PASSED: frozenset(),
}


@dataclass
class Round:
    """A claim window with its own schedule, cap, funding and authorisation.

    Mutable — owned exclusively by RoundRegistry. Only claims
    (claimed_amount) and financing (deposited_amount) change it after
    configuration. ``version`` increments on every mutation.
    """
    index: int
    kind: RoundKind
    start_time: datetime
    max_per_user: Optional[int]
    deposited_amount: int
    claimed_amount: int = 0
    commitment: Optional[str] = None
    release_percent: Optional[int] = None
    version: int = 0

    def snapshot(self) -> RoundSnapshot:
        return RoundSnapshot(
            index=self.index,
            kind=self.kind,
            start_time=self.start_time,
            max_per_user=self.max_per_user,
            deposited_amount=self.deposited_amount,
            claimed_amount=self.claimed_amount,
            commitment=self.commitment,
            release_percent=self.release_percent,
            version=self.version,
        )


@dataclass(frozen=True)
class RoundSnapshot:
    """Read-only view of a round at a point in time."""
    index: int
    kind: RoundKind
    start_time: datetime
    max_per_user: Optional[int]
    deposited_amount: int
    claimed_amount: int
    commitment: Optional[str]
    release_percent: Optional[int]
    version: int

    @property
    def unclaimed(self) -> int:
        return self.deposited_amount - self.claimed_amount

    @property
    def is_exhausted(self) -> bool:
        return self.claimed_amount == self.deposited_amount


@dataclass(frozen=True)
class GlobalConfig:
    """Distributor-wide settings as observed at one instant.

    Claims never change these; only administrative operations do.
    """
    deadline: Optional[datetime]
    current_round: Optional[int]
    paused: bool
    last_start_time: Optional[datetime] = None


@dataclass(frozen=True)
class ClaimRequest:
    """One claim entry: a round, an amount and the token that authorises it.

    For PROOF rounds ``proof`` holds the sibling hashes and ``amount`` is
    the leaf amount. For SIGNATURE rounds ``amount`` is the signed amount;
    for PERCENTAGE rounds it is the user's signed total allocation.
    """
    user: str
    round_index: int
    amount: int
    signature: Optional[bytes] = None
    proof: tuple[str, ...] = ()


@dataclass(frozen=True)
class SettlementInstruction:
    """Approved transfer handed to the external transfer rail after commit."""
    instruction_id: str
    recipient: str
    amount: int
    rounds: tuple[int, ...]
    created_utc: datetime
    per_round: tuple[int, ...] = field(default_factory=tuple)
