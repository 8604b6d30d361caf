"""Round registry — the ordered set of claim rounds and their funding state.

Rounds are configured in batches by an administrative operation while the
distributor is paused, then mutated only by successful claims
(claimed_amount) and by financing (deposited_amount). Rounds are never
deleted: once passed they are immutable history.

The registry is a pure state container. Authorisation, replay protection
and event logging happen in the layers above it.

Invariants enforced on every mutation:
- claimed_amount <= deposited_amount
- start_time non-decreasing across indices (checked against the last
  already-configured round too)
- percentage rounds: release_percent non-decreasing and <= precision
"""

from __future__ import annotations

from datetime import datetime
from typing import Mapping, Optional, Sequence, Union

from roundclaim.crypto.merkle import to_bytes32, to_hex
from roundclaim.models.distribution import Round, RoundKind, RoundSnapshot, RoundState
from roundclaim.models.errors import (
    EmptyBatch,
    IncorrectAmount,
    InvalidRoundConfig,
    LengthMismatch,
    NotPaused,
    RoundExhausted,
    UnknownRound,
    WithdrawNotAllowed,
)

CommitmentOrPercent = Union[str, bytes, int, None]


class RoundRegistry:
    """Owns round configuration and funding totals.

    Usage:
        registry = RoundRegistry(percent_precision=10_000)
        registry.configure_rounds(
            start_times=[t0, t1],
            caps=[100, None],
            deposits=[1_000, 5_000],
            commitments_or_percents=[None, "0xabc..."],
            paused=True,
        )
        registry.record_claim(0, 50)
    """

    def __init__(self, percent_precision: int = 10_000) -> None:
        self._rounds: list[Round] = []
        self._percent_precision = percent_precision
        self._last_start_time: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure_rounds(
        self,
        start_times: Sequence[datetime],
        caps: Sequence[Optional[int]],
        deposits: Sequence[int],
        commitments_or_percents: Sequence[CommitmentOrPercent],
        *,
        paused: bool,
        deadline: Optional[datetime] = None,
    ) -> list[int]:
        """Append a batch of rounds. All-or-nothing.

        Each commitment_or_percent entry selects the round kind:
        a 32-byte root (hex or bytes) makes a PROOF round, an int makes a
        PERCENTAGE round, None makes a flat SIGNATURE round. A cap of
        None or 0 means uncapped.
        When a claim deadline is already set, every new round must start
        before it.

        Returns the indices of the new rounds.
        """
        if not start_times:
            raise EmptyBatch("configure_rounds requires at least one round")
        lengths = {
            "start_times": len(start_times),
            "caps": len(caps),
            "deposits": len(deposits),
            "commitments_or_percents": len(commitments_or_percents),
        }
        if len(set(lengths.values())) != 1:
            raise LengthMismatch("Round configuration arrays differ in length", lengths)
        if not paused:
            raise NotPaused("Rounds can only be configured while paused")

        previous_start = self._last_start_time
        previous_percent = self._last_percent()
        staged: list[Round] = []
        next_index = len(self._rounds)

        for offset, (start, cap, deposit, entry) in enumerate(
            zip(start_times, caps, deposits, commitments_or_percents)
        ):
            index = next_index + offset
            if start.tzinfo is None:
                raise InvalidRoundConfig(
                    "Round start time must be timezone-aware", {"round": index}
                )
            if previous_start is not None and start < previous_start:
                raise InvalidRoundConfig(
                    "Round start times must be non-decreasing",
                    {"round": index, "start_time": start.isoformat(),
                     "previous": previous_start.isoformat()},
                )
            if deadline is not None and start >= deadline:
                raise InvalidRoundConfig(
                    "Round must start before the claim deadline",
                    {"round": index, "start_time": start.isoformat(),
                     "deadline": deadline.isoformat()},
                )
            if deposit < 0:
                raise InvalidRoundConfig("Deposit must be non-negative", {"round": index})
            if cap is not None and cap < 0:
                raise InvalidRoundConfig("Cap must be non-negative", {"round": index})

            kind, commitment, percent = self._classify(index, entry)
            if kind == RoundKind.PERCENTAGE:
                if not 0 <= percent <= self._percent_precision:
                    raise InvalidRoundConfig(
                        "Release percent out of range",
                        {"round": index, "percent": percent,
                         "precision": self._percent_precision},
                    )
                if previous_percent is not None and percent < previous_percent:
                    raise InvalidRoundConfig(
                        "Cumulative release percent must not regress",
                        {"round": index, "percent": percent, "previous": previous_percent},
                    )
                previous_percent = percent

            staged.append(Round(
                index=index,
                kind=kind,
                start_time=start,
                max_per_user=cap or None,
                deposited_amount=deposit,
                commitment=commitment,
                release_percent=percent,
            ))
            previous_start = start

        self._rounds.extend(staged)
        self._last_start_time = previous_start
        return [r.index for r in staged]

    def _classify(
        self,
        index: int,
        entry: CommitmentOrPercent,
    ) -> tuple[RoundKind, Optional[str], Optional[int]]:
        if entry is None:
            return RoundKind.SIGNATURE, None, None
        if isinstance(entry, bool):
            raise InvalidRoundConfig("Boolean is not a valid round entry", {"round": index})
        if isinstance(entry, int):
            return RoundKind.PERCENTAGE, None, entry
        try:
            root = to_hex(to_bytes32(entry))
        except ValueError as exc:
            raise InvalidRoundConfig(
                f"Invalid commitment: {exc}", {"round": index}
            ) from exc
        if int(root, 16) == 0:
            raise InvalidRoundConfig("Commitment must not be the zero hash", {"round": index})
        return RoundKind.PROOF, root, None

    def _last_percent(self) -> Optional[int]:
        for r in reversed(self._rounds):
            if r.kind == RoundKind.PERCENTAGE:
                return r.release_percent
        return None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_round(self, index: int) -> RoundSnapshot:
        return self._get(index).snapshot()

    def rounds(self) -> list[RoundSnapshot]:
        return [r.snapshot() for r in self._rounds]

    def __len__(self) -> int:
        return len(self._rounds)

    @property
    def last_start_time(self) -> Optional[datetime]:
        return self._last_start_time

    @property
    def percent_precision(self) -> int:
        return self._percent_precision

    def unclaimed(self, index: int) -> int:
        r = self._get(index)
        return r.deposited_amount - r.claimed_amount

    def round_state(
        self,
        index: int,
        now: datetime,
        deadline: Optional[datetime] = None,
    ) -> RoundState:
        """Derive the claim-window state. A passed deadline wins over everything."""
        r = self._get(index)
        if deadline is not None and now >= deadline:
            return RoundState.DEADLINE_PASSED
        if now < r.start_time:
            return RoundState.PENDING
        if r.claimed_amount == r.deposited_amount:
            return RoundState.EXHAUSTED
        return RoundState.OPEN

    def current_round(self, now: datetime) -> Optional[int]:
        """Index of the latest round whose start time has been reached."""
        current: Optional[int] = None
        for r in self._rounds:
            if r.start_time <= now:
                current = r.index
            else:
                break
        return current

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_claim(self, index: int, amount: int) -> RoundSnapshot:
        """Increment claimed_amount. Fails if it would exceed the deposit."""
        return self.record_claims({index: amount})[0]

    def record_claims(self, deltas: Mapping[int, int]) -> list[RoundSnapshot]:
        """Apply several claim increments together. All-or-nothing."""
        for index, amount in deltas.items():
            r = self._get(index)
            if amount <= 0:
                raise IncorrectAmount("Claim amount must be positive", {"round": index})
            if r.claimed_amount + amount > r.deposited_amount:
                raise RoundExhausted(
                    "Claim exceeds the round's remaining deposit",
                    {"round": index, "requested": amount,
                     "remaining": r.deposited_amount - r.claimed_amount},
                )
        applied: list[RoundSnapshot] = []
        for index, amount in deltas.items():
            r = self._rounds[index]
            r.claimed_amount += amount
            r.version += 1
            applied.append(r.snapshot())
        return applied

    def finance_round(self, index: int, delta: int) -> RoundSnapshot:
        """Adjust deposited_amount: positive deposits, negative withdraws."""
        r = self._get(index)
        if delta == 0:
            raise IncorrectAmount("Financing delta must be non-zero", {"round": index})
        if r.deposited_amount + delta < r.claimed_amount:
            raise WithdrawNotAllowed(
                "Withdrawal exceeds the round's unclaimed balance",
                {"round": index, "requested": -delta,
                 "unclaimed": r.deposited_amount - r.claimed_amount},
            )
        r.deposited_amount += delta
        r.version += 1
        return r.snapshot()

    def _get(self, index: int) -> Round:
        """Internal lookup with clear error on unknown index."""
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(self._rounds):
            raise UnknownRound(f"Unknown round: {index}", {"round_count": len(self._rounds)})
        return self._rounds[index]
