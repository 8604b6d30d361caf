"""Claim processor — validation pipeline and atomic settlement.

Single claim, fixed order:

    1. pause check                 → Paused
    2. deadline check              → DeadlineExceeded
    3. replay check                → AlreadyClaimed
    4. round started               → RoundNotStarted
    5. round exhausted             → RoundExhausted
    6. proof / signature           → InvalidProof / InvalidSignature
    7. per-user cap                → AmountExceedsMax
    8. settlement amount           → IncorrectAmount
    9. commit round, user, token   (one indivisible transition)
   10. return the settlement instruction

Batch claims validate shapes first (EmptyBatch / LengthMismatch), then run
steps 2-8 for every entry against a working copy of state. Any failure
rejects the whole batch with zero mutation; otherwise all mutations are
applied together and the settlements are summed into one instruction.

Settlement rules by round kind:
    SIGNATURE   settlement = signed amount (single use per signature;
                the cap applies to the user's total within the round)
    PROOF       settlement = leaf amount − already claimed via proof rounds
                (leaves are cumulative entitlements; single use per round)
    PERCENTAGE  settlement = floor(total × percent / precision)
                − already claimed via percentage rounds

A zero or negative settlement is rejected and consumes no token.

Every claim, batch and administrative mutation runs under one re-entrant
lock, so no two operations interleave their read-modify-write of a round
or a token. The processor has no side effects beyond its own state:
transfers and event logging belong to the service layer, after commit.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import uuid4

from eth_utils import is_address, to_checksum_address

from roundclaim.access.gate import PauseGate
from roundclaim.crypto.merkle import MAX_UINT256
from roundclaim.distribution.authorizer import ClaimAuthorizer
from roundclaim.distribution.registry import CommitmentOrPercent, RoundRegistry
from roundclaim.distribution.replay import ReplayGuard
from roundclaim.models.distribution import (
    ClaimRequest,
    GlobalConfig,
    RoundKind,
    RoundSnapshot,
    RoundState,
    SettlementInstruction,
)
from roundclaim.models.errors import (
    AlreadyClaimed,
    AmountExceedsMax,
    DeadlineExceeded,
    EmptyBatch,
    IncorrectAmount,
    InvalidDeadline,
    LengthMismatch,
    RoundExhausted,
    RoundNotStarted,
    ValidationError,
    WithdrawNotAllowed,
)


@dataclass
class _WorkingCopy:
    """Uncommitted effects of the entries validated so far."""
    round_deltas: dict[int, int] = field(default_factory=lambda: defaultdict(int))
    user_deltas: dict[tuple[str, RoundKind], int] = field(default_factory=lambda: defaultdict(int))
    in_round: dict[tuple[str, int], int] = field(default_factory=lambda: defaultdict(int))
    tokens: list[bytes] = field(default_factory=list)
    settlements: list[tuple[int, int]] = field(default_factory=list)


class ClaimProcessor:
    """Runs the claim pipeline and owns per-user claim totals.

    Usage:
        processor = ClaimProcessor(registry, guard, authorizer, gate)
        instruction = processor.claim(request, now=now)
        instruction = processor.claim_batch(user, rounds, amounts, tokens, now=now)
    """

    def __init__(
        self,
        registry: RoundRegistry,
        guard: ReplayGuard,
        authorizer: ClaimAuthorizer,
        gate: PauseGate,
    ) -> None:
        self._registry = registry
        self._guard = guard
        self._authorizer = authorizer
        self._gate = gate
        self._deadline: Optional[datetime] = None
        self._claimed: dict[str, dict[RoundKind, int]] = {}
        self._in_round: dict[tuple[str, int], int] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        request: ClaimRequest,
        now: Optional[datetime] = None,
    ) -> SettlementInstruction:
        """Settle one round for one user."""
        now = _utc(now)
        with self._lock:
            self._gate.require_unpaused()
            working = _WorkingCopy()
            self._stage(request, now, working)
            self._commit(working)
        return self._instruction(request.user, working, now)

    def claim_batch(
        self,
        user: str,
        rounds: Sequence[int],
        amounts: Sequence[int],
        tokens: Sequence[object],
        now: Optional[datetime] = None,
    ) -> SettlementInstruction:
        """Settle several rounds for one user, all-or-nothing.

        ``tokens[i]`` is the signature (bytes) or proof (sequence of hex
        hashes) for ``rounds[i]``. One signature per round.
        """
        if not rounds:
            raise EmptyBatch("Batch claim requires at least one round")
        if not (len(rounds) == len(amounts) == len(tokens)):
            raise LengthMismatch(
                "Batch claim arrays differ in length",
                {"rounds": len(rounds), "amounts": len(amounts), "tokens": len(tokens)},
            )
        requests = [
            build_request(user, round_index, amount, token)
            for round_index, amount, token in zip(rounds, amounts, tokens)
        ]

        now = _utc(now)
        with self._lock:
            self._gate.require_unpaused()
            working = _WorkingCopy()
            for request in requests:
                self._stage(request, now, working)
            self._commit(working)
        return self._instruction(user, working, now)

    def _stage(self, request: ClaimRequest, now: datetime, working: _WorkingCopy) -> None:
        """Steps 2-8 for one entry, recording effects in ``working``."""
        # 2. deadline
        if self._deadline is not None and now >= self._deadline:
            raise DeadlineExceeded(
                "Claim deadline has passed",
                {"deadline": self._deadline.isoformat(), "now": now.isoformat()},
            )

        snapshot = self._registry.get_round(request.round_index)

        # 3. replay
        token = self._authorizer.replay_token(snapshot, request)
        if self._guard.is_consumed(token) or token in working.tokens:
            raise AlreadyClaimed(
                "Authorization already redeemed",
                {"round": snapshot.index, "user": request.user},
            )

        # 4. started
        if now < snapshot.start_time:
            raise RoundNotStarted(
                "Round has not started",
                {"round": snapshot.index, "start_time": snapshot.start_time.isoformat()},
            )

        # 5. exhausted
        staged_claimed = snapshot.claimed_amount + working.round_deltas.get(snapshot.index, 0)
        if staged_claimed >= snapshot.deposited_amount:
            raise RoundExhausted("Round is exhausted", {"round": snapshot.index})

        # 6. authorisation
        authorization = self._authorizer.verify(snapshot, request)
        user = authorization.user

        # 7. cap
        key = (user, snapshot.index)
        in_round = self._in_round.get(key, 0) + working.in_round.get(key, 0)
        if snapshot.max_per_user is not None:
            # signature rounds: the cap bounds the user's running total in the round
            capped = request.amount + in_round if snapshot.kind == RoundKind.SIGNATURE else request.amount
            if capped > snapshot.max_per_user:
                raise AmountExceedsMax(
                    "Amount exceeds the round's per-user maximum",
                    {"round": snapshot.index, "amount": request.amount,
                     "claimed_in_round": in_round, "max_per_user": snapshot.max_per_user},
                )

        # 8. settlement
        already = self._claimed_by(user, snapshot.kind) + working.user_deltas.get((user, snapshot.kind), 0)
        settlement = self._settlement(snapshot, request.amount, already)
        if settlement <= 0:
            raise IncorrectAmount(
                "Nothing claimable for this authorization",
                {"round": snapshot.index, "authorized": request.amount,
                 "already_claimed": already, "settlement": settlement},
            )
        if staged_claimed + settlement > snapshot.deposited_amount:
            raise RoundExhausted(
                "Settlement exceeds the round's remaining deposit",
                {"round": snapshot.index, "settlement": settlement,
                 "remaining": snapshot.deposited_amount - staged_claimed},
            )

        working.round_deltas[snapshot.index] += settlement
        working.user_deltas[(user, snapshot.kind)] += settlement
        working.in_round[key] += settlement
        working.tokens.append(authorization.token)
        working.settlements.append((snapshot.index, settlement))

    def _settlement(self, snapshot: RoundSnapshot, amount: int, already: int) -> int:
        if snapshot.kind == RoundKind.SIGNATURE:
            return amount
        if snapshot.kind == RoundKind.PROOF:
            return amount - already
        released = amount * snapshot.release_percent // self._registry.percent_precision
        return released - already

    def _commit(self, working: _WorkingCopy) -> None:
        """Step 9: apply every staged effect as one transition.

        Everything was validated under the same lock, so neither apply
        call can fail part-way.
        """
        self._registry.record_claims(dict(working.round_deltas))
        self._guard.consume_all(working.tokens)
        for (user, kind), delta in working.user_deltas.items():
            per_kind = self._claimed.setdefault(user, {})
            per_kind[kind] = per_kind.get(kind, 0) + delta
        for key, delta in working.in_round.items():
            self._in_round[key] = self._in_round.get(key, 0) + delta

    def _instruction(self, user: str, working: _WorkingCopy, now: datetime) -> SettlementInstruction:
        return SettlementInstruction(
            instruction_id=f"settle_{uuid4().hex[:12]}",
            recipient=to_checksum_address(user),
            amount=sum(amount for _, amount in working.settlements),
            rounds=tuple(index for index, _ in working.settlements),
            created_utc=now,
            per_round=tuple(amount for _, amount in working.settlements),
        )

    # ------------------------------------------------------------------
    # User claim state
    # ------------------------------------------------------------------

    def _claimed_by(self, user: str, kind: RoundKind) -> int:
        return self._claimed.get(user, {}).get(kind, 0)

    def claimed_by(self, user: str, kind: Optional[RoundKind] = None) -> int:
        """Cumulative amount settled to ``user`` (optionally for one round kind)."""
        per_kind = self._claimed.get(to_checksum_address(user), {})
        if kind is not None:
            return per_kind.get(kind, 0)
        return sum(per_kind.values())

    # ------------------------------------------------------------------
    # Administrative mutations (paused-only where required)
    # ------------------------------------------------------------------

    def pause(self) -> None:
        with self._lock:
            self._gate.pause()

    def unpause(self) -> None:
        with self._lock:
            self._gate.unpause()

    def configure_rounds(
        self,
        start_times: Sequence[datetime],
        caps: Sequence[Optional[int]],
        deposits: Sequence[int],
        commitments_or_percents: Sequence[CommitmentOrPercent],
    ) -> list[int]:
        with self._lock:
            return self._registry.configure_rounds(
                start_times, caps, deposits, commitments_or_percents,
                paused=self._gate.paused, deadline=self._deadline,
            )

    def update_deadline(self, deadline: datetime, now: Optional[datetime] = None) -> datetime:
        """Set the hard claim cutoff.

        Must be strictly after ``now`` and after the last configured
        round's start. A deadline that has already passed is final.
        """
        now = _utc(now)
        with self._lock:
            self._gate.require_paused()
            if deadline.tzinfo is None:
                raise InvalidDeadline("Deadline must be timezone-aware")
            if self._deadline is not None and now >= self._deadline:
                raise InvalidDeadline(
                    "Deadline has already passed and cannot be moved",
                    {"deadline": self._deadline.isoformat()},
                )
            if deadline <= now:
                raise InvalidDeadline(
                    "Deadline must be in the future",
                    {"deadline": deadline.isoformat(), "now": now.isoformat()},
                )
            last_start = self._registry.last_start_time
            if last_start is not None and deadline <= last_start:
                raise InvalidDeadline(
                    "Deadline must be after the last round's start",
                    {"deadline": deadline.isoformat(), "last_start_time": last_start.isoformat()},
                )
            self._deadline = deadline
            return deadline

    def deposit(self, round_index: int, amount: int, now: Optional[datetime] = None) -> RoundSnapshot:
        now = _utc(now)
        with self._lock:
            if amount <= 0:
                raise IncorrectAmount("Deposit must be positive", {"round": round_index})
            snapshot = self._registry.get_round(round_index)
            if self._deadline is not None and now >= self._deadline:
                raise DeadlineExceeded("Cannot fund a round after the deadline", {"round": round_index})
            if snapshot.claimed_amount > 0 and snapshot.is_exhausted:
                raise RoundExhausted("Exhausted rounds cannot be refunded", {"round": round_index})
            return self._registry.finance_round(round_index, amount)

    def withdraw(self, round_index: int, amount: int, now: Optional[datetime] = None) -> RoundSnapshot:
        """Reclaim unclaimed deposit once the round can no longer be claimed."""
        now = _utc(now)
        with self._lock:
            if amount <= 0:
                raise IncorrectAmount("Withdrawal must be positive", {"round": round_index})
            state = self._registry.round_state(round_index, now, self._deadline)
            if state not in (RoundState.DEADLINE_PASSED, RoundState.EXHAUSTED):
                raise WithdrawNotAllowed(
                    "Withdrawal requires the deadline to have passed or the round to be exhausted",
                    {"round": round_index, "state": state.value},
                )
            return self._registry.finance_round(round_index, -amount)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def deadline(self) -> Optional[datetime]:
        return self._deadline

    def global_config(self, now: Optional[datetime] = None) -> GlobalConfig:
        now = _utc(now)
        with self._lock:
            return GlobalConfig(
                deadline=self._deadline,
                current_round=self._registry.current_round(now),
                paused=self._gate.paused,
                last_start_time=self._registry.last_start_time,
            )

    def round_state(self, round_index: int, now: Optional[datetime] = None) -> RoundState:
        return self._registry.round_state(round_index, _utc(now), self._deadline)


def build_request(user: str, round_index: int, amount: int, token: object) -> ClaimRequest:
    """Map a raw authorisation token onto a ClaimRequest.

    bytes or a 0x-hex string is a signature; a list/tuple of hashes is a
    Merkle proof.
    """
    if not isinstance(user, str) or not is_address(user):
        raise ValidationError(f"Invalid user address: {user!r}")
    if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= MAX_UINT256:
        raise ValidationError(f"Amount must be a uint256: {amount!r}")
    if isinstance(token, (bytes, bytearray)):
        return ClaimRequest(user=user, round_index=round_index, amount=amount, signature=bytes(token))
    if isinstance(token, str):
        try:
            signature = bytes.fromhex(token.removeprefix("0x"))
        except ValueError as exc:
            raise ValidationError(f"Signature is not valid hex: {exc}") from exc
        return ClaimRequest(user=user, round_index=round_index, amount=amount, signature=signature)
    if isinstance(token, (list, tuple)):
        return ClaimRequest(user=user, round_index=round_index, amount=amount, proof=tuple(token))
    raise ValidationError(f"Unsupported authorization token type: {type(token).__name__}")


def _utc(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)
