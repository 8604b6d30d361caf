"""Distribution service — unified facade for the round-based claim distributor.

This is the primary interface for programmatic access. It wires together:
- Round registry (schedule, caps, funding)
- Replay guard (at-most-once token consumption)
- Claim authorizer (Merkle proofs, allocator signatures)
- Claim processor (single and batch pipelines)
- Pause gate and capability checks (administration)
- Transfer rail (pays out committed settlements)
- Event log (observability)

All operations return a ServiceResult. A rejection carries the
distributor's error code in ``data["reason"]`` so callers can branch on
it without parsing messages.

Ordering after a successful claim:
1. State is committed by the processor (claim is final from here on).
2. Events are appended. A log failure marks the service degraded but
   does not undo the claim.
3. The settlement instruction goes to the transfer rail. A rail failure
   marks the service degraded and is reported; the claim stays committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from roundclaim.access.gate import AccessControl, Capability, CapabilityToken, PauseGate
from roundclaim.config import DistributionConfig
from roundclaim.distribution.authorizer import ClaimAuthorizer
from roundclaim.distribution.processor import ClaimProcessor, build_request
from roundclaim.distribution.registry import CommitmentOrPercent, RoundRegistry
from roundclaim.distribution.replay import ReplayGuard
from roundclaim.models.distribution import RoundKind, RoundSnapshot, SettlementInstruction
from roundclaim.models.errors import ClaimError
from roundclaim.persistence.event_log import EventKind, EventLog, EventRecord
from roundclaim.settlement.rail import RecordingRail, TransferError, TransferRail

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def reason(self) -> Optional[str]:
        return self.data.get("reason")


class DistributionService:
    """Round-based claim distributor facade.

    Usage:
        service = DistributionService(DistributionConfig.from_config_dir(config_dir))
        owner = service.access.owner_token
        admin = service.grant(owner, "ops", Capability.ADMIN).data["capability"]

        service.configure_rounds(admin, start_times, caps, deposits, entries)
        service.unpause(admin)

        result = service.claim(user, round_index=0, amount=50, token=signature)
        result.data["amount"]   # settlement

    The distributor starts paused (setup mode).
    """

    def __init__(
        self,
        config: DistributionConfig,
        owner: str = "owner",
        rail: Optional[TransferRail] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        errors = config.validate()
        if errors:
            raise ValueError(f"Invalid distribution config: {'; '.join(errors)}")

        self._config = config
        self._gate = PauseGate(paused=True)
        self._access = AccessControl(owner)
        self._registry = RoundRegistry(config.percent_precision)
        self._guard = ReplayGuard()
        self._authorizer = ClaimAuthorizer(config)
        self._processor = ClaimProcessor(
            self._registry, self._guard, self._authorizer, self._gate,
        )
        self._rail: TransferRail = rail if rail is not None else RecordingRail()
        self._event_log = event_log if event_log is not None else EventLog()

        # Post-commit health flags. In-memory claim state is always
        # correct; these mean a downstream record or payout needs an operator.
        self._event_log_degraded: bool = False
        self._transfer_degraded: bool = False
        self._failed_instructions: list[SettlementInstruction] = []

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        user: str,
        round_index: int,
        amount: int,
        token: object,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Single-round claim. ``token`` is a signature or a Merkle proof."""
        now = now or datetime.now(timezone.utc)
        try:
            request = build_request(user, round_index, amount, token)
            instruction = self._processor.claim(request, now=now)
        except ClaimError as e:
            return self._reject("claim", user, e)

        warnings = self._record_event(
            EventKind.CLAIMED, instruction.recipient,
            {"user": instruction.recipient, "round": round_index, "amount": instruction.amount},
            now,
            instruction_id=instruction.instruction_id,
        )
        return self._settle(instruction, warnings, now)

    def claim_batch(
        self,
        user: str,
        rounds: Sequence[int],
        amounts: Sequence[int],
        tokens: Sequence[object],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Atomic multi-round claim: every round settles or none does."""
        now = now or datetime.now(timezone.utc)
        try:
            instruction = self._processor.claim_batch(user, rounds, amounts, tokens, now=now)
        except ClaimError as e:
            return self._reject("claim_batch", user, e)

        warnings = self._record_event(
            EventKind.CLAIMED_BATCH, instruction.recipient,
            {
                "user": instruction.recipient,
                "rounds": list(instruction.rounds),
                "total_amount": instruction.amount,
            },
            now,
            instruction_id=instruction.instruction_id,
        )
        return self._settle(instruction, warnings, now)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def grant(self, owner_token: str, holder: str, capability: Capability) -> ServiceResult:
        try:
            token = self._access.grant(owner_token, holder, capability)
        except ValueError as e:
            return self._reject("grant", holder, e)
        return ServiceResult(success=True, data={"capability": token})

    def revoke(self, owner_token: str, token: CapabilityToken) -> ServiceResult:
        try:
            self._access.revoke(owner_token, token)
        except ValueError as e:
            return self._reject("revoke", token.holder, e)
        return ServiceResult(success=True, data={"revoked": token.token_id})

    def transfer_ownership(self, owner_token: str, new_owner: str) -> ServiceResult:
        try:
            self._access.propose_owner(owner_token, new_owner)
        except ValueError as e:
            return self._reject("transfer_ownership", new_owner, e)
        return ServiceResult(success=True, data={"pending_owner": new_owner})

    def accept_ownership(self, claimant: str, now: Optional[datetime] = None) -> ServiceResult:
        previous = self._access.owner
        try:
            owner_token = self._access.accept_ownership(claimant)
        except ClaimError as e:
            return self._reject("accept_ownership", claimant, e)
        warnings = self._record_event(
            EventKind.OWNERSHIP_TRANSFERRED, claimant,
            {"previous_owner": previous, "new_owner": claimant}, now,
        )
        return ServiceResult(success=True, data={"owner_token": owner_token, "warnings": warnings})

    def pause(self, admin: CapabilityToken, now: Optional[datetime] = None) -> ServiceResult:
        try:
            self._access.require(admin, Capability.ADMIN)
            self._processor.pause()
        except ClaimError as e:
            return self._reject("pause", _holder(admin), e)
        warnings = self._record_event(EventKind.PAUSED, admin.holder, {}, now)
        return ServiceResult(success=True, data={"paused": True, "warnings": warnings})

    def unpause(self, admin: CapabilityToken, now: Optional[datetime] = None) -> ServiceResult:
        try:
            self._access.require(admin, Capability.ADMIN)
            self._processor.unpause()
        except ClaimError as e:
            return self._reject("unpause", _holder(admin), e)
        warnings = self._record_event(EventKind.UNPAUSED, admin.holder, {}, now)
        return ServiceResult(success=True, data={"paused": False, "warnings": warnings})

    def configure_rounds(
        self,
        admin: CapabilityToken,
        start_times: Sequence[datetime],
        caps: Sequence[Optional[int]],
        deposits: Sequence[int],
        commitments_or_percents: Sequence[CommitmentOrPercent],
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Append rounds. Admin only, paused only, all-or-nothing."""
        try:
            self._access.require(admin, Capability.ADMIN)
            indices = self._processor.configure_rounds(
                start_times, caps, deposits, commitments_or_percents,
            )
        except ClaimError as e:
            return self._reject("configure_rounds", _holder(admin), e)

        last_start = self._registry.last_start_time
        payload = {
            "count": len(indices),
            "first_index": indices[0],
            "total_deposited": sum(deposits),
            "last_start_time": last_start.isoformat() if last_start else None,
        }
        warnings = self._record_event(EventKind.ROUNDS_CONFIGURED, admin.holder, payload, now)
        return ServiceResult(success=True, data={**payload, "indices": indices, "warnings": warnings})

    def update_deadline(
        self,
        admin: CapabilityToken,
        deadline: datetime,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            self._access.require(admin, Capability.ADMIN)
            self._processor.update_deadline(deadline, now=now)
        except ClaimError as e:
            return self._reject("update_deadline", _holder(admin), e)
        warnings = self._record_event(
            EventKind.DEADLINE_UPDATED, admin.holder, {"deadline": deadline.isoformat()}, now,
        )
        return ServiceResult(success=True, data={"deadline": deadline.isoformat(), "warnings": warnings})

    def deposit(
        self,
        financier: CapabilityToken,
        round_index: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            self._access.require(financier, Capability.FINANCIER)
            snapshot = self._processor.deposit(round_index, amount, now=now)
        except ClaimError as e:
            return self._reject("deposit", _holder(financier), e)
        return self._financed(financier, snapshot, amount, now)

    def withdraw(
        self,
        financier: CapabilityToken,
        round_index: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        try:
            self._access.require(financier, Capability.FINANCIER)
            snapshot = self._processor.withdraw(round_index, amount, now=now)
        except ClaimError as e:
            return self._reject("withdraw", _holder(financier), e)
        return self._financed(financier, snapshot, -amount, now)

    def _financed(
        self,
        financier: CapabilityToken,
        snapshot: RoundSnapshot,
        delta: int,
        now: Optional[datetime],
    ) -> ServiceResult:
        payload = {
            "round": snapshot.index,
            "delta": delta,
            "deposited_amount": snapshot.deposited_amount,
        }
        warnings = self._record_event(EventKind.ROUND_FINANCED, financier.holder, payload, now)
        return ServiceResult(success=True, data={**payload, "warnings": warnings})

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def access(self) -> AccessControl:
        return self._access

    @property
    def config(self) -> DistributionConfig:
        return self._config

    @property
    def rail(self) -> TransferRail:
        return self._rail

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def settlement_trail(self, instruction_id: str) -> list[EventRecord]:
        """Commit and transfer events for one payout, oldest first."""
        return self._event_log.for_instruction(instruction_id)

    @property
    def failed_instructions(self) -> list[SettlementInstruction]:
        return list(self._failed_instructions)

    def get_round(self, round_index: int) -> Optional[RoundSnapshot]:
        try:
            return self._registry.get_round(round_index)
        except ClaimError:
            return None

    def claimed_by(self, user: str, kind: Optional[RoundKind] = None) -> int:
        return self._processor.claimed_by(user, kind)

    def status(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        cfg = self._processor.global_config(now)
        return {
            "paused": cfg.paused,
            "deadline": cfg.deadline.isoformat() if cfg.deadline else None,
            "current_round": cfg.current_round,
            "rounds": [
                {
                    "index": r.index,
                    "kind": r.kind.value,
                    "state": self._processor.round_state(r.index, now).value,
                    "deposited_amount": r.deposited_amount,
                    "claimed_amount": r.claimed_amount,
                }
                for r in self._registry.rounds()
            ],
            "consumed_tokens": self._guard.count,
            "events": self._event_log.count,
            "event_head": self._event_log.head_hash,
            "event_log_degraded": self._event_log_degraded,
            "transfer_degraded": self._transfer_degraded,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _settle(
        self,
        instruction: SettlementInstruction,
        warnings: list[str],
        now: datetime,
    ) -> ServiceResult:
        """Hand a committed instruction to the rail."""
        data: dict[str, Any] = {
            "instruction_id": instruction.instruction_id,
            "recipient": instruction.recipient,
            "amount": instruction.amount,
            "rounds": list(instruction.rounds),
            "per_round": list(instruction.per_round),
        }
        try:
            receipt = self._rail.transfer(instruction)
        except TransferError as e:
            self._transfer_degraded = True
            self._failed_instructions.append(instruction)
            logger.error("Transfer failed after commit for %s: %s", instruction.instruction_id, e)
            warnings = warnings + self._record_event(
                EventKind.TRANSFER_FAILED, instruction.recipient,
                {"amount": instruction.amount, "error": str(e)},
                now,
                instruction_id=instruction.instruction_id,
            )
            data["transfer_status"] = "failed"
            warnings = warnings + [f"Transfer degraded: {e}; claim committed, payout pending"]
        else:
            warnings = warnings + self._record_event(
                EventKind.TRANSFER_COMPLETED, instruction.recipient,
                {"reference": receipt.reference},
                now,
                instruction_id=instruction.instruction_id,
            )
            data["transfer_status"] = "completed"
            data["transfer_reference"] = receipt.reference
        data["warnings"] = warnings
        return ServiceResult(success=True, data=data)

    def _reject(self, operation: str, actor: str, error: ValueError) -> ServiceResult:
        code = getattr(error, "code", "validation_error")
        category = getattr(error, "category", "validation")
        logger.info("%s rejected for %s: [%s] %s", operation, actor, code, error)
        return ServiceResult(
            success=False,
            errors=[str(error)],
            data={"reason": code, "category": category},
        )

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime],
        instruction_id: Optional[str] = None,
    ) -> list[str]:
        """Append an event after commit. Returns warnings (empty = OK).

        MUST NOT roll back: the state change it describes is final.
        """
        try:
            self._event_log.record(
                kind, actor_id, payload, timestamp_utc=now, instruction_id=instruction_id,
            )
            return []
        except (ValueError, OSError) as e:
            self._event_log_degraded = True
            logger.warning("Event log degraded on %s: %s", kind.value, e)
            return [f"Event log degraded: {e}: state committed but {kind.value} not recorded"]


def _holder(token: Optional[CapabilityToken]) -> str:
    return token.holder if token is not None else "anonymous"
