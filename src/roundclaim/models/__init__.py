"""Core data models for the round-based claim distributor."""

from roundclaim.models.distribution import (
    ROUND_STATE_TRANSITIONS,
    ClaimRequest,
    GlobalConfig,
    Round,
    RoundKind,
    RoundSnapshot,
    RoundState,
    SettlementInstruction,
)

__all__ = [
    "ROUND_STATE_TRANSITIONS",
    "ClaimRequest",
    "GlobalConfig",
    "Round",
    "RoundKind",
    "RoundSnapshot",
    "RoundState",
    "SettlementInstruction",
]
