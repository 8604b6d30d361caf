"""Claim error taxonomy.

Every rejection in the distributor raises exactly one ClaimError subclass.
Each class carries a stable ``code`` so callers (and the service layer)
can tell rejections apart without parsing messages.

Categories:
- Validation: malformed input, rejected before any state is read.
- Authorization: proof/signature/capability failures. Not retryable with
  the same token.
- State conflict: permanent for that input (rounds never un-exhaust,
  deadlines never move backward).
- Arithmetic/policy: caller-side miscomputation.

All classes subclass ValueError so existing ``except ValueError`` call
sites keep working.
"""

from __future__ import annotations

from typing import Any, Optional


class ClaimError(ValueError):
    """Base class for every distributor rejection."""

    code = "claim_error"
    category = "unknown"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------

class ValidationError(ClaimError):
    code = "validation_error"
    category = "validation"


class EmptyBatch(ValidationError):
    code = "empty_batch"


class LengthMismatch(ValidationError):
    code = "length_mismatch"


class InvalidRoundConfig(ValidationError):
    code = "invalid_round_config"


class UnknownRound(ValidationError):
    code = "unknown_round"


# ------------------------------------------------------------------
# Authorization
# ------------------------------------------------------------------

class AuthorizationError(ClaimError):
    code = "authorization_error"
    category = "authorization"


class InvalidAuthorization(AuthorizationError):
    code = "invalid_authorization"


class InvalidProof(InvalidAuthorization):
    code = "invalid_proof"


class InvalidSignature(InvalidAuthorization):
    code = "invalid_signature"


class Unauthorized(AuthorizationError):
    """Caller did not present the required capability."""
    code = "unauthorized"


# ------------------------------------------------------------------
# State conflict
# ------------------------------------------------------------------

class StateConflict(ClaimError):
    code = "state_conflict"
    category = "state_conflict"


class AlreadyClaimed(StateConflict):
    code = "already_claimed"


class RoundNotStarted(StateConflict):
    code = "round_not_started"


class RoundExhausted(StateConflict):
    code = "round_exhausted"


class DeadlineExceeded(StateConflict):
    code = "deadline_exceeded"


class Paused(StateConflict):
    code = "paused"


class NotPaused(StateConflict):
    code = "not_paused"


class WithdrawNotAllowed(StateConflict):
    code = "withdraw_not_allowed"


# ------------------------------------------------------------------
# Arithmetic / policy
# ------------------------------------------------------------------

class PolicyError(ClaimError):
    code = "policy_error"
    category = "policy"


class AmountExceedsMax(PolicyError):
    code = "amount_exceeds_max"


class IncorrectAmount(PolicyError):
    code = "incorrect_amount"


class InvalidDeadline(PolicyError):
    code = "invalid_deadline"
