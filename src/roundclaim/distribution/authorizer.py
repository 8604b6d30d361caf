"""Claim authorizer — decides whether a claim request is legitimately authorised.

Two modes, selected per round at configuration time:

Proof mode (PROOF rounds):
    Recompute the leaf from (user, amount) and verify inclusion under the
    round's stored commitment. The leaf amount is the user's cumulative
    allocation; the processor subtracts what the user already claimed.
    Precondition: the commitment was built with sorted-pair keccak
    hashing (see roundclaim.crypto.merkle).

Signature mode (SIGNATURE and PERCENTAGE rounds):
    Rebuild the EIP-712 claim message for (user, round, amount), recover
    the signer and compare it with the single trusted allocator. The
    zero address never authorises anything.

One signature authorises exactly one (user, round, amount) triple. There
is no aggregate multi-round signature: batch claims carry one signature
per entry.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_utils import is_address, to_checksum_address

from roundclaim.config import ZERO_ADDRESS, DistributionConfig
from roundclaim.crypto.claim_signature import recover_claim_signer
from roundclaim.crypto.merkle import MAX_UINT256, claim_leaf, verify_proof
from roundclaim.distribution.replay import token_for_pair, token_for_signature
from roundclaim.models.distribution import ClaimRequest, RoundKind, RoundSnapshot
from roundclaim.models.errors import InvalidProof, InvalidSignature


@dataclass(frozen=True)
class Authorization:
    """Result of a successful verification."""
    round_index: int
    user: str
    authorized_amount: int
    token: bytes
    mode: RoundKind


class ClaimAuthorizer:
    """Verifies proofs and allocator signatures.

    Pure computation: no state is read or written beyond the round
    snapshot passed in.
    """

    def __init__(self, config: DistributionConfig) -> None:
        self._config = config
        self._allocator = to_checksum_address(config.trusted_allocator)
        if self._allocator.lower() == ZERO_ADDRESS:
            raise ValueError("Trusted allocator must not be the zero address")

    @property
    def trusted_allocator(self) -> str:
        return self._allocator

    def replay_token(self, snapshot: RoundSnapshot, request: ClaimRequest) -> bytes:
        """Token the replay guard keys this request by.

        Derivable before verification so known replays are rejected
        without paying for signature recovery.
        """
        if snapshot.kind == RoundKind.PROOF:
            return token_for_pair(snapshot.index, _checked_user(request.user, InvalidProof))
        if not request.signature:
            raise InvalidSignature("Signature required for this round", {"round": snapshot.index})
        return token_for_signature(bytes(request.signature))

    def verify(self, snapshot: RoundSnapshot, request: ClaimRequest) -> Authorization:
        """Verify a request against its round. Raises InvalidAuthorization subclasses."""
        if not 0 <= request.amount <= MAX_UINT256:
            raise (InvalidProof if snapshot.kind == RoundKind.PROOF else InvalidSignature)(
                "Authorised amount must be a uint256", {"round": snapshot.index}
            )
        if snapshot.kind == RoundKind.PROOF:
            self.verify_proof(snapshot, request.user, request.amount, request.proof)
        else:
            self.verify_signature(
                request.user, snapshot.index, request.amount, request.signature or b""
            )
        return Authorization(
            round_index=snapshot.index,
            user=to_checksum_address(request.user),
            authorized_amount=request.amount,
            token=self.replay_token(snapshot, request),
            mode=snapshot.kind,
        )

    def verify_proof(
        self,
        snapshot: RoundSnapshot,
        user: str,
        amount: int,
        proof: tuple[str, ...],
    ) -> None:
        if snapshot.commitment is None:
            raise InvalidProof("Round has no commitment", {"round": snapshot.index})
        leaf = claim_leaf(_checked_user(user, InvalidProof), amount)
        if not verify_proof(proof, snapshot.commitment, leaf):
            raise InvalidProof(
                "Merkle proof does not match the round commitment",
                {"round": snapshot.index, "user": user, "amount": amount},
            )

    def verify_signature(
        self,
        user: str,
        round_index: int,
        amount: int,
        signature: bytes,
    ) -> None:
        signer = recover_claim_signer(
            self._config,
            _checked_user(user, InvalidSignature),
            round_index,
            amount,
            bytes(signature),
        )
        if signer.lower() != self._allocator.lower():
            raise InvalidSignature(
                "Signature was not issued by the trusted allocator",
                {"round": round_index, "signer": signer},
            )


def _checked_user(user: str, error: type) -> str:
    if not isinstance(user, str) or not is_address(user):
        raise error(f"Invalid user address: {user!r}")
    return to_checksum_address(user)
