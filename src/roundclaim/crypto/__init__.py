"""Cryptographic primitives — claim Merkle trees and structured claim signatures."""

from roundclaim.crypto.merkle import ClaimTree, claim_leaf, verify_proof
from roundclaim.crypto.claim_signature import recover_claim_signer, sign_claim

__all__ = [
    "ClaimTree",
    "claim_leaf",
    "recover_claim_signer",
    "sign_claim",
    "verify_proof",
]
