"""Structured claim signatures (EIP-712).

A trusted allocator authorises one (user, round, amount) triple by
signing typed data under a deployment-specific domain:

    EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)
    Claim(address user,uint256 round,uint256 amount)

Changing the recipient, round or amount changes the digest and the
signature no longer recovers to the allocator. The domain binds the
system name, version, chain and deployment address, so a signature from
one deployment is worthless on another.

Signatures must be 65 bytes (r || s || v) with v in {27, 28} and s in the
lower half of the curve order. Non-canonical encodings are rejected so a
single authorisation has exactly one valid byte representation.
"""

from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_checksum_address

from roundclaim.config import ZERO_ADDRESS, DistributionConfig
from roundclaim.models.errors import InvalidSignature

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

CLAIM_FIELDS = [
    {"name": "user", "type": "address"},
    {"name": "round", "type": "uint256"},
    {"name": "amount", "type": "uint256"},
]


def claim_typed_data(
    config: DistributionConfig,
    user: str,
    round_index: int,
    amount: int,
) -> dict[str, Any]:
    """Full EIP-712 payload for a claim."""
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_FIELDS,
            "Claim": CLAIM_FIELDS,
        },
        "primaryType": "Claim",
        "domain": {
            "name": config.system_name,
            "version": config.version,
            "chainId": config.chain_id,
            "verifyingContract": to_checksum_address(config.verifying_contract),
        },
        "message": {
            "user": to_checksum_address(user),
            "round": round_index,
            "amount": amount,
        },
    }


def claim_message(
    config: DistributionConfig,
    user: str,
    round_index: int,
    amount: int,
) -> SignableMessage:
    return encode_typed_data(full_message=claim_typed_data(config, user, round_index, amount))


def claim_digest(
    config: DistributionConfig,
    user: str,
    round_index: int,
    amount: int,
) -> bytes:
    """The 32-byte digest the allocator actually signs."""
    signable = claim_message(config, user, round_index, amount)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def sign_claim(
    config: DistributionConfig,
    private_key: str,
    user: str,
    round_index: int,
    amount: int,
) -> bytes:
    """Issue a claim signature. Off-chain tooling and tests only."""
    signed = Account.sign_message(
        claim_message(config, user, round_index, amount),
        private_key=private_key,
    )
    return bytes(signed.signature)


def check_canonical(signature: bytes) -> None:
    """Reject malformed or malleable signature encodings."""
    if len(signature) != 65:
        raise InvalidSignature(
            "Signature must be 65 bytes",
            {"length": len(signature)},
        )
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]
    if v not in (27, 28):
        raise InvalidSignature("Signature recovery id must be 27 or 28", {"v": v})
    if s == 0 or s > SECP256K1_N // 2:
        raise InvalidSignature("Signature s value is not canonical (high-s)")


def recover_claim_signer(
    config: DistributionConfig,
    user: str,
    round_index: int,
    amount: int,
    signature: bytes,
) -> str:
    """Recover the checksummed signer address.

    Raises InvalidSignature for non-canonical encodings, unrecoverable
    signatures and the zero-address sentinel.
    """
    check_canonical(signature)
    try:
        message = claim_message(config, user, round_index, amount)
        signer = Account.recover_message(message, signature=signature)
    except Exception as exc:  # eth_keys/eth_utils raise several unrelated types
        raise InvalidSignature(f"Signature recovery failed: {exc}") from exc
    if signer.lower() == ZERO_ADDRESS:
        raise InvalidSignature("Signature recovered to the zero address")
    return signer
