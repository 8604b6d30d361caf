"""Tests for EIP-712 claim signatures — proves a signature binds exactly one claim."""

import dataclasses

import pytest

from roundclaim.config import DistributionConfig
from roundclaim.crypto.claim_signature import (
    SECP256K1_N,
    check_canonical,
    claim_digest,
    claim_typed_data,
    recover_claim_signer,
    sign_claim,
)
from roundclaim.models.errors import InvalidSignature

ALLOCATOR_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ALLOCATOR = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OTHER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OTHER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
ALICE = "0x1111111111111111111111111111111111111111"


def _config(**overrides) -> DistributionConfig:
    base = DistributionConfig(
        system_name="RoundClaimDistributor",
        version="1",
        chain_id=31337,
        verifying_contract="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        trusted_allocator=ALLOCATOR,
    )
    return dataclasses.replace(base, **overrides)


class TestSignAndRecover:
    def test_recovers_allocator(self) -> None:
        sig = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        assert len(sig) == 65
        assert recover_claim_signer(_config(), ALICE, 0, 50, sig) == ALLOCATOR

    def test_other_key_recovers_other(self) -> None:
        sig = sign_claim(_config(), OTHER_KEY, ALICE, 0, 50)
        assert recover_claim_signer(_config(), ALICE, 0, 50, sig) == OTHER

    @pytest.mark.parametrize("user,round_index,amount", [
        ("0x2222222222222222222222222222222222222222", 0, 50),
        (ALICE, 1, 50),
        (ALICE, 0, 51),
    ])
    def test_tampered_fields_change_signer(self, user: str, round_index: int, amount: int) -> None:
        sig = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        assert recover_claim_signer(_config(), user, round_index, amount, sig) != ALLOCATOR

    def test_other_deployment_does_not_recover(self) -> None:
        sig = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        moved = _config(verifying_contract="0x" + "12" * 20)
        assert recover_claim_signer(moved, ALICE, 0, 50, sig) != ALLOCATOR

    def test_other_chain_does_not_recover(self) -> None:
        sig = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        assert recover_claim_signer(_config(chain_id=1), ALICE, 0, 50, sig) != ALLOCATOR

    def test_signatures_are_deterministic(self) -> None:
        a = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        b = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        assert a == b


class TestTypedData:
    def test_payload_shape(self) -> None:
        data = claim_typed_data(_config(), ALICE, 3, 7)
        assert data["primaryType"] == "Claim"
        assert data["domain"]["chainId"] == 31337
        assert data["message"] == {"user": ALICE, "round": 3, "amount": 7}

    def test_digest_is_32_bytes_and_distinct(self) -> None:
        d1 = claim_digest(_config(), ALICE, 0, 1)
        d2 = claim_digest(_config(), ALICE, 0, 2)
        assert len(d1) == 32
        assert d1 != d2


class TestCanonicalEncoding:
    def test_wrong_length_rejected(self) -> None:
        with pytest.raises(InvalidSignature, match="65 bytes"):
            recover_claim_signer(_config(), ALICE, 0, 50, b"\x01" * 64)

    def test_bad_v_rejected(self) -> None:
        sig = bytearray(sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50))
        sig[64] = 1
        with pytest.raises(InvalidSignature, match="27 or 28"):
            check_canonical(bytes(sig))

    def test_high_s_rejected(self) -> None:
        sig = sign_claim(_config(), ALLOCATOR_KEY, ALICE, 0, 50)
        s = int.from_bytes(sig[32:64], "big")
        flipped_v = 55 - sig[64]  # 27 <-> 28
        malleable = sig[:32] + (SECP256K1_N - s).to_bytes(32, "big") + bytes([flipped_v])
        with pytest.raises(InvalidSignature, match="high-s"):
            recover_claim_signer(_config(), ALICE, 0, 50, malleable)

    def test_zero_s_rejected(self) -> None:
        with pytest.raises(InvalidSignature):
            check_canonical(b"\x01" * 32 + b"\x00" * 32 + b"\x1b")
