"""Tests for the claim Merkle tree — proves commitments and proofs line up."""

import pytest

from roundclaim.crypto.merkle import (
    MAX_UINT256,
    ClaimTree,
    claim_leaf,
    hash_pair,
    process_proof,
    to_bytes32,
    to_hex,
    verify_proof,
)

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"


def _tree(*rows: tuple[str, int]) -> ClaimTree:
    tree = ClaimTree()
    for account, amount in rows:
        tree.add_claim(account, amount)
    tree.compute_root()
    return tree


class TestLeafEncoding:
    def test_leaf_is_32_bytes(self) -> None:
        assert len(claim_leaf(ALICE, 100)) == 32

    def test_leaf_binds_amount(self) -> None:
        assert claim_leaf(ALICE, 100) != claim_leaf(ALICE, 101)

    def test_leaf_binds_account(self) -> None:
        assert claim_leaf(ALICE, 100) != claim_leaf(BOB, 100)

    def test_leaf_ignores_address_case(self) -> None:
        upper = "0x" + "ab" * 20
        assert claim_leaf(upper, 5) == claim_leaf(upper.upper().replace("0X", "0x"), 5)

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValueError):
            claim_leaf(ALICE, -1)

    def test_amount_beyond_uint256_rejected(self) -> None:
        with pytest.raises(ValueError, match="uint256"):
            claim_leaf(ALICE, MAX_UINT256 + 1)
        assert len(claim_leaf(ALICE, MAX_UINT256)) == 32

    def test_pair_hash_is_commutative(self) -> None:
        a, b = claim_leaf(ALICE, 1), claim_leaf(BOB, 2)
        assert hash_pair(a, b) == hash_pair(b, a)


class TestClaimTree:
    def test_empty_tree_rejected(self) -> None:
        with pytest.raises(ValueError, match="no allocations"):
            ClaimTree().compute_root()

    def test_single_leaf_root_is_leaf(self) -> None:
        tree = ClaimTree()
        tree.add_claim(ALICE, 10)
        assert tree.compute_root() == to_hex(claim_leaf(ALICE, 10))

    def test_two_leaf_root(self) -> None:
        tree = _tree((ALICE, 10), (BOB, 20))
        expected = hash_pair(claim_leaf(ALICE, 10), claim_leaf(BOB, 20))
        assert tree.to_dict()["merkle_root"] == to_hex(expected)

    def test_root_independent_of_row_order(self) -> None:
        t1 = _tree((ALICE, 10), (BOB, 20), (CAROL, 30))
        t2 = _tree((CAROL, 30), (ALICE, 10), (BOB, 20))
        assert t1.to_dict()["merkle_root"] == t2.to_dict()["merkle_root"]

    def test_cannot_add_after_compute(self) -> None:
        tree = _tree((ALICE, 10))
        with pytest.raises(RuntimeError):
            tree.add_claim(BOB, 20)

    def test_proof_before_compute_rejected(self) -> None:
        tree = ClaimTree()
        tree.add_claim(ALICE, 10)
        with pytest.raises(RuntimeError):
            tree.inclusion_proof(ALICE, 10)

    def test_every_row_proves(self) -> None:
        rows = [(ALICE, 10), (BOB, 20), (CAROL, 30)]
        tree = _tree(*rows)
        root = tree.to_dict()["merkle_root"]
        for account, amount in rows:
            proof = tree.inclusion_proof(account, amount)
            assert proof is not None
            assert proof.root == root
            assert verify_proof(proof.path, root, claim_leaf(account, amount))

    def test_absent_row_has_no_proof(self) -> None:
        tree = _tree((ALICE, 10), (BOB, 20))
        assert tree.inclusion_proof(ALICE, 11) is None

    def test_proof_does_not_transfer_to_other_amount(self) -> None:
        tree = _tree((ALICE, 10), (BOB, 20))
        proof = tree.inclusion_proof(ALICE, 10)
        root = tree.to_dict()["merkle_root"]
        assert not verify_proof(proof.path, root, claim_leaf(ALICE, 11))

    def test_to_dict_shape(self) -> None:
        tree = _tree((ALICE, 10), (BOB, 20))
        published = tree.to_dict()
        assert published["token_total"] == "30"
        assert set(published["claims"]) == {
            "0x1111111111111111111111111111111111111111",
            "0x2222222222222222222222222222222222222222",
        }
        assert published["claims"][ALICE]["amount"] == "10"


class TestVerifyProof:
    def test_malformed_sibling_is_false(self) -> None:
        assert not verify_proof(["0x1234"], "0x" + "11" * 32, claim_leaf(ALICE, 1))

    def test_malformed_root_is_false(self) -> None:
        assert not verify_proof([], "0xdead", claim_leaf(ALICE, 1))

    def test_process_proof_empty_returns_leaf(self) -> None:
        leaf = claim_leaf(ALICE, 1)
        assert process_proof([], leaf) == leaf

    def test_to_bytes32_accepts_bytes_and_hex(self) -> None:
        raw = b"\x01" * 32
        assert to_bytes32(raw) == raw
        assert to_bytes32(to_hex(raw)) == raw

    def test_to_bytes32_rejects_wrong_length(self) -> None:
        with pytest.raises(ValueError):
            to_bytes32(b"\x01" * 31)

    def test_non_hash_sibling_is_false(self) -> None:
        assert not verify_proof([123], "0x" + "11" * 32, claim_leaf(ALICE, 1))
        assert not verify_proof([None], "0x" + "11" * 32, claim_leaf(ALICE, 1))

    def test_to_bytes32_rejects_other_types(self) -> None:
        with pytest.raises(ValueError, match="int"):
            to_bytes32(123)
