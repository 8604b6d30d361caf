"""Keccak Merkle tree for proof-based claim rounds.

Leaf encoding follows the OpenZeppelin StandardMerkleTree convention:

    leaf = keccak256(keccak256(abi.encode(address account, uint256 amount)))

Interior nodes hash sibling pairs in sorted (commutative) order, so a
proof is an ordered list of sibling hashes with no left/right markers.
Verification is only sound for commitments built the same way: either
by ClaimTree below or by the OpenZeppelin ``merkle-tree`` tool. A root
produced by a tool that hashes pairs positionally will not verify.

Leaves are sorted before tree construction so the root is independent of
row order. An odd node at the end of a level is promoted unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Union

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

HexOrBytes = Union[str, bytes]

MAX_UINT256 = 2**256 - 1


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single (account, amount) leaf."""
    account: str
    amount: int
    leaf: str
    path: tuple[str, ...]  # sibling hashes, bottom-up
    root: str


def to_bytes32(value: HexOrBytes) -> bytes:
    """Normalise a 0x-hex string or raw bytes to a 32-byte digest."""
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        raw = bytes.fromhex(value.removeprefix("0x"))
    else:
        raise ValueError(f"Expected hex string or bytes, got {type(value).__name__}")
    if len(raw) != 32:
        raise ValueError(f"Expected 32-byte hash, got {len(raw)} bytes")
    return raw


def to_hex(digest: bytes) -> str:
    return "0x" + digest.hex()


def claim_leaf(account: str, amount: int) -> bytes:
    """Double-hashed leaf for an (account, amount) allocation."""
    if not 0 <= amount <= MAX_UINT256:
        raise ValueError("Leaf amount must be a uint256")
    encoded = abi_encode(["address", "uint256"], [to_checksum_address(account), amount])
    return keccak(keccak(encoded))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Commutative node hash: the smaller digest goes first."""
    return keccak(a + b) if a <= b else keccak(b + a)


def process_proof(proof: Iterable[HexOrBytes], leaf: bytes) -> bytes:
    """Fold a proof into the root it implies for ``leaf``."""
    computed = leaf
    for sibling in proof:
        computed = hash_pair(computed, to_bytes32(sibling))
    return computed


def verify_proof(proof: Sequence[HexOrBytes], root: HexOrBytes, leaf: bytes) -> bool:
    """Standard inclusion check against a stored commitment."""
    try:
        return process_proof(proof, leaf) == to_bytes32(root)
    except ValueError:
        return False


class ClaimTree:
    """Builds a commitment and proofs over an allocation table.

    Usage:
        tree = ClaimTree()
        tree.add_claim("0x1111...", 1000)
        tree.add_claim("0x2222...", 2500)
        root = tree.compute_root()
        proof = tree.inclusion_proof("0x1111...", 1000)
    """

    def __init__(self) -> None:
        self._claims: list[tuple[str, int]] = []
        self._levels: list[list[bytes]] = []
        self._computed = False

    def add_claim(self, account: str, amount: int) -> None:
        """Add an allocation row. Must be called before compute_root."""
        if self._computed:
            raise RuntimeError("Tree already computed. Create a new tree.")
        self._claims.append((to_checksum_address(account), int(amount)))

    @property
    def leaf_count(self) -> int:
        return len(self._claims)

    def compute_root(self) -> str:
        """Compute the commitment. An empty table has no meaningful root."""
        if not self._claims:
            raise ValueError("Cannot build a claim tree with no allocations")

        leaves = sorted(claim_leaf(a, v) for a, v in self._claims)
        self._levels = [leaves]

        current = leaves
        while len(current) > 1:
            nxt: list[bytes] = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    nxt.append(hash_pair(current[i], current[i + 1]))
                else:
                    nxt.append(current[i])
            self._levels.append(nxt)
            current = nxt

        self._computed = True
        return to_hex(current[0])

    def inclusion_proof(self, account: str, amount: int) -> MerkleProof | None:
        """Generate the proof for a row, or None if the row is absent."""
        if not self._computed:
            raise RuntimeError("Must call compute_root before generating proofs")

        leaf = claim_leaf(account, amount)
        if leaf not in self._levels[0]:
            return None

        idx = self._levels[0].index(leaf)
        path: list[str] = []
        for level in self._levels[:-1]:
            sibling = idx ^ 1
            if sibling < len(level):
                path.append(to_hex(level[sibling]))
            idx //= 2

        return MerkleProof(
            account=to_checksum_address(account),
            amount=amount,
            leaf=to_hex(leaf),
            path=tuple(path),
            root=to_hex(self._levels[-1][0]),
        )

    def to_dict(self) -> dict:
        """Root plus every row's proof, suitable for publishing as JSON."""
        root = self.compute_root() if not self._computed else to_hex(self._levels[-1][0])
        claims: dict[str, dict] = {}
        total = 0
        for account, amount in self._claims:
            proof = self.inclusion_proof(account, amount)
            total += amount
            claims[account] = {"amount": str(amount), "proof": list(proof.path)}
        return {"merkle_root": root, "token_total": str(total), "claims": claims}
