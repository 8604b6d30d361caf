"""Replay guard — at-most-once consumption of authorisation tokens.

Tokens are content-addressed: the guard stores keccak256 digests, never
raw signatures. Two token shapes exist:
- signature rounds (flat and percentage): digest of the signature bytes
- proof rounds: digest of the (round, user) pair, so each user claims a
  proof round once

The guard is the sole writer of the consumed set. Consumed tokens are
never released; there is no rollback path once a claim commits.
"""

from __future__ import annotations

import threading
from typing import Iterable

from eth_abi import encode as abi_encode
from eth_utils import keccak, to_checksum_address

from roundclaim.models.errors import AlreadyClaimed


def token_for_signature(signature: bytes) -> bytes:
    return keccak(b"sig:" + signature)


def token_for_pair(round_index: int, user: str) -> bytes:
    return keccak(b"pair:" + abi_encode(["uint256", "address"], [round_index, to_checksum_address(user)]))


class ReplayGuard:
    """Consumed-token set with an indivisible check-and-set.

    Usage:
        guard = ReplayGuard()
        token = token_for_signature(sig)
        guard.check_and_consume(token)   # ok
        guard.check_and_consume(token)   # raises AlreadyClaimed
    """

    def __init__(self) -> None:
        self._consumed: set[bytes] = set()
        self._lock = threading.Lock()

    def is_consumed(self, token: bytes) -> bool:
        return token in self._consumed

    def check(self, token: bytes) -> None:
        """Raise AlreadyClaimed if the token has been consumed."""
        if token in self._consumed:
            raise AlreadyClaimed("Authorization token already consumed", {"token": "0x" + token.hex()})

    def check_and_consume(self, token: bytes) -> None:
        with self._lock:
            self.check(token)
            self._consumed.add(token)

    def consume_all(self, tokens: Iterable[bytes]) -> None:
        """Consume several tokens together. All-or-nothing."""
        batch = list(tokens)
        with self._lock:
            if len(set(batch)) != len(batch):
                raise AlreadyClaimed("Authorization token repeated within one batch")
            for token in batch:
                self.check(token)
            self._consumed.update(batch)

    @property
    def count(self) -> int:
        return len(self._consumed)
