"""Tests for the replay guard — proves tokens are consumed at most once."""

import threading

import pytest

from roundclaim.distribution.replay import ReplayGuard, token_for_pair, token_for_signature
from roundclaim.models.errors import AlreadyClaimed

ALICE = "0x1111111111111111111111111111111111111111"


class TestTokens:
    def test_signature_token_is_digest(self) -> None:
        token = token_for_signature(b"\x01" * 65)
        assert len(token) == 32
        assert token != b"\x01" * 32

    def test_pair_token_binds_round_and_user(self) -> None:
        assert token_for_pair(0, ALICE) != token_for_pair(1, ALICE)
        assert token_for_pair(0, ALICE) != token_for_pair(0, "0x" + "22" * 20)

    def test_pair_token_ignores_address_case(self) -> None:
        user = "0x" + "ab" * 20
        assert token_for_pair(0, user) == token_for_pair(0, "0x" + "AB" * 20)

    def test_token_namespaces_do_not_collide(self) -> None:
        assert token_for_signature(b"x") != token_for_pair(0, ALICE)


class TestReplayGuard:
    def test_consume_once(self) -> None:
        guard = ReplayGuard()
        token = token_for_signature(b"sig")
        guard.check_and_consume(token)
        assert guard.is_consumed(token)
        with pytest.raises(AlreadyClaimed):
            guard.check_and_consume(token)
        assert guard.count == 1

    def test_consume_all(self) -> None:
        guard = ReplayGuard()
        tokens = [token_for_signature(b"a"), token_for_signature(b"b")]
        guard.consume_all(tokens)
        assert guard.count == 2

    def test_consume_all_rejects_duplicates_within_batch(self) -> None:
        guard = ReplayGuard()
        token = token_for_signature(b"a")
        with pytest.raises(AlreadyClaimed, match="repeated"):
            guard.consume_all([token, token])
        assert guard.count == 0

    def test_consume_all_is_all_or_nothing(self) -> None:
        guard = ReplayGuard()
        used = token_for_signature(b"used")
        guard.check_and_consume(used)
        fresh = token_for_signature(b"fresh")
        with pytest.raises(AlreadyClaimed):
            guard.consume_all([fresh, used])
        assert not guard.is_consumed(fresh)

    def test_concurrent_consumers_single_winner(self) -> None:
        guard = ReplayGuard()
        token = token_for_signature(b"race")
        wins: list[int] = []
        barrier = threading.Barrier(8)

        def worker(n: int) -> None:
            barrier.wait()
            try:
                guard.check_and_consume(token)
                wins.append(n)
            except AlreadyClaimed:
                pass

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(wins) == 1
