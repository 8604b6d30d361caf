"""Tests for transfer rails."""

import pytest
from datetime import datetime, timezone

from roundclaim.models.distribution import SettlementInstruction
from roundclaim.settlement.rail import (
    RecordingRail,
    TransferError,
    TransferRail,
    Web3TokenRail,
    rail_from_env,
)


def _instruction(amount: int = 50) -> SettlementInstruction:
    return SettlementInstruction(
        instruction_id="settle_test",
        recipient="0x1111111111111111111111111111111111111111",
        amount=amount,
        rounds=(0,),
        created_utc=datetime(2026, 3, 1, tzinfo=timezone.utc),
        per_round=(amount,),
    )


class TestRecordingRail:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(RecordingRail(), TransferRail)

    def test_records_receipts(self) -> None:
        rail = RecordingRail()
        receipt = rail.transfer(_instruction(50))
        rail.transfer(_instruction(25))
        assert receipt.reference == "rec_1"
        assert receipt.rail_id == "recording"
        assert rail.total_transferred == 75

    def test_fail_next_fails_once(self) -> None:
        rail = RecordingRail(fail_next=True)
        with pytest.raises(TransferError):
            rail.transfer(_instruction())
        assert rail.receipts == []
        rail.transfer(_instruction())
        assert len(rail.receipts) == 1


class TestWeb3Rail:
    def test_satisfies_protocol(self) -> None:
        rail = Web3TokenRail("http://localhost:8545", "0x" + "22" * 20, "0x" + "01" * 32, 31337)
        assert isinstance(rail, TransferRail)
        assert rail.rail_id == "erc20:0x" + "22" * 20

    def test_rail_from_env_requires_all_keys(self) -> None:
        assert rail_from_env({"RPC_URL": "http://localhost:8545"}, 31337) is None

    def test_rail_from_env(self) -> None:
        env = {
            "RPC_URL": "http://localhost:8545",
            "TOKEN_ADDRESS": "0x" + "22" * 20,
            "PAYER_PRIVATE_KEY": "0x" + "01" * 32,
        }
        rail = rail_from_env(env, 31337)
        assert isinstance(rail, Web3TokenRail)
