"""Transfer rails — the external collaborator that moves approved funds.

The claim processor never moves funds. It commits a claim and produces a
SettlementInstruction; the service then hands that instruction to a
TransferRail. A rail failure after commit is reported, never rolled back.

Adding a rail = implement the TransferRail Protocol. Zero changes to the
registry, replay guard, authorizer or processor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol, runtime_checkable

from roundclaim.models.distribution import SettlementInstruction

logger = logging.getLogger(__name__)

# transfer(address,uint256)
ERC20_TRANSFER_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    }
]


class TransferError(RuntimeError):
    """A rail could not execute a committed settlement instruction."""


@dataclass(frozen=True)
class TransferReceipt:
    """Proof that a rail accepted an instruction."""
    instruction_id: str
    rail_id: str
    reference: str
    recipient: str
    amount: int
    completed_utc: datetime


@runtime_checkable
class TransferRail(Protocol):
    """Contract for anything that can pay out a settlement instruction."""

    @property
    def rail_id(self) -> str:
        """Unique identifier (e.g., 'recording', 'erc20:0xabc…')."""
        ...

    def transfer(self, instruction: SettlementInstruction) -> TransferReceipt:
        """Execute the transfer. Raise TransferError on failure."""
        ...


@dataclass
class RecordingRail:
    """In-memory rail that records every instruction it is given.

    Used by scenarios and tests. ``fail_next`` makes the next transfer
    raise, to exercise post-commit failure handling.
    """
    rail_id: str = "recording"
    receipts: List[TransferReceipt] = field(default_factory=list)
    fail_next: bool = False

    def transfer(self, instruction: SettlementInstruction) -> TransferReceipt:
        if self.fail_next:
            self.fail_next = False
            raise TransferError(f"Simulated failure for {instruction.instruction_id}")
        receipt = TransferReceipt(
            instruction_id=instruction.instruction_id,
            rail_id=self.rail_id,
            reference=f"rec_{len(self.receipts) + 1}",
            recipient=instruction.recipient,
            amount=instruction.amount,
            completed_utc=datetime.now(timezone.utc),
        )
        self.receipts.append(receipt)
        return receipt

    @property
    def total_transferred(self) -> int:
        return sum(r.amount for r in self.receipts)


class Web3TokenRail:
    """Pays settlements as ERC-20 ``transfer`` calls from a funded hot wallet.

    Signs locally and waits for one confirmation per transfer.
    """

    def __init__(
        self,
        rpc_url: str,
        token_address: str,
        private_key: str,
        chain_id: int,
        gas: int = 100_000,
        gas_price_gwei: str = "2",
        receipt_timeout: int = 300,
    ) -> None:
        self._rpc_url = rpc_url
        self._token_address = token_address
        self._private_key = private_key
        self._chain_id = chain_id
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._receipt_timeout = receipt_timeout
        self._w3 = None

    @property
    def rail_id(self) -> str:
        return f"erc20:{self._token_address}"

    def _web3(self):
        if self._w3 is None:
            from web3 import Web3, HTTPProvider

            self._w3 = Web3(HTTPProvider(self._rpc_url))
        return self._w3

    def transfer(self, instruction: SettlementInstruction) -> TransferReceipt:
        from eth_account import Account

        w3 = self._web3()
        acct = Account.from_key(self._private_key)
        token = w3.eth.contract(
            address=w3.to_checksum_address(self._token_address),
            abi=ERC20_TRANSFER_ABI,
        )
        try:
            tx = token.functions.transfer(
                w3.to_checksum_address(instruction.recipient),
                instruction.amount,
            ).build_transaction({
                "from": acct.address,
                "nonce": w3.eth.get_transaction_count(acct.address),
                "gas": self._gas,
                "gasPrice": w3.to_wei(self._gas_price_gwei, "gwei"),
                "chainId": self._chain_id,
            })
            signed = acct.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            logger.info(
                "Sent settlement %s: %s to %s (tx %s)",
                instruction.instruction_id, instruction.amount,
                instruction.recipient, tx_hash.hex(),
            )
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
        except Exception as exc:
            raise TransferError(
                f"ERC-20 transfer failed for {instruction.instruction_id}: {exc}"
            ) from exc

        if receipt.status != 1:
            raise TransferError(
                f"ERC-20 transfer reverted for {instruction.instruction_id} (tx {tx_hash.hex()})"
            )
        return TransferReceipt(
            instruction_id=instruction.instruction_id,
            rail_id=self.rail_id,
            reference=tx_hash.hex(),
            recipient=instruction.recipient,
            amount=instruction.amount,
            completed_utc=datetime.now(timezone.utc),
        )


def rail_from_env(env: dict, chain_id: int) -> Optional[Web3TokenRail]:
    """Build a Web3TokenRail when RPC_URL, TOKEN_ADDRESS and PAYER_PRIVATE_KEY are set."""
    rpc_url = env.get("RPC_URL")
    token_address = env.get("TOKEN_ADDRESS")
    private_key = env.get("PAYER_PRIVATE_KEY")
    if not (rpc_url and token_address and private_key):
        return None
    return Web3TokenRail(rpc_url, token_address, private_key, chain_id)
