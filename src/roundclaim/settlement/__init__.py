"""Settlement — transfer rails for committed claim instructions."""

from roundclaim.settlement.rail import (
    RecordingRail,
    TransferError,
    TransferRail,
    TransferReceipt,
    Web3TokenRail,
)

__all__ = [
    "RecordingRail",
    "TransferError",
    "TransferRail",
    "TransferReceipt",
    "Web3TokenRail",
]
