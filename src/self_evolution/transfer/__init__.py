"""Knowledge transfer between instances."""

from self_evolution.transfer.channel import DeliveryReceipt, TransferChannel
from self_evolution.transfer.exchange import (
    ImportSummary,
    KnowledgeTransfer,
    diff_patterns,
    parse_package,
)

__all__ = [
    "DeliveryReceipt",
    "ImportSummary",
    "KnowledgeTransfer",
    "TransferChannel",
    "diff_patterns",
    "parse_package",
]
