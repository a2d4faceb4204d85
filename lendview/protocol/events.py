"""Lending-pool event definitions and raw log decoding."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from ..models import TransactionType
from .abi import address_topic, decode_address_topic, decode_result, topic

logger = logging.getLogger(__name__)

# Non-indexed payload shared by all four events.
EVENT_DATA_TYPES = ("uint256", "uint256", "uint256")


class EventCategory(Enum):
    """One subscribable event type: (transaction type, signature)."""

    DEPOSITED = (
        TransactionType.DEPOSIT,
        "Deposited(address,address,uint256,uint256,uint256)",
    )
    WITHDRAWN = (
        TransactionType.WITHDRAW,
        "Withdrawn(address,address,uint256,uint256,uint256)",
    )
    BORROWED = (
        TransactionType.BORROW,
        "Borrowed(address,address,uint256,uint256,uint256)",
    )
    REPAID = (
        TransactionType.REPAY,
        "Repaid(address,address,address,uint256,uint256,uint256)",
    )

    def __init__(self, transaction_type: TransactionType, signature: str) -> None:
        self.transaction_type = transaction_type
        self.signature = signature
        self.topic0 = topic(signature)

    @property
    def event_name(self) -> str:
        return self.signature.split("(", 1)[0]

    def topic_filter(self, user: str) -> list[Optional[str]]:
        """``eth_getLogs`` topics for this category.

        Deposited/Withdrawn/Borrowed filter on the indexed ``user``. Repaid
        is left unfiltered: the user may appear as either ``user`` or
        ``repayer`` and a topic filter cannot express that disjunction.
        """
        if self is EventCategory.REPAID:
            return [self.topic0]
        return [self.topic0, None, address_topic(user)]


@dataclass(frozen=True)
class ProtocolEvent:
    category: EventCategory
    asset: str
    user: str
    amount: int
    scaled_amount: int
    timestamp: int
    tx_hash: str
    log_index: int
    block_number: int
    repayer: Optional[str] = None

    def involves(self, account: str) -> bool:
        """Whether ``account`` is the user (or, for Repaid, the repayer)."""
        account = account.lower()
        if self.user.lower() == account:
            return True
        return self.repayer is not None and self.repayer.lower() == account


def _hex_int(value: Any, field_name: str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16)
        except ValueError:
            pass
    raise ValueError(f"Log field '{field_name}' is not a quantity: {value!r}")


def decode_log(category: EventCategory, log: dict[str, Any]) -> Optional[ProtocolEvent]:
    """Decode one ``eth_getLogs`` entry.

    Returns ``None`` for logs removed by a reorg. Raises ``ValueError`` when
    an essential field is missing or malformed. A log index of 0 is valid.
    """
    if log.get("removed"):
        return None

    tx_hash = log.get("transactionHash")
    if not tx_hash:
        raise ValueError("Log has no transactionHash")
    if log.get("logIndex") is None:
        raise ValueError(f"Log in {tx_hash} has no logIndex")
    if log.get("blockNumber") is None:
        raise ValueError(f"Log in {tx_hash} has no blockNumber")

    topics = log.get("topics") or []
    expected_topics = 4 if category is EventCategory.REPAID else 3
    if len(topics) != expected_topics or topics[0].lower() != category.topic0.lower():
        raise ValueError(f"Log in {tx_hash} is not a {category.event_name} event")

    amount, scaled_amount, timestamp = decode_result(EVENT_DATA_TYPES, log.get("data") or "0x")

    return ProtocolEvent(
        category=category,
        asset=decode_address_topic(topics[1]),
        user=decode_address_topic(topics[2]),
        repayer=decode_address_topic(topics[3]) if category is EventCategory.REPAID else None,
        amount=amount,
        scaled_amount=scaled_amount,
        timestamp=timestamp,
        tx_hash=tx_hash,
        log_index=_hex_int(log["logIndex"], "logIndex"),
        block_number=_hex_int(log["blockNumber"], "blockNumber"),
    )
