"""Bounded, deduplicated transaction history fed by protocol events."""
from .history import DEFAULT_CAPACITY, TransactionLedger
from .reconciler import EventLedger

__all__ = ["DEFAULT_CAPACITY", "EventLedger", "TransactionLedger"]
