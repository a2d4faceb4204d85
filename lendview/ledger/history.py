"""Newest-first, capacity-bounded store of ``TransactionRecord``s."""
from __future__ import annotations

import logging
from typing import Iterator

from ..models import TransactionRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 20


class TransactionLedger:
    """Ordered history keyed by ``txHash:logIndex``.

    ``insert`` performs the duplicate check and the insertion in one
    synchronous step, so concurrent subscriptions delivering the same event
    cannot both add it.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._records: list[TransactionRecord] = []
        self._ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[TransactionRecord]:
        return iter(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    @property
    def records(self) -> tuple[TransactionRecord, ...]:
        """Snapshot, newest first."""
        return tuple(self._records)

    def insert(self, record: TransactionRecord) -> bool:
        """Insert ``record`` at its emission-order position.

        Returns ``False`` when the record is a duplicate or older than
        everything retained in a full ledger.
        """
        if record.id in self._ids:
            logger.debug("Skipping duplicate event %s", record.id)
            return False

        key = record.sort_key
        position = len(self._records)
        for i, existing in enumerate(self._records):
            if key > existing.sort_key:
                position = i
                break

        if position >= self.capacity:
            logger.debug("Event %s is older than the retained history", record.id)
            return False

        self._records.insert(position, record)
        self._ids.add(record.id)

        while len(self._records) > self.capacity:
            evicted = self._records.pop()
            self._ids.discard(evicted.id)
        return True

    def clear(self) -> None:
        self._records.clear()
        self._ids.clear()
