"""Unit tests for the bounded, deduplicated transaction history."""
from __future__ import annotations

import random

import pytest

from lendview.ledger.history import TransactionLedger

from conftest import make_record


class TestInsert:
    def test_duplicate_ignored(self) -> None:
        ledger = TransactionLedger()
        assert ledger.insert(make_record("0xaaa", 1))
        assert not ledger.insert(make_record("0xaaa", 1))
        assert len(ledger) == 1

    def test_same_tx_different_log_index(self) -> None:
        ledger = TransactionLedger()
        ledger.insert(make_record("0xaaa", 0))
        ledger.insert(make_record("0xaaa", 1))
        assert len(ledger) == 2

    def test_tx_hash_case_insensitive(self) -> None:
        ledger = TransactionLedger()
        ledger.insert(make_record("0xABC", 2))
        assert not ledger.insert(make_record("0xabc", 2))

    def test_newest_first(self) -> None:
        ledger = TransactionLedger()
        ledger.insert(make_record("0x1", timestamp=100))
        ledger.insert(make_record("0x3", timestamp=300))
        ledger.insert(make_record("0x2", timestamp=200))
        assert [r.timestamp for r in ledger.records] == [300, 200, 100]

    def test_ties_broken_by_block_then_log_index(self) -> None:
        ledger = TransactionLedger()
        ledger.insert(make_record("0x1", log_index=0, block_number=10))
        ledger.insert(make_record("0x1", log_index=3, block_number=10))
        ledger.insert(make_record("0x2", log_index=0, block_number=11))
        assert [(r.block_number, r.log_index) for r in ledger.records] == [(11, 0), (10, 3), (10, 0)]

    def test_out_of_order_arrival(self) -> None:
        records = [make_record(f"0x{i:x}", timestamp=1_000 + i) for i in range(15)]
        shuffled = records[:]
        random.Random(7).shuffle(shuffled)

        ledger = TransactionLedger()
        for record in shuffled:
            ledger.insert(record)

        assert list(ledger.records) == list(reversed(records))


class TestCapacity:
    def test_keeps_most_recent(self) -> None:
        ledger = TransactionLedger(capacity=20)
        for i in range(25):
            ledger.insert(make_record(f"0x{i:x}", timestamp=i))
        assert len(ledger) == 20
        assert [r.timestamp for r in ledger.records] == list(range(24, 4, -1))

    def test_older_than_retained_is_dropped(self) -> None:
        ledger = TransactionLedger(capacity=2)
        ledger.insert(make_record("0x1", timestamp=10))
        ledger.insert(make_record("0x2", timestamp=20))
        assert not ledger.insert(make_record("0x0", timestamp=5))
        assert [r.timestamp for r in ledger.records] == [20, 10]

    def test_evicted_id_forgotten(self) -> None:
        ledger = TransactionLedger(capacity=1)
        ledger.insert(make_record("0x1", timestamp=10))
        ledger.insert(make_record("0x2", timestamp=20))
        assert "0x1:0" not in ledger
        assert "0x2:0" in ledger

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            TransactionLedger(capacity=0)

    def test_clear(self) -> None:
        ledger = TransactionLedger()
        ledger.insert(make_record())
        ledger.clear()
        assert len(ledger) == 0
        assert ledger.insert(make_record())
