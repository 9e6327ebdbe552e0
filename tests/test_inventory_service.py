"""Tests for slot reservation and compensation."""

import threading

from returns.result import Failure, Success

from vending_fulfillment.core.domain.model.errors import (
    InsufficientStock,
    InvalidInput,
    NotFound,
)
from vending_fulfillment.core.domain.service.inventory_service import SlotLine


class TestReserve:
    def test_decrements_slot(self, world):
        result = world.inventory.reserve("VM-001", "A1", "P-COLA", 3)
        assert isinstance(result, Success)
        assert result.unwrap().quantity == 7
        assert world.stock("VM-001", "A1") == 7

    def test_insufficient_stock_leaves_slot_untouched(self, world):
        result = world.inventory.reserve("VM-001", "A2", "P-CHIPS", 6)
        assert isinstance(result, Failure)
        err = result.failure()
        assert isinstance(err, InsufficientStock)
        assert (err.available, err.requested) == (5, 6)
        assert world.stock("VM-001", "A2") == 5

    def test_non_positive_quantity_rejected(self, world):
        assert isinstance(
            world.inventory.reserve("VM-001", "A1", "P-COLA", 0).failure(), InvalidInput
        )

    def test_product_must_match_slot(self, world):
        result = world.inventory.reserve("VM-001", "A1", "P-CHIPS", 1)
        assert isinstance(result.failure(), NotFound)

    def test_concurrent_reservations_never_oversell(self, world):
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(12)

        def take_one():
            barrier.wait()
            r = world.inventory.reserve("VM-001", "A2", "P-CHIPS", 1)
            with lock:
                results.append(r)

        threads = [threading.Thread(target=take_one) for _ in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(isinstance(r, Success) for r in results) == 5
        assert world.stock("VM-001", "A2") == 0


class TestRestore:
    def test_restore_may_exceed_capacity(self, world):
        result = world.inventory.restore("VM-001", "A1", "P-COLA", 2)
        assert result.unwrap().quantity == 12

    def test_restore_missing_slot_fails(self, world):
        assert isinstance(
            world.inventory.restore("VM-404", "A1", "P-COLA", 1).failure(), NotFound
        )


class TestBatch:
    def test_reserve_all_rolls_back_on_failure(self, world):
        lines = (
            SlotLine("VM-001", "A1", "P-COLA", 2),
            SlotLine("VM-002", "B1", "P-WATER", 1),
            SlotLine("VM-001", "A2", "P-CHIPS", 99),
        )
        result = world.inventory.reserve_all(lines)
        assert isinstance(result.failure(), InsufficientStock)
        assert world.stock("VM-001", "A1") == 10
        assert world.stock("VM-002", "B1") == 8
        assert world.stock("VM-001", "A2") == 5

    def test_reserve_all_applies_every_line(self, world):
        lines = (
            SlotLine("VM-001", "A1", "P-COLA", 2),
            SlotLine("VM-001", "A2", "P-CHIPS", 1),
        )
        assert world.inventory.reserve_all(lines).unwrap() == lines
        assert world.stock("VM-001", "A1") == 8
        assert world.stock("VM-001", "A2") == 4

    def test_restore_all_skips_missing_lines(self, world):
        lines = (
            SlotLine("VM-001", "A1", "P-COLA", 1),
            SlotLine("VM-404", "Z9", "P-COLA", 1),
            SlotLine("VM-002", "B1", "P-WATER", 2),
        )
        report = world.inventory.restore_all(lines)
        assert not report.complete
        assert len(report.restored) == 2
        assert report.skipped[0].line.machine_id == "VM-404"
        assert world.stock("VM-001", "A1") == 11
        assert world.stock("VM-002", "B1") == 10
