"""Tests for money arithmetic, pricing and reference ids."""

import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from vending_fulfillment.core.domain.model.common import (
    Money,
    fold_money,
    gateway_reference,
    new_reference,
    to_base36,
)
from vending_fulfillment.core.domain.model.order import OrderId
from vending_fulfillment.core.domain.model.payment import PaymentId
from vending_fulfillment.core.domain.service.pricing import tax_on, with_tax


class TestMoney:
    def test_of_rounds_half_up(self):
        assert Money.of("0.005").amount == Decimal("0.01")
        assert Money.of("2.344").amount == Decimal("2.34")

    def test_add_and_multiply(self):
        total = Money.of("40.00") * 2 + Money.of("20.00")
        assert total == Money.of("100.00")

    def test_currency_mismatch_raises(self):
        with pytest.raises(ValueError, match="currency_mismatch"):
            Money.of("1.00", "INR") + Money.of("1.00", "USD")

    def test_minor_units(self):
        assert Money.of("94.40").to_minor_units() == 9440

    def test_fold_empty_is_zero(self):
        assert fold_money([]) == Money.zero()


class TestPricing:
    def test_tax_is_eighteen_percent(self):
        assert tax_on(Money.of("80.00")) == Money.of("14.40")

    def test_with_tax_rounds_per_order(self):
        tax, total = with_tax(Money.of("33.33"))
        assert tax == Money.of("6.00")
        assert total == Money.of("39.33")

    def test_custom_rate(self):
        tax, total = with_tax(Money.of("100.00"), Decimal("0.05"))
        assert tax.amount == Decimal("5.00")
        assert total.amount == Decimal("105.00")


class TestReferences:
    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "Z"
        assert to_base36(36) == "10"

    def test_reference_embeds_timestamp(self):
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        ref = new_reference("ORD", 5, at=at)
        millis = int(at.timestamp() * 1000)
        assert ref.startswith(f"ORD-{to_base36(millis)}-")

    def test_order_and_payment_id_shapes(self):
        assert re.fullmatch(r"ORD-[0-9A-Z]+-[0-9A-Z]{5}", OrderId.new().value)
        assert re.fullmatch(r"PAY-[0-9A-Z]+-[0-9A-Z]{8}", PaymentId.new().value)

    def test_ids_are_unique(self):
        assert len({OrderId.new().value for _ in range(200)}) == 200

    def test_gateway_references_differ_within_one_millisecond(self):
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        millis = int(at.timestamp() * 1000)
        refs = {gateway_reference("rfnd_", at=at) for _ in range(200)}
        assert len(refs) == 200
        assert all(re.fullmatch(rf"rfnd_{millis}_[0-9a-z]{{6}}", r) for r in refs)
