"""Domain tests for charge computation and time helpers."""

from datetime import UTC, datetime, timedelta

from marketplace.payment.authorization import MINIMUM_AMOUNT, compute_charge
from marketplace.shared.clock import as_utc, has_passed, utc_now


class TestComputeCharge:
    def test_amount_in_minor_units_with_five_percent_fee(self):
        assert compute_charge(25.0, 1) == (2500, 125)

    def test_fee_is_rounded(self):
        assert compute_charge(19.99, 2) == (3998, 200)

    def test_float_prices_do_not_lose_a_cent(self):
        amount, _ = compute_charge(0.29, 1)
        assert amount == 29

    def test_minimum_is_fifty(self):
        assert MINIMUM_AMOUNT == 50
        assert compute_charge(0.49, 1)[0] < MINIMUM_AMOUNT
        assert compute_charge(0.5, 1)[0] == MINIMUM_AMOUNT


class TestClock:
    def test_naive_values_are_treated_as_utc(self):
        naive = datetime(2025, 1, 1, 12, 0)
        assert as_utc(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def test_none_passes_through(self):
        assert as_utc(None) is None

    def test_has_passed(self):
        now = utc_now()
        assert has_passed(now - timedelta(seconds=1), now)
        assert has_passed(now, now)
        assert not has_passed(now + timedelta(seconds=1), now)
        assert not has_passed(None, now)
