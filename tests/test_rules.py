from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from gavel import rules
from gavel.core import AuctionStatus, status_validator
from gavel.identity import format_bidder_label
from gavel.settings import FeeCfg, IncrementTier

D = Decimal


@pytest.mark.parametrize(
    "amount,increment",
    [
        ("0", "50"),
        ("999.99", "50"),
        ("1000", "100"),
        ("4999", "100"),
        ("5000", "250"),
        ("24999", "500"),
        ("99999", "2500"),
        ("250000", "10000"),
        ("1000000", "10000"),
    ],
)
def test_bid_increment_bands(amount, increment):
    assert rules.bid_increment(D(amount)) == D(increment)


def test_bid_increment_without_catch_all_reuses_top_band():
    tiers = [IncrementTier(max_price=D("100"), increment=D("5"))]
    assert rules.bid_increment(D("500"), tiers) == D("5")


def test_minimum_next_bid():
    assert rules.minimum_next_bid(None, D("1000")) == D("1000")
    assert rules.minimum_next_bid(D("1000"), D("1000")) == D("1100")
    assert rules.minimum_next_bid(D("950"), D("500")) == D("1000")


def test_validate_bid_amount():
    ok = rules.validate_bid_amount(D("1000"), None, D("1000"))
    assert ok.valid and ok.error is None

    low = rules.validate_bid_amount(D("1050"), D("1000"), D("1000"))
    assert not low.valid
    assert low.minimum_bid == D("1100")
    assert "1100" in low.error

    assert rules.validate_bid_amount(D("1100"), D("1000"), D("1000")).valid


def test_non_positive_amount_is_rejected_even_with_zero_start():
    assert not rules.validate_bid_amount(D("0"), None, D("0")).valid
    assert not rules.validate_bid_amount(D("-5"), None, D("0")).valid


@pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_amount_is_invalid(amount):
    check = rules.validate_bid_amount(D(amount), D("1000"), D("1000"))
    assert not check.valid
    assert check.minimum_bid == D("1100")


def test_to_money_truncates():
    assert rules.to_money("10.999") == D("10.99")
    assert rules.to_money(D("7")) == D("7.00")


def test_should_extend_auction():
    end = datetime(2026, 3, 9, 12, 0)
    window = timedelta(minutes=2)
    assert rules.should_extend_auction(end - timedelta(minutes=2), end, 0, window, 10)
    assert rules.should_extend_auction(end - timedelta(seconds=1), end, 9, window, 10)
    assert not rules.should_extend_auction(
        end - timedelta(minutes=2, seconds=1), end, 0, window, 10
    )
    assert not rules.should_extend_auction(end - timedelta(seconds=1), end, 10, window, 10)


def test_extension_compounds_on_scheduled_end():
    end = datetime(2026, 3, 9, 12, 0)
    assert rules.calculate_extended_end_time(end, timedelta(minutes=2)) == datetime(
        2026, 3, 9, 12, 2
    )


def test_buyer_fee():
    assert rules.calculate_buyer_fee(D("10000")) == D("500.00")
    assert rules.calculate_buyer_fee(D("1234.57")) == D("61.73")
    assert rules.calculate_total_with_fee(D("10000")) == D("10500.00")
    assert rules.calculate_buyer_fee(D("10000"), None) == D("500.00")


def test_buyer_fee_bounds():
    fees = FeeCfg(percent=D("5"), min_fee=D("100"), max_fee=D("2000"))
    assert rules.calculate_buyer_fee(D("1000"), fees) == D("100")
    assert rules.calculate_buyer_fee(D("100000"), fees) == D("2000")
    assert rules.calculate_buyer_fee(D("10000"), fees) == D("500.00")


def test_reserve_and_result():
    assert rules.is_reserve_met(D("1"), None)
    assert not rules.is_reserve_met(None, D("1500"))
    assert not rules.is_reserve_met(D("1499.99"), D("1500"))
    assert rules.is_reserve_met(D("1500"), D("1500"))

    assert rules.determine_auction_result(None, None) == AuctionStatus.NO_SALE
    assert rules.determine_auction_result(D("1000"), D("1500")) == AuctionStatus.NO_SALE
    assert rules.determine_auction_result(D("1500"), D("1500")) == AuctionStatus.SOLD
    assert rules.determine_auction_result(D("1000"), None) == AuctionStatus.SOLD


def test_payment_deadline_skips_weekends():
    monday = datetime(2026, 3, 2, 12, 0)
    friday = datetime(2026, 3, 6, 12, 0)
    saturday = datetime(2026, 3, 7, 9, 30)
    assert rules.calculate_payment_deadline(monday) == datetime(2026, 3, 9, 12, 0)
    assert rules.calculate_payment_deadline(friday) == datetime(2026, 3, 13, 12, 0)
    assert rules.calculate_payment_deadline(saturday) == datetime(2026, 3, 13, 9, 30)


def test_payment_deadline_calendar_days():
    friday = datetime(2026, 3, 6, 12, 0)
    assert rules.calculate_payment_deadline(friday, 5, business_days=False) == datetime(
        2026, 3, 11, 12, 0
    )


def test_validate_duration():
    assert rules.validate_duration(3, 3, 14) is None
    assert rules.validate_duration(14, 3, 14) is None
    assert rules.validate_duration(2, 3, 14) == "Duration must be between 3 and 14 days"
    assert rules.validate_duration(15, 3, 14) is not None


def test_status_validator():
    v = status_validator
    assert v.can_place_bid(AuctionStatus.ACTIVE)
    assert not v.can_place_bid(AuctionStatus.SCHEDULED)
    assert v.can_activate(AuctionStatus.SCHEDULED)
    assert not v.can_activate(AuctionStatus.ACTIVE)
    assert v.can_cancel(AuctionStatus.SCHEDULED) and v.can_cancel(AuctionStatus.ACTIVE)
    assert not v.can_end(AuctionStatus.SCHEDULED)
    for terminal in (AuctionStatus.SOLD, AuctionStatus.NO_SALE, AuctionStatus.CANCELLED):
        assert v.is_terminal(terminal)
        assert not v.can_cancel(terminal)
        assert not any(v.can_transition(terminal, target) for target in AuctionStatus)
    assert v.can_transition(AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE)
    assert not v.can_transition(AuctionStatus.SCHEDULED, AuctionStatus.SOLD)


def test_bidder_labels():
    assert format_bidder_label(3) == "Bidder 3"
    assert format_bidder_label(3, "DE") == "Bidder 3 (DE)"
    assert format_bidder_label(0) == "Anonymous Bidder"
