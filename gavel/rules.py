"""
Pricing and validation rules.

Everything here is pure and deterministic so it can run inside the bid
transaction (and in any client-side pre-flight check) without I/O.
Tunable numbers come in as configuration objects, never as literals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Optional, Sequence, Union

from gavel.core import AuctionStatus
from gavel.settings import DEFAULT_INCREMENT_TIERS, FeeCfg, IncrementTier

CENT = Decimal("0.01")


def to_money(value: Union[Decimal, int, str, float]) -> Decimal:
    """Normalise to cents. Sub-cent digits are truncated, never rounded up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class BidValidation:
    valid: bool
    minimum_bid: Decimal
    error: Optional[str] = None


def bid_increment(
    amount: Decimal, tiers: Sequence[IncrementTier] = DEFAULT_INCREMENT_TIERS
) -> Decimal:
    """Increment for the price band ``amount`` falls in (bands are upper-exclusive)."""
    for tier in tiers:
        if tier.max_price is None or amount < tier.max_price:
            return tier.increment
    # table without a catch-all: reuse the top band
    return tiers[-1].increment


def minimum_next_bid(
    current_bid: Optional[Decimal],
    starting_price: Decimal,
    tiers: Sequence[IncrementTier] = DEFAULT_INCREMENT_TIERS,
) -> Decimal:
    if current_bid is None:
        return starting_price
    return current_bid + bid_increment(current_bid, tiers)


def validate_bid_amount(
    amount: Decimal,
    current_bid: Optional[Decimal],
    starting_price: Decimal,
    tiers: Sequence[IncrementTier] = DEFAULT_INCREMENT_TIERS,
) -> BidValidation:
    minimum = minimum_next_bid(current_bid, starting_price, tiers)
    # NaN and infinities never compare cleanly against a price
    if not amount.is_finite() or amount <= 0 or amount < minimum:
        return BidValidation(False, minimum, f"Bid must be at least {minimum}")
    return BidValidation(True, minimum)


def should_extend_auction(
    now: datetime,
    current_end_time: datetime,
    extension_count: int,
    window: timedelta,
    max_extensions: int,
) -> bool:
    if extension_count >= max_extensions:
        return False
    return current_end_time - now <= window


def calculate_extended_end_time(
    current_end_time: datetime, extension: timedelta
) -> datetime:
    # compounds on the scheduled close, not on the bid arrival time
    return current_end_time + extension


def calculate_buyer_fee(final_price: Decimal, fees: Optional[FeeCfg] = None) -> Decimal:
    fees = fees or FeeCfg()
    fee = (final_price * fees.percent / Decimal(100)).quantize(
        CENT, rounding=ROUND_HALF_UP
    )
    if fees.min_fee is not None and fee < fees.min_fee:
        return fees.min_fee
    if fees.max_fee is not None and fee > fees.max_fee:
        return fees.max_fee
    return fee


def calculate_total_with_fee(
    final_price: Decimal, fees: Optional[FeeCfg] = None
) -> Decimal:
    return final_price + calculate_buyer_fee(final_price, fees)


def is_reserve_met(amount: Optional[Decimal], reserve_price: Optional[Decimal]) -> bool:
    if reserve_price is None:
        return True
    if amount is None:
        return False
    return amount >= reserve_price


def determine_auction_result(
    final_bid: Optional[Decimal], reserve_price: Optional[Decimal]
) -> AuctionStatus:
    if final_bid is None:
        return AuctionStatus.NO_SALE
    if not is_reserve_met(final_bid, reserve_price):
        return AuctionStatus.NO_SALE
    return AuctionStatus.SOLD


def calculate_payment_deadline(
    end_time: datetime, days: int = 5, business_days: bool = True
) -> datetime:
    if not business_days:
        return end_time + timedelta(days=days)
    deadline = end_time
    remaining = days
    while remaining > 0:
        deadline += timedelta(days=1)
        if deadline.weekday() < 5:  # Mon-Fri
            remaining -= 1
    return deadline


def validate_duration(duration_days: int, min_days: int, max_days: int) -> Optional[str]:
    if duration_days < min_days or duration_days > max_days:
        return f"Duration must be between {min_days} and {max_days} days"
    return None
