"""
Outbound events published after a successful commit.

Each event is an immutable snapshot; notifiers must never need to read the
database to act on one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple


@dataclass(frozen=True)
class AuctionActivated:
    auction_id: str
    listing_id: str
    seller_id: str
    title: str
    starting_price: Decimal
    currency: str
    current_end_time: datetime
    kind: str = field(default="auction_activated", init=False)


@dataclass(frozen=True)
class BidPlaced:
    auction_id: str
    bid_id: int
    bidder_id: str
    bidder_number: int
    amount: Decimal
    currency: str
    placed_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    kind: str = field(default="bid_placed", init=False)


@dataclass(frozen=True)
class AuctionExtended:
    auction_id: str
    previous_end_time: datetime
    current_end_time: datetime
    extension_count: int
    triggered_by_bid_id: int
    kind: str = field(default="auction_extended", init=False)


@dataclass(frozen=True)
class AuctionEnded:
    auction_id: str
    listing_id: str
    title: str
    status: str
    final_price: Optional[Decimal]
    currency: str
    winner_id: Optional[str]
    losing_bidder_ids: Tuple[str, ...] = ()
    kind: str = field(default="auction_ended", init=False)


@dataclass(frozen=True)
class AuctionUnsold:
    auction_id: str
    listing_id: str
    seller_id: str
    title: str
    reason: str  # "no_bids" | "reserve_not_met"
    kind: str = field(default="auction_unsold", init=False)


@dataclass(frozen=True)
class AuctionCancelled:
    auction_id: str
    listing_id: str
    reason: str
    bidder_ids: Tuple[str, ...] = ()
    kind: str = field(default="auction_cancelled", init=False)
