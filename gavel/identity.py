"""
Anonymous, auction-scoped bidder numbers.

A user gets the next number the first time they bid on an auction and keeps
it for every later bid there, so the public history reads "Bidder 3 (DE)"
instead of a name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlmodel import Session, select

from gavel.db import Auction, BidderNumber, UserProfile, utcnow

log = logging.getLogger("gavel.identity")


@dataclass(frozen=True)
class BidderIdentity:
    bidder_number: int
    bidder_country: Optional[str]


def assign_or_get_bidder_number(
    s: Session, auction: Auction, user_id: str
) -> BidderIdentity:
    """Idempotent per (auction, user).

    ``auction`` must already be locked by the caller's transaction: the
    counter bump below relies on that lock and is flushed with the bid.
    """
    existing = s.exec(
        select(BidderNumber).where(
            BidderNumber.auction_id == auction.id,
            BidderNumber.user_id == user_id,
        )
    ).first()
    if existing:
        return BidderIdentity(existing.number, existing.country)

    # country is frozen at first assignment
    profile = s.get(UserProfile, user_id)
    country = profile.country.upper() if profile and profile.country else None

    number = auction.next_bidder_number
    auction.next_bidder_number = number + 1
    s.add(auction)
    s.add(
        BidderNumber(
            auction_id=auction.id,
            user_id=user_id,
            number=number,
            country=country,
            assigned_at=utcnow(),
        )
    )
    log.debug("auction %s: user %s is bidder %d", auction.id, user_id, number)
    return BidderIdentity(number, country)


def get_bidder_mappings(s: Session, auction_id: str) -> List[BidderNumber]:
    """Admin-only view of number -> user for one auction."""
    return s.exec(
        select(BidderNumber)
        .where(BidderNumber.auction_id == auction_id)
        .order_by(BidderNumber.number)
    ).all()


def format_bidder_label(bidder_number: int, country: Optional[str] = None) -> str:
    if bidder_number <= 0:
        return "Anonymous Bidder"
    if country:
        return f"Bidder {bidder_number} ({country})"
    return f"Bidder {bidder_number}"
