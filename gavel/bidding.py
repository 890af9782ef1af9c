"""
Bid admission.

``place_bid`` runs entirely inside the caller's transaction. The auction row
is read with ``SELECT ... FOR UPDATE`` (on SQLite the engine opens the
transaction with ``BEGIN IMMEDIATE`` instead), so two bids on the same
auction serialize and the second one validates against the first one's
``current_bid``. Every rejection is raised before the first write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Session, select

from gavel import rules
from gavel.core import (
    AuctionEndedError,
    AuctionNotActiveError,
    AuctionNotStartedError,
    AuctionStatus,
    BidMetadata,
    BidTooLowError,
    NotFoundError,
    SelfBidError,
    status_validator,
)
from gavel.db import Auction, Bid, Listing
from gavel.events import AuctionExtended, BidPlaced
from gavel.identity import assign_or_get_bidder_number
from gavel.settings import Settings

log = logging.getLogger("gavel.bidding")


@dataclass
class BidResult:
    bid: Bid
    auction: Auction
    extended: bool


def lock_auction(s: Session, auction_id: str) -> Optional[Auction]:
    return s.exec(
        select(Auction).where(Auction.id == auction_id).with_for_update()
    ).first()


def place_bid(
    s: Session,
    auction_id: str,
    bidder_id: str,
    amount: Decimal,
    now: datetime,
    settings: Settings,
    metadata: Optional[BidMetadata] = None,
    outbox: Optional[List[object]] = None,
) -> BidResult:
    metadata = metadata or BidMetadata()
    amount = Decimal(str(amount))
    if amount.is_finite():
        amount = rules.to_money(amount)

    # 1. load under lock
    auction = lock_auction(s, auction_id)
    if auction is None:
        raise NotFoundError("Auction not found", "AUCTION_NOT_FOUND")
    listing = s.get(Listing, auction.listing_id)
    if listing is None:
        raise NotFoundError("Listing not found", "LISTING_NOT_FOUND")

    # 2. status and timing gates
    if auction.status == AuctionStatus.SCHEDULED:
        raise AuctionNotStartedError()
    if not status_validator.can_place_bid(auction.status):
        raise AuctionNotActiveError()
    if now < auction.start_time:
        raise AuctionNotStartedError()
    if now >= auction.current_end_time:
        raise AuctionEndedError()

    # 3. sellers cannot bid on their own listing
    if bidder_id == listing.seller_id:
        raise SelfBidError()

    # 4. amount against the row we just locked
    check = rules.validate_bid_amount(
        amount,
        auction.current_bid,
        auction.starting_price,
        settings.bidding.increment_tiers,
    )
    if not check.valid:
        raise BidTooLowError(check.minimum_bid, check.error)

    # 5. anti-sniping
    previous_end = auction.current_end_time
    new_end = previous_end
    extended = auction.anti_sniping_enabled and rules.should_extend_auction(
        now,
        previous_end,
        auction.extension_count,
        timedelta(minutes=auction.anti_sniping_window_minutes),
        auction.max_extensions,
    )
    if extended:
        new_end = rules.calculate_extended_end_time(
            previous_end, timedelta(minutes=auction.anti_sniping_extension_minutes)
        )

    # 6. reserve
    reserve_met = rules.is_reserve_met(amount, auction.reserve_price)

    # 7. anonymous identity, same transaction
    identity = assign_or_get_bidder_number(s, auction, bidder_id)

    # 8. the new bid is the winner
    bid = Bid(
        auction_id=auction.id,
        bidder_id=bidder_id,
        amount=amount,
        bidder_number=identity.bidder_number,
        bidder_country=identity.bidder_country,
        is_winning=True,
        triggered_extension=extended,
        ip_address=metadata.ip_address,
        user_agent=metadata.user_agent,
        created_at=now,
    )
    s.add(bid)
    s.flush()

    # 9. nobody else is
    superseded = s.exec(
        select(Bid).where(
            Bid.auction_id == auction.id,
            Bid.is_winning == True,  # noqa: E712
            Bid.id != bid.id,
        )
    ).all()
    for prev in superseded:
        prev.is_winning = False
        s.add(prev)

    # 10. auction row
    auction.current_bid = amount
    auction.bid_count += 1
    auction.reserve_met = reserve_met
    if extended:
        auction.current_end_time = new_end
        auction.extension_count += 1
    auction.updated_at = now
    s.add(auction)
    s.flush()

    log.info(
        "auction %s: bid %s by bidder %d (%s %s)%s",
        auction.id,
        bid.id,
        bid.bidder_number,
        amount,
        auction.currency,
        " extended to %s" % new_end.isoformat() if extended else "",
    )

    if outbox is not None:
        outbox.append(
            BidPlaced(
                auction_id=auction.id,
                bid_id=bid.id,
                bidder_id=bidder_id,
                bidder_number=bid.bidder_number,
                amount=amount,
                currency=auction.currency,
                placed_at=now,
                ip_address=metadata.ip_address,
                user_agent=metadata.user_agent,
            )
        )
        if extended:
            outbox.append(
                AuctionExtended(
                    auction_id=auction.id,
                    previous_end_time=previous_end,
                    current_end_time=new_end,
                    extension_count=auction.extension_count,
                    triggered_by_bid_id=bid.id,
                )
            )

    return BidResult(bid=bid, auction=auction, extended=extended)
