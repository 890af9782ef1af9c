"""
Auction state machine: SCHEDULED -> ACTIVE -> {SOLD, NO_SALE}, plus the
admin side exit SCHEDULED|ACTIVE -> CANCELLED. Terminal states never move.

Every function works inside the caller's transaction and appends the events
it wants published to ``outbox``; nothing here talks to a collaborator.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from gavel import rules
from gavel.bidding import lock_auction
from gavel.core import (
    AuctionStatus,
    InvalidPreconditionError,
    ListingStatus,
    NotFoundError,
    PaymentStatus,
    status_validator,
)
from gavel.db import Auction, Bid, Listing
from gavel.events import (
    AuctionActivated,
    AuctionCancelled,
    AuctionEnded,
    AuctionUnsold,
)
from gavel.settings import Settings

log = logging.getLogger("gavel.lifecycle")


def _activated_event(auction: Auction, listing: Listing) -> AuctionActivated:
    return AuctionActivated(
        auction_id=auction.id,
        listing_id=listing.id,
        seller_id=listing.seller_id,
        title=listing.title,
        starting_price=auction.starting_price,
        currency=auction.currency,
        current_end_time=auction.current_end_time,
    )


def _bidder_ids(s: Session, auction_id: str, exclude: Optional[str] = None) -> tuple:
    stmt = select(Bid.bidder_id).where(Bid.auction_id == auction_id).distinct()
    if exclude is not None:
        stmt = stmt.where(Bid.bidder_id != exclude)
    return tuple(sorted(s.exec(stmt).all()))


def _load_locked(s: Session, auction_id: str) -> Auction:
    auction = lock_auction(s, auction_id)
    if auction is None:
        raise NotFoundError("Auction not found", "AUCTION_NOT_FOUND")
    return auction


# ---- create -----------------------------------------------------------------


def create_auction(
    s: Session,
    listing_id: str,
    start_time: datetime,
    duration_days: int,
    now: datetime,
    settings: Settings,
    outbox: Optional[List[object]] = None,
) -> Auction:
    listing = s.exec(
        select(Listing).where(Listing.id == listing_id).with_for_update()
    ).first()
    if listing is None:
        raise NotFoundError("Listing not found", "LISTING_NOT_FOUND")
    if listing.status != ListingStatus.APPROVED:
        raise InvalidPreconditionError(
            "Listing must be approved before creating auction"
        )
    existing = s.exec(select(Auction).where(Auction.listing_id == listing_id)).first()
    if existing is not None:
        raise InvalidPreconditionError("Auction already exists for this listing")

    durations = settings.durations
    problem = rules.validate_duration(
        duration_days, durations.min_days, durations.max_days
    )
    if problem:
        raise InvalidPreconditionError(problem)

    end_time = start_time + timedelta(days=duration_days)
    sniping = settings.anti_sniping
    auction = Auction(
        listing_id=listing.id,
        start_time=start_time,
        original_end_time=end_time,
        current_end_time=end_time,
        status=AuctionStatus.ACTIVE if start_time <= now else AuctionStatus.SCHEDULED,
        anti_sniping_enabled=sniping.enabled,
        anti_sniping_window_minutes=sniping.window_minutes,
        anti_sniping_extension_minutes=sniping.extension_minutes,
        max_extensions=sniping.max_extensions,
        starting_price=listing.starting_price,
        reserve_price=listing.reserve_price,
        currency=listing.currency,
        next_bidder_number=settings.bidding.bidder_number_base,
        created_at=now,
        updated_at=now,
    )
    listing.status = ListingStatus.ACTIVE
    listing.updated_at = now
    s.add(auction)
    s.add(listing)
    try:
        s.flush()
    except IntegrityError as exc:
        # lost the race against a concurrent create for the same listing
        raise InvalidPreconditionError(
            "Auction already exists for this listing"
        ) from exc

    log.info(
        "auction %s created for listing %s (%s, %s -> %s)",
        auction.id,
        listing.id,
        auction.status.value,
        start_time.isoformat(),
        end_time.isoformat(),
    )
    if outbox is not None and auction.status == AuctionStatus.ACTIVE:
        outbox.append(_activated_event(auction, listing))
    return auction


# ---- activate ---------------------------------------------------------------


def activate_scheduled(
    s: Session, now: datetime, outbox: Optional[List[object]] = None
) -> List[str]:
    """Flip every due SCHEDULED auction to ACTIVE.

    The conditional UPDATE is the gate: only ids it returns were flipped by
    this call, so concurrent callers never announce the same auction twice.
    """
    table = Auction.__table__
    stmt = (
        update(table)
        .where(
            table.c.status == AuctionStatus.SCHEDULED,
            table.c.start_time <= now,
        )
        .values(status=AuctionStatus.ACTIVE, updated_at=now)
        .returning(table.c.id)
    )
    ids = list(s.connection().execute(stmt).scalars())
    if not ids:
        return []

    rows = s.exec(
        select(Auction, Listing)
        .where(col(Auction.id).in_(ids), Listing.id == Auction.listing_id)
        .execution_options(populate_existing=True)
    ).all()
    for auction, listing in rows:
        log.info("auction %s is live (listing %s)", auction.id, listing.id)
        if outbox is not None:
            outbox.append(_activated_event(auction, listing))
    return ids


# ---- end --------------------------------------------------------------------


def find_expired(s: Session, now: datetime) -> List[str]:
    return s.exec(
        select(Auction.id)
        .where(
            Auction.status == AuctionStatus.ACTIVE,
            Auction.current_end_time <= now,
        )
        .order_by(Auction.current_end_time)
    ).all()


def winning_bid(s: Session, auction_id: str) -> Optional[Bid]:
    return s.exec(
        select(Bid)
        .where(
            Bid.auction_id == auction_id,
            Bid.is_winning == True,  # noqa: E712
            Bid.is_valid == True,  # noqa: E712
        )
        .order_by(col(Bid.created_at).desc(), col(Bid.id).desc())
        .limit(1)
    ).first()


def end_auction(
    s: Session,
    auction_id: str,
    now: datetime,
    settings: Settings,
    force: bool = False,
    outbox: Optional[List[object]] = None,
) -> Auction:
    auction = _load_locked(s, auction_id)
    if not status_validator.can_end(auction.status):
        raise InvalidPreconditionError(
            f"Auction cannot be ended in status {auction.status.value}"
        )
    if not force and now < auction.current_end_time:
        raise InvalidPreconditionError("Auction has not reached its close time")

    listing = s.get(Listing, auction.listing_id)
    if listing is None:
        raise NotFoundError("Listing not found", "LISTING_NOT_FOUND")

    winner = winning_bid(s, auction.id)
    final_bid = winner.amount if winner else None
    result = rules.determine_auction_result(final_bid, auction.reserve_price)

    auction.status = result
    auction.ended_at = now
    auction.updated_at = now
    if result == AuctionStatus.SOLD:
        auction.winner_id = winner.bidder_id
        auction.winning_bid_id = winner.id
        auction.final_price = final_bid
        auction.buyer_fee_amount = rules.calculate_buyer_fee(final_bid, settings.fees)
        auction.payment_deadline = rules.calculate_payment_deadline(
            auction.current_end_time,
            settings.payment.deadline_days,
            settings.payment.business_days,
        )
        auction.payment_status = PaymentStatus.UNPAID
        listing.status = ListingStatus.SOLD
    else:
        listing.status = ListingStatus.EXPIRED
    listing.updated_at = now
    s.add(auction)
    s.add(listing)
    s.flush()

    log.info(
        "auction %s ended: %s (final %s %s, winner %s)",
        auction.id,
        result.value,
        auction.final_price,
        auction.currency,
        auction.winner_id,
    )

    if outbox is not None:
        outbox.append(
            AuctionEnded(
                auction_id=auction.id,
                listing_id=listing.id,
                title=listing.title,
                status=result.value,
                final_price=auction.final_price,
                currency=auction.currency,
                winner_id=auction.winner_id,
                losing_bidder_ids=_bidder_ids(s, auction.id, exclude=auction.winner_id),
            )
        )
        if result == AuctionStatus.NO_SALE:
            outbox.append(
                AuctionUnsold(
                    auction_id=auction.id,
                    listing_id=listing.id,
                    seller_id=listing.seller_id,
                    title=listing.title,
                    reason="no_bids" if winner is None else "reserve_not_met",
                )
            )
    return auction


# ---- cancel -----------------------------------------------------------------


def cancel_auction(
    s: Session,
    auction_id: str,
    reason: str,
    now: datetime,
    outbox: Optional[List[object]] = None,
) -> Auction:
    if not reason or not reason.strip():
        raise InvalidPreconditionError("A cancellation reason is required")
    auction = _load_locked(s, auction_id)
    if not status_validator.can_cancel(auction.status):
        raise InvalidPreconditionError(
            f"Cannot cancel auction in status {auction.status.value}"
        )

    auction.status = AuctionStatus.CANCELLED
    auction.cancel_reason = reason.strip()
    auction.cancelled_at = now
    auction.updated_at = now
    listing = s.get(Listing, auction.listing_id)
    if listing is not None:
        listing.status = ListingStatus.WITHDRAWN
        listing.updated_at = now
        s.add(listing)
    s.add(auction)
    s.flush()

    log.info("auction %s cancelled: %s", auction.id, auction.cancel_reason)
    if outbox is not None:
        outbox.append(
            AuctionCancelled(
                auction_id=auction.id,
                listing_id=auction.listing_id,
                reason=auction.cancel_reason,
                bidder_ids=_bidder_ids(s, auction.id),
            )
        )
    return auction
