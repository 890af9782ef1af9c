# gavel/queries.py
"""Read-only projections. Nothing here takes a lock or writes."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from sqlalchemy import case, func, or_
from sqlmodel import Session, col, select

from gavel.core import AuctionStatus
from gavel.db import Auction, Bid, Listing

T = TypeVar("T")

MAX_PAGE_SIZE = 100
_WORD_RE = re.compile(r"\w+", re.UNICODE)


class SortKey(str, Enum):
    ENDING_SOON = "ending_soon"
    NEWLY_LISTED = "newly_listed"
    PRICE_LOW = "price_low"
    PRICE_HIGH = "price_high"
    MOST_BIDS = "most_bids"
    RELEVANCE = "relevance"


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass(frozen=True)
class PublicBid:
    """What other participants may see: no bidder id, only the auction-scoped number."""

    id: int
    amount: Decimal
    bidder_number: int
    bidder_country: Optional[str]
    is_winning: bool
    triggered_extension: bool
    created_at: datetime


@dataclass
class ActiveAuctionFilter:
    page: int = 1
    limit: int = 20
    category: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    country: Optional[str] = None
    sort_by: SortKey = SortKey.ENDING_SOON
    search: Optional[str] = None


@dataclass
class AuctionSummary:
    id: str
    listing_id: str
    title: str
    make: Optional[str]
    model: Optional[str]
    category: Optional[str]
    location_country: Optional[str]
    currency: str
    starting_price: Decimal
    current_bid: Optional[Decimal]
    bid_count: int
    reserve_met: bool
    start_time: datetime
    current_end_time: datetime
    relevance: Optional[int] = field(default=None)


def _clamp(page: int, limit: int) -> tuple[int, int]:
    return max(page, 1), min(max(limit, 1), MAX_PAGE_SIZE)


def search_tokens(query: Optional[str]) -> List[str]:
    """Lower-cased word tokens; punctuation is dropped."""
    if not query:
        return []
    return [t.lower() for t in _WORD_RE.findall(query)]


def _like(token: str) -> str:
    escaped = token.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def get_auction_by_id(s: Session, auction_id: str) -> Optional[Auction]:
    return s.get(Auction, auction_id)


def get_auction_by_listing_id(s: Session, listing_id: str) -> Optional[Auction]:
    return s.exec(select(Auction).where(Auction.listing_id == listing_id)).first()


def get_bid_history(
    s: Session, auction_id: str, limit: int = 50, include_invalid: bool = False
) -> List[PublicBid]:
    stmt = select(Bid).where(Bid.auction_id == auction_id)
    if not include_invalid:
        stmt = stmt.where(Bid.is_valid == True)  # noqa: E712
    stmt = stmt.order_by(col(Bid.created_at).desc(), col(Bid.id).desc()).limit(
        min(max(limit, 1), 1000)
    )
    return [
        PublicBid(
            id=b.id,
            amount=b.amount,
            bidder_number=b.bidder_number,
            bidder_country=b.bidder_country,
            is_winning=b.is_winning,
            triggered_extension=b.triggered_extension,
            created_at=b.created_at,
        )
        for b in s.exec(stmt).all()
    ]


def get_user_bids(s: Session, user_id: str, page: int = 1, limit: int = 20) -> Page[Bid]:
    page, limit = _clamp(page, limit)
    total = s.exec(
        select(func.count(Bid.id)).where(Bid.bidder_id == user_id)
    ).one()
    rows = s.exec(
        select(Bid)
        .where(Bid.bidder_id == user_id)
        .order_by(col(Bid.created_at).desc(), col(Bid.id).desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return Page(items=list(rows), page=page, limit=limit, total=total)


def get_active_auctions(
    s: Session, f: ActiveAuctionFilter, now: datetime
) -> Page[AuctionSummary]:
    page, limit = _clamp(f.page, f.limit)
    conditions = [
        Auction.status == AuctionStatus.ACTIVE,
        Auction.current_end_time > now,
    ]
    if f.category:
        conditions.append(Listing.category == f.category)
    if f.country:
        conditions.append(Listing.location_country == f.country.upper())
    if f.min_price is not None:
        conditions.append(Listing.starting_price >= f.min_price)
    if f.max_price is not None:
        conditions.append(Listing.starting_price <= f.max_price)

    # every token has to hit at least one text field
    text_fields = [
        col(Listing.title),
        col(Listing.make),
        col(Listing.model),
        col(Listing.description),
    ]
    tokens = search_tokens(f.search)
    relevance = None
    if tokens:
        for tok in tokens:
            conditions.append(
                or_(*[fld.ilike(_like(tok), escape="\\") for fld in text_fields])
            )
        relevance = sum(
            case((fld.ilike(_like(tok), escape="\\"), 1), else_=0)
            for tok in tokens
            for fld in text_fields
        ).label("relevance")

    total = s.exec(
        select(func.count(Auction.id))
        .join(Listing, Listing.id == Auction.listing_id)
        .where(*conditions)
    ).one()

    sort = f.sort_by
    if sort == SortKey.RELEVANCE and relevance is None:
        sort = SortKey.ENDING_SOON
    order = {
        SortKey.ENDING_SOON: [col(Auction.current_end_time).asc()],
        SortKey.NEWLY_LISTED: [col(Auction.start_time).desc()],
        SortKey.PRICE_LOW: [col(Auction.current_bid).asc().nulls_first()],
        SortKey.PRICE_HIGH: [col(Auction.current_bid).desc().nulls_last()],
        SortKey.MOST_BIDS: [col(Auction.bid_count).desc()],
    }.get(sort)
    if order is None:
        order = [relevance.desc(), col(Auction.current_end_time).asc()]
    order.append(col(Auction.id).asc())

    columns = [Auction, Listing] + ([relevance] if relevance is not None else [])
    stmt = (
        select(*columns)
        .join(Listing, Listing.id == Auction.listing_id)
        .where(*conditions)
        .order_by(*order)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = []
    for row in s.exec(stmt).all():
        auction, listing = row[0], row[1]
        items.append(
            AuctionSummary(
                id=auction.id,
                listing_id=listing.id,
                title=listing.title,
                make=listing.make,
                model=listing.model,
                category=listing.category,
                location_country=listing.location_country,
                currency=auction.currency,
                starting_price=auction.starting_price,
                current_bid=auction.current_bid,
                bid_count=auction.bid_count,
                reserve_met=auction.reserve_met,
                start_time=auction.start_time,
                current_end_time=auction.current_end_time,
                relevance=row[2] if relevance is not None else None,
            )
        )
    return Page(items=items, page=page, limit=limit, total=total)


def get_ending_soon_auctions(
    s: Session, now: datetime, limit: int = 6, within: timedelta = timedelta(hours=24)
) -> List[Auction]:
    return s.exec(
        select(Auction)
        .where(
            Auction.status == AuctionStatus.ACTIVE,
            Auction.current_end_time > now,
            Auction.current_end_time <= now + within,
        )
        .order_by(col(Auction.current_end_time).asc())
        .limit(limit)
    ).all()
