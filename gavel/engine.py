"""
AuctionEngine: the surface the request layer and the scheduler call.

Each write runs in its own transaction; the events it produced are published
only after that transaction committed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session

from gavel import lifecycle, queries
from gavel.bidding import BidResult, place_bid
from gavel.core import BidMetadata, EngineError
from gavel.db import Auction, Bid, BidderNumber, make_engine, transaction, utcnow
from gavel.identity import get_bidder_mappings
from gavel.notify import EventDispatcher
from gavel.settings import Settings, load_settings

log = logging.getLogger("gavel.engine")


class AuctionEngine:
    def __init__(
        self,
        db: Optional[Engine] = None,
        settings: Optional[Settings] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings or load_settings()
        self.db = db if db is not None else make_engine(self.settings.database)
        self.events = dispatcher or EventDispatcher(cfg=self.settings.notifications)
        self.clock = clock

    def _write(self, op, *args, **kwargs):
        outbox: List[object] = []
        with transaction(self.db) as s:
            result = op(s, *args, outbox=outbox, **kwargs)
        self.events.publish(outbox)
        return result

    # ---- lifecycle ----------------------------------------------------------

    def create_auction(
        self,
        listing_id: str,
        start_time: Optional[datetime] = None,
        duration_days: Optional[int] = None,
    ) -> Auction:
        now = self.clock()
        if duration_days is None:
            duration_days = self.settings.durations.default_days
        return self._write(
            lifecycle.create_auction,
            listing_id,
            start_time or now,
            duration_days,
            now,
            self.settings,
        )

    def end_auction(self, auction_id: str, force: bool = False) -> Auction:
        return self._write(
            lifecycle.end_auction, auction_id, self.clock(), self.settings, force=force
        )

    def cancel_auction(self, auction_id: str, reason: str) -> Auction:
        return self._write(lifecycle.cancel_auction, auction_id, reason, self.clock())

    def activate_scheduled_auctions(self, now: Optional[datetime] = None) -> int:
        ids = self._write(lifecycle.activate_scheduled, now or self.clock())
        if ids:
            log.info("activated %d scheduled auction(s)", len(ids))
        return len(ids)

    def end_expired_auctions(self, now: Optional[datetime] = None) -> int:
        """End every overdue auction; one failure never stops the batch."""
        now = now or self.clock()
        with Session(self.db) as s:
            due = lifecycle.find_expired(s, now)
        ended = 0
        for auction_id in due:
            try:
                self._write(lifecycle.end_auction, auction_id, now, self.settings)
            except EngineError as exc:
                # typically ended or cancelled by someone else since we looked
                log.warning("skip ending auction %s: %s", auction_id, exc)
            except Exception:
                log.exception("failed to end auction %s", auction_id)
            else:
                ended += 1
        if due:
            log.info("ended %d of %d expired auction(s)", ended, len(due))
        return ended

    # ---- bidding ------------------------------------------------------------

    def place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: Decimal,
        metadata: Optional[BidMetadata] = None,
    ) -> BidResult:
        return self._write(
            place_bid,
            auction_id,
            bidder_id,
            amount,
            self.clock(),
            self.settings,
            metadata=metadata,
        )

    # ---- reads --------------------------------------------------------------

    def get_auction_by_id(self, auction_id: str) -> Optional[Auction]:
        with Session(self.db) as s:
            return queries.get_auction_by_id(s, auction_id)

    def get_auction_by_listing_id(self, listing_id: str) -> Optional[Auction]:
        with Session(self.db) as s:
            return queries.get_auction_by_listing_id(s, listing_id)

    def get_bid_history(self, auction_id: str, limit: int = 50) -> List[queries.PublicBid]:
        with Session(self.db) as s:
            return queries.get_bid_history(s, auction_id, limit=limit)

    def get_user_bids(
        self, user_id: str, page: int = 1, limit: int = 20
    ) -> queries.Page[Bid]:
        with Session(self.db) as s:
            return queries.get_user_bids(s, user_id, page=page, limit=limit)

    def get_active_auctions(
        self, f: Optional[queries.ActiveAuctionFilter] = None
    ) -> queries.Page[queries.AuctionSummary]:
        with Session(self.db) as s:
            return queries.get_active_auctions(
                s, f or queries.ActiveAuctionFilter(), self.clock()
            )

    def get_ending_soon_auctions(
        self, limit: int = 6, within: timedelta = timedelta(hours=24)
    ) -> List[Auction]:
        with Session(self.db) as s:
            return queries.get_ending_soon_auctions(
                s, self.clock(), limit=limit, within=within
            )

    def get_bidder_mappings(self, auction_id: str) -> List[BidderNumber]:
        with Session(self.db) as s:
            return get_bidder_mappings(s, auction_id)

    def close(self) -> None:
        self.events.close()
