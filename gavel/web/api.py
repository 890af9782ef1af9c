# gavel/web/api.py
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from gavel.core import (
    AuctionStatus,
    BidMetadata,
    BidTooLowError,
    EngineError,
    NotFoundError,
    PaymentStatus,
    SelfBidError,
)
from gavel.engine import AuctionEngine
from gavel.queries import ActiveAuctionFilter, SortKey
from gavel.scheduler import tick

api = FastAPI(
    title="gavel API", version="1.0.0", docs_url="/docs", openapi_url="/openapi.json"
)

_engine: Optional[AuctionEngine] = None


def get_engine() -> AuctionEngine:
    global _engine
    if _engine is None:
        _engine = AuctionEngine()
    return _engine


# ---- error mapping ----------------------------------------------------------


def _status_for(exc: EngineError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, SelfBidError):
        return 403
    if isinstance(exc, BidTooLowError):
        return 422
    return 409


@api.exception_handler(EngineError)
async def _engine_error(request: Request, exc: EngineError):
    return JSONResponse(status_code=_status_for(exc), content={"error": exc.to_dict()})


# ---- schemas ----------------------------------------------------------------

T = TypeVar("T")


class AuctionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    status: AuctionStatus
    start_time: datetime
    original_end_time: datetime
    current_end_time: datetime
    extension_count: int
    max_extensions: int
    starting_price: Decimal
    reserve_met: bool
    currency: str
    current_bid: Optional[Decimal] = None
    bid_count: int
    winning_bid_id: Optional[int] = None
    final_price: Optional[Decimal] = None
    buyer_fee_amount: Optional[Decimal] = None
    payment_deadline: Optional[datetime] = None
    payment_status: Optional[PaymentStatus] = None


class PublicBidOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    bidder_number: int
    bidder_country: Optional[str] = None
    is_winning: bool
    triggered_extension: bool
    created_at: datetime


class UserBidOut(PublicBidOut):
    auction_id: str
    is_valid: bool


class AuctionSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    title: str
    make: Optional[str] = None
    model: Optional[str] = None
    category: Optional[str] = None
    location_country: Optional[str] = None
    currency: str
    starting_price: Decimal
    current_bid: Optional[Decimal] = None
    bid_count: int
    reserve_met: bool
    start_time: datetime
    current_end_time: datetime
    relevance: Optional[int] = None


class PageOut(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    total: int
    total_pages: int


class CreateAuctionIn(BaseModel):
    listing_id: str
    start_time: Optional[datetime] = None
    duration_days: Optional[int] = None


class PlaceBidIn(BaseModel):
    bidder_id: str
    amount: Decimal = Field(gt=0)


class PlaceBidOut(BaseModel):
    bid: PublicBidOut
    auction: AuctionOut
    extended: bool


class CancelIn(BaseModel):
    reason: str = Field(min_length=1)


class TickOut(BaseModel):
    activated: int
    ended: int


def _auction_out(a) -> AuctionOut:
    return AuctionOut.model_validate(a)


def _page(p, model):
    return PageOut[model](
        items=[model.model_validate(i) for i in p.items],
        page=p.page,
        limit=p.limit,
        total=p.total,
        total_pages=p.total_pages,
    )


def _naive_utc(ts: Optional[datetime]) -> Optional[datetime]:
    # the store keeps naive UTC
    if ts is None or ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


# ---- routes -----------------------------------------------------------------


@api.post("/auctions", response_model=AuctionOut, status_code=201)
def create_auction(payload: CreateAuctionIn, engine: AuctionEngine = Depends(get_engine)):
    a = engine.create_auction(
        payload.listing_id, _naive_utc(payload.start_time), payload.duration_days
    )
    return _auction_out(a)


@api.get("/auctions", response_model=PageOut[AuctionSummaryOut])
def active_auctions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    country: Optional[str] = None,
    sort_by: SortKey = SortKey.ENDING_SOON,
    q: Optional[str] = None,
    engine: AuctionEngine = Depends(get_engine),
):
    p = engine.get_active_auctions(
        ActiveAuctionFilter(
            page=page,
            limit=limit,
            category=category,
            min_price=min_price,
            max_price=max_price,
            country=country,
            sort_by=sort_by,
            search=q,
        )
    )
    return _page(p, AuctionSummaryOut)


@api.get("/auctions/ending-soon", response_model=List[AuctionOut])
def ending_soon(
    limit: int = Query(6, ge=1, le=50), engine: AuctionEngine = Depends(get_engine)
):
    return [_auction_out(a) for a in engine.get_ending_soon_auctions(limit=limit)]


@api.get("/auctions/{auction_id}", response_model=AuctionOut)
def get_auction(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    a = engine.get_auction_by_id(auction_id)
    if not a:
        raise HTTPException(404, "Auction not found")
    return _auction_out(a)


@api.get("/listings/{listing_id}/auction", response_model=AuctionOut)
def get_auction_for_listing(listing_id: str, engine: AuctionEngine = Depends(get_engine)):
    a = engine.get_auction_by_listing_id(listing_id)
    if not a:
        raise HTTPException(404, "No auction for this listing")
    return _auction_out(a)


@api.post("/auctions/{auction_id}/bids", response_model=PlaceBidOut, status_code=201)
def place_bid(
    auction_id: str,
    payload: PlaceBidIn,
    request: Request,
    engine: AuctionEngine = Depends(get_engine),
):
    meta = BidMetadata(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    result = engine.place_bid(auction_id, payload.bidder_id, payload.amount, meta)
    return PlaceBidOut(
        bid=PublicBidOut.model_validate(result.bid),
        auction=_auction_out(result.auction),
        extended=result.extended,
    )


@api.get("/auctions/{auction_id}/bids", response_model=List[PublicBidOut])
def bid_history(
    auction_id: str,
    limit: int = Query(50, ge=1, le=1000),
    engine: AuctionEngine = Depends(get_engine),
):
    return [PublicBidOut.model_validate(b) for b in engine.get_bid_history(auction_id, limit)]


@api.post("/auctions/{auction_id}/end", response_model=AuctionOut)
def end_auction(
    auction_id: str,
    force: bool = False,
    engine: AuctionEngine = Depends(get_engine),
):
    return _auction_out(engine.end_auction(auction_id, force=force))


@api.post("/auctions/{auction_id}/cancel", response_model=AuctionOut)
def cancel_auction(
    auction_id: str, payload: CancelIn, engine: AuctionEngine = Depends(get_engine)
):
    return _auction_out(engine.cancel_auction(auction_id, payload.reason))


@api.get("/users/{user_id}/bids", response_model=PageOut[UserBidOut])
def user_bids(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    engine: AuctionEngine = Depends(get_engine),
):
    return _page(engine.get_user_bids(user_id, page=page, limit=limit), UserBidOut)


@api.post("/admin/tick", response_model=TickOut)
def run_tick(engine: AuctionEngine = Depends(get_engine)):
    activated, ended = tick(engine)
    return TickOut(activated=activated, ended=ended)
