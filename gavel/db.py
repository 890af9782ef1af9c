# gavel/db.py

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional

from sqlmodel import SQLModel, Field, create_engine, Session
from sqlalchemy import DateTime, UniqueConstraint, event
from sqlalchemy.engine import Engine

from gavel.core import AuctionStatus, ListingStatus, PaymentStatus
from gavel.settings import DatabaseCfg


def utcnow() -> datetime:
    """Naive UTC; SQLite drops tzinfo on the way back so we never store it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return uuid.uuid4().hex


def _timestamp(**kw):
    # naive UTC column; newer sqlmodel defaults bare datetimes to tz-aware only
    return Field(sa_type=DateTime(timezone=False), **kw)


def _money(**kw):
    return Field(max_digits=14, decimal_places=2, **kw)


class Listing(SQLModel, table=True):
    """Vehicle listing. Owned by the listing subsystem; the engine reads it and flips status."""

    __tablename__ = "listing"
    id: str = Field(default_factory=_new_id, primary_key=True)
    seller_id: str = Field(index=True)
    title: str
    make: Optional[str] = None
    model: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, index=True)
    location_country: Optional[str] = Field(default=None, index=True, max_length=2)
    starting_price: Decimal = _money()
    reserve_price: Optional[Decimal] = _money(default=None)
    currency: str = Field(default="EUR", max_length=8)
    status: ListingStatus = Field(default=ListingStatus.DRAFT, index=True)
    created_at: datetime = _timestamp(default_factory=utcnow)
    updated_at: datetime = _timestamp(default_factory=utcnow)


class UserProfile(SQLModel, table=True):
    __tablename__ = "user_profile"
    id: str = Field(primary_key=True)
    country: Optional[str] = Field(default=None, max_length=2)


class Auction(SQLModel, table=True):
    __tablename__ = "auction"
    id: str = Field(default_factory=_new_id, primary_key=True)
    listing_id: str = Field(foreign_key="listing.id", unique=True, index=True)

    # timing
    start_time: datetime = _timestamp(index=True)
    original_end_time: datetime = _timestamp()
    current_end_time: datetime = _timestamp(index=True)
    extension_count: int = 0
    max_extensions: int = 10
    anti_sniping_enabled: bool = True
    anti_sniping_window_minutes: int = 2
    anti_sniping_extension_minutes: int = 2

    # pricing snapshot, copied from the listing at creation
    starting_price: Decimal = _money()
    reserve_price: Optional[Decimal] = _money(default=None)
    currency: str = Field(default="EUR", max_length=8)

    # live state
    current_bid: Optional[Decimal] = _money(default=None)
    bid_count: int = 0
    reserve_met: bool = False
    next_bidder_number: int = 1

    status: AuctionStatus = Field(default=AuctionStatus.SCHEDULED, index=True)

    # settlement, written once at termination
    winner_id: Optional[str] = None
    winning_bid_id: Optional[int] = None
    final_price: Optional[Decimal] = _money(default=None)
    buyer_fee_amount: Optional[Decimal] = _money(default=None)
    payment_deadline: Optional[datetime] = _timestamp(default=None)
    payment_status: Optional[PaymentStatus] = None
    ended_at: Optional[datetime] = _timestamp(default=None)

    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = _timestamp(default=None)

    created_at: datetime = _timestamp(default_factory=utcnow)
    updated_at: datetime = _timestamp(default_factory=utcnow)


class Bid(SQLModel, table=True):
    __tablename__ = "bid"
    id: Optional[int] = Field(default=None, primary_key=True)
    auction_id: str = Field(foreign_key="auction.id", index=True)
    bidder_id: str = Field(index=True)
    amount: Decimal = _money()
    bidder_number: int
    bidder_country: Optional[str] = Field(default=None, max_length=2)
    is_winning: bool = Field(default=False, index=True)
    is_valid: bool = True
    invalidated_reason: Optional[str] = None
    triggered_extension: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = _timestamp(default_factory=utcnow, index=True)


class BidderNumber(SQLModel, table=True):
    __tablename__ = "bidder_number"
    __table_args__ = (
        UniqueConstraint("auction_id", "user_id", name="uq_bidder_auction_user"),
        UniqueConstraint("auction_id", "number", name="uq_bidder_auction_number"),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    auction_id: str = Field(foreign_key="auction.id", index=True)
    user_id: str = Field(index=True)
    number: int
    country: Optional[str] = Field(default=None, max_length=2)
    assigned_at: datetime = _timestamp(default_factory=utcnow)


def make_engine(cfg: Optional[DatabaseCfg] = None) -> Engine:
    cfg = cfg or DatabaseCfg()
    if cfg.url.startswith("sqlite"):
        engine = create_engine(
            cfg.url,
            echo=cfg.echo,
            connect_args={
                "check_same_thread": False,
                "timeout": cfg.busy_timeout_seconds,
            },
        )

        # pysqlite's own BEGIN handling is disabled so every transaction can be
        # opened with BEGIN IMMEDIATE: the write lock is taken before the first
        # read, which is what gives "read auction for update" on SQLite.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_connection, _record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    else:
        engine = create_engine(cfg.url, echo=cfg.echo, pool_pre_ping=True)
    SQLModel.metadata.create_all(engine)
    return engine


@contextmanager
def transaction(engine: Engine) -> Iterator[Session]:
    """Commit on success, roll back on any exception (which is re-raised)."""
    with Session(engine, expire_on_commit=False) as s:
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
