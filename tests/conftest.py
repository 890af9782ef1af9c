from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from gavel.core import ListingStatus
from gavel.db import Listing, UserProfile, transaction
from gavel.engine import AuctionEngine
from gavel.notify import EventDispatcher
from gavel.settings import DatabaseCfg, NotificationCfg, Settings

# a Monday
T0 = datetime(2026, 3, 2, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> datetime:
        self.now += timedelta(**kw)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class Recorder:
    def __init__(self):
        self.events = []

    def handle(self, event) -> None:
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]

    def of(self, kind):
        return [e for e in self.events if e.kind == kind]


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database=DatabaseCfg(url=f"sqlite:///{tmp_path / 'gavel.sqlite'}"),
        notifications=NotificationCfg(inline=True),
    )


@pytest.fixture
def engine(settings, clock, recorder):
    dispatcher = EventDispatcher([recorder], cfg=settings.notifications)
    eng = AuctionEngine(settings=settings, dispatcher=dispatcher, clock=clock)
    yield eng
    eng.close()
    eng.db.dispose()


def add_listing(
    engine,
    seller_id="seller-1",
    starting_price="1000",
    reserve_price=None,
    status=ListingStatus.APPROVED,
    title="Porsche 911 Carrera",
    **kw,
) -> str:
    with transaction(engine.db) as s:
        listing = Listing(
            seller_id=seller_id,
            title=title,
            starting_price=Decimal(starting_price),
            reserve_price=Decimal(reserve_price) if reserve_price else None,
            status=status,
            **kw,
        )
        s.add(listing)
        s.flush()
        return listing.id


def add_user(engine, user_id, country) -> None:
    with transaction(engine.db) as s:
        profile = s.get(UserProfile, user_id)
        if profile is None:
            profile = UserProfile(id=user_id)
        profile.country = country
        s.add(profile)


@pytest.fixture
def live_auction(engine):
    """ACTIVE auction, starting price 1000, ending T0 + 7 days."""
    return engine.create_auction(add_listing(engine))
