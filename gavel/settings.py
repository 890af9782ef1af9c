from decimal import Decimal
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
import tomllib
import os


class DatabaseCfg(BaseModel):
    url: str = "sqlite:///gavel.sqlite"
    echo: bool = False
    busy_timeout_seconds: float = 15.0


class DurationCfg(BaseModel):
    default_days: int = 7
    min_days: int = 3
    max_days: int = 14


class AntiSnipingCfg(BaseModel):
    enabled: bool = True
    window_minutes: int = 2
    extension_minutes: int = 2
    max_extensions: int = 10


class IncrementTier(BaseModel):
    # None means "no upper bound"
    max_price: Optional[Decimal] = None
    increment: Decimal


DEFAULT_INCREMENT_TIERS = [
    IncrementTier(max_price=Decimal("1000"), increment=Decimal("50")),
    IncrementTier(max_price=Decimal("5000"), increment=Decimal("100")),
    IncrementTier(max_price=Decimal("10000"), increment=Decimal("250")),
    IncrementTier(max_price=Decimal("25000"), increment=Decimal("500")),
    IncrementTier(max_price=Decimal("50000"), increment=Decimal("1000")),
    IncrementTier(max_price=Decimal("100000"), increment=Decimal("2500")),
    IncrementTier(max_price=Decimal("250000"), increment=Decimal("5000")),
    IncrementTier(max_price=None, increment=Decimal("10000")),
]


class BiddingCfg(BaseModel):
    increment_tiers: List[IncrementTier] = Field(
        default_factory=lambda: list(DEFAULT_INCREMENT_TIERS)
    )
    bidder_number_base: int = 1


class FeeCfg(BaseModel):
    percent: Decimal = Decimal("5")
    min_fee: Optional[Decimal] = None
    max_fee: Optional[Decimal] = None


class PaymentCfg(BaseModel):
    deadline_days: int = 5
    business_days: bool = True


class SchedulerCfg(BaseModel):
    activate_interval_seconds: int = 30
    end_interval_seconds: int = 15
    jitter_seconds: int = 5


class NotificationCfg(BaseModel):
    inline: bool = False
    workers: int = 4


class Settings(BaseModel):
    database: DatabaseCfg = DatabaseCfg()
    durations: DurationCfg = DurationCfg()
    anti_sniping: AntiSnipingCfg = AntiSnipingCfg()
    bidding: BiddingCfg = BiddingCfg()
    fees: FeeCfg = FeeCfg()
    payment: PaymentCfg = PaymentCfg()
    scheduler: SchedulerCfg = SchedulerCfg()
    notifications: NotificationCfg = NotificationCfg()


def load_settings() -> Settings:
    cfg_path = Path(os.getenv("GAVEL_CONFIG", "gavel.toml"))
    raw = tomllib.loads(cfg_path.read_text()) if cfg_path.exists() else {}
    return Settings.model_validate(raw)
