from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol


class AuctionStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    NO_SALE = "NO_SALE"
    CANCELLED = "CANCELLED"


class ListingStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    SOLD = "SOLD"
    EXPIRED = "EXPIRED"
    WITHDRAWN = "WITHDRAWN"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset(
    {AuctionStatus.SOLD, AuctionStatus.NO_SALE, AuctionStatus.CANCELLED}
)

_TRANSITIONS = {
    AuctionStatus.SCHEDULED: {AuctionStatus.ACTIVE, AuctionStatus.CANCELLED},
    AuctionStatus.ACTIVE: {
        AuctionStatus.SOLD,
        AuctionStatus.NO_SALE,
        AuctionStatus.CANCELLED,
    },
}


class AuctionStatusValidator:
    """Single place that answers "may this auction do X in its current status"."""

    @staticmethod
    def is_terminal(status: AuctionStatus) -> bool:
        return status in TERMINAL_STATUSES

    @staticmethod
    def can_place_bid(status: AuctionStatus) -> bool:
        return status == AuctionStatus.ACTIVE

    @staticmethod
    def can_activate(status: AuctionStatus) -> bool:
        return status == AuctionStatus.SCHEDULED

    @staticmethod
    def can_end(status: AuctionStatus) -> bool:
        return status == AuctionStatus.ACTIVE

    @staticmethod
    def can_cancel(status: AuctionStatus) -> bool:
        return status in (AuctionStatus.SCHEDULED, AuctionStatus.ACTIVE)

    @staticmethod
    def can_transition(current: AuctionStatus, target: AuctionStatus) -> bool:
        return target in _TRANSITIONS.get(current, set())


status_validator = AuctionStatusValidator()


@dataclass(frozen=True)
class BidMetadata:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


# ---- errors -----------------------------------------------------------------


class EngineError(Exception):
    """Base class for every rejection the engine reports to callers."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(EngineError):
    code = "NOT_FOUND"


class InvalidPreconditionError(EngineError):
    code = "INVALID_PRECONDITION"


class AuctionNotStartedError(EngineError):
    code = "AUCTION_NOT_STARTED"

    def __init__(self, message: str = "This auction has not started yet"):
        super().__init__(message)


class AuctionEndedError(EngineError):
    code = "AUCTION_ENDED"

    def __init__(self, message: str = "This auction has ended"):
        super().__init__(message)


class AuctionNotActiveError(EngineError):
    code = "AUCTION_NOT_ACTIVE"

    def __init__(self, message: str = "Auction is not accepting bids"):
        super().__init__(message)


class SelfBidError(EngineError):
    code = "BID_OWN_AUCTION"

    def __init__(self, message: str = "You cannot bid on your own auction"):
        super().__init__(message)


class BidTooLowError(EngineError):
    """Carries the minimum acceptable amount so the caller can retry at once."""

    code = "BID_TOO_LOW"

    def __init__(self, minimum_bid: Decimal, message: Optional[str] = None):
        super().__init__(message or f"Bid must be at least {minimum_bid}")
        self.minimum_bid = minimum_bid

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["minimum_bid"] = str(self.minimum_bid)
        return out


# ---- collaborators ----------------------------------------------------------


class Notifier(Protocol):
    """Outbound collaborator; receives events after the triggering commit."""

    def handle(self, event) -> None: ...
