import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from pacmac.models.enums.auction_timer_status import AuctionTimerStatus


class AuctionStart(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # falls back to the configured default duration
    duration_seconds: int | None = Field(default=None, gt=0)


class AuctionState(BaseModel):
    listing_id: int
    status: AuctionTimerStatus | None = None
    is_active: bool
    time_left_seconds: float
    start_time: datetime | None = None
    end_time: datetime | None = None
    highest_bid: Decimal | None = None
    bid_count: int = 0


class BidCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    amount: Decimal = Field(max_digits=10, decimal_places=2, gt=0)


class BidRead(BaseModel):
    id: uuid.UUID
    listing_id: int
    auction_timer_id: uuid.UUID
    bidder_id: int
    amount: Decimal
    created_at: datetime
