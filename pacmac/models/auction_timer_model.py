import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import TIMESTAMP, Column, Index, text
from sqlmodel import Field, SQLModel

from pacmac.core.ids import new_id
from pacmac.models.enums.auction_timer_status import AuctionTimerStatus


class AuctionTimer(SQLModel, table=True):
    __tablename__ = "auction_timers"

    id: uuid.UUID = Field(default_factory=new_id, primary_key=True)
    listing_id: int = Field(foreign_key="listings.id", index=True)

    # end_time is the source of truth, remaining time is always end_time - now
    start_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    end_time: datetime = Field(
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False, index=True),
    )
    is_active: bool = Field(default=True)
    status: AuctionTimerStatus = Field(default=AuctionTimerStatus.ACTIVE)

    expired_at: Optional[datetime] = Field(
        default=None, sa_column=Column(TIMESTAMP(timezone=True), nullable=True)
    )
    cancelled_at: Optional[datetime] = Field(
        default=None, sa_column=Column(TIMESTAMP(timezone=True), nullable=True)
    )

    __table_args__ = (
        # at most one running countdown per listing
        Index(
            "uix_active_timer_per_listing",
            "listing_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )
