import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import TIMESTAMP, Column
from sqlmodel import Field, SQLModel

from pacmac.core.ids import new_id


class Bid(SQLModel, table=True):
    """An offer against a listing. Rows are only ever inserted."""

    __tablename__ = "bids"

    id: uuid.UUID = Field(default_factory=new_id, primary_key=True)
    listing_id: int = Field(foreign_key="listings.id", index=True)
    # the auction run the bid was placed in
    auction_timer_id: uuid.UUID = Field(foreign_key="auction_timers.id", index=True)
    bidder_id: int = Field(foreign_key="users.id", index=True)
    amount: Decimal = Field(max_digits=10, decimal_places=2)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
