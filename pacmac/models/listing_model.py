from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import TIMESTAMP, Column, func
from sqlmodel import Field, Relationship

from pacmac.models.enums.listing_status import ListingStatus
from pacmac.schemas.listing_schema import ListingBase

if TYPE_CHECKING:
    from .user_model import User


class Listing(ListingBase, table=True):
    __tablename__ = "listings"
    id: int = Field(default=None, primary_key=True)
    seller_id: int = Field(foreign_key="users.id", index=True)
    listing_status: ListingStatus = Field(default=ListingStatus.ACTIVE)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    updated_at: Optional[datetime] = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(
            TIMESTAMP(timezone=True),
            nullable=True,
            server_default=func.now(),
            onupdate=func.now(),
        ),
    )

    # Relationships
    seller: Optional["User"] = Relationship(back_populates="posted_listings")
