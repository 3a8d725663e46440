from datetime import datetime
from decimal import Decimal

from pydantic import ConfigDict
from sqlmodel import Field, SQLModel

from pacmac.models.enums.listing_status import ListingStatus


# Basic schema for listing data
class ListingBase(SQLModel):
    title: str = Field(max_length=255)
    description: str = Field(max_length=5000)
    price: Decimal = Field(max_digits=10, decimal_places=2, gt=0)
    category: str | None = Field(default=None, max_length=255)
    location_label: str | None = Field(default=None, max_length=255)


# schema for listing creation
class ListingCreate(ListingBase):
    model_config = ConfigDict(extra="forbid")


class ListingRead(ListingBase):
    id: int
    seller_id: int
    listing_status: ListingStatus
    created_at: datetime
    updated_at: datetime | None = None
