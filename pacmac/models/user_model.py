from typing import TYPE_CHECKING, List

from sqlmodel import Field, Relationship

from pacmac.schemas.user_schema import UserBase

if TYPE_CHECKING:
    from .listing_model import Listing


class User(UserBase, table=True):
    __tablename__ = "users"

    id: int = Field(default=None, primary_key=True)

    # Relationships
    posted_listings: List["Listing"] = Relationship(back_populates="seller")
