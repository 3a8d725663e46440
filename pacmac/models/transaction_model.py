import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import TIMESTAMP, Column
from sqlmodel import Field, SQLModel

from pacmac.core.ids import new_id
from pacmac.models.enums.dispute import DisputeDecision
from pacmac.models.enums.transaction_status import TransactionStatus


def _timestamp_column() -> Column:
    return Column(TIMESTAMP(timezone=True), nullable=True)


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: uuid.UUID = Field(default_factory=new_id, primary_key=True)

    # Foreign keys
    listing_id: int = Field(foreign_key="listings.id", index=True)
    buyer_id: int = Field(foreign_key="users.id", index=True)
    seller_id: int = Field(foreign_key="users.id", index=True)

    # Money. Written once at creation and never updated afterwards, so the
    # transaction settles at the fee configuration it was created with.
    currency: str = Field(default="usd", max_length=3)
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    flat_fee: Decimal = Field(max_digits=10, decimal_places=2)
    percentage_rate: Decimal = Field(max_digits=6, decimal_places=4)
    percentage_fee: Decimal = Field(max_digits=10, decimal_places=2)
    total_fee: Decimal = Field(max_digits=10, decimal_places=2)
    total_charge: Decimal = Field(max_digits=10, decimal_places=2)
    total_charge_minor_units: int
    seller_payout: Decimal = Field(max_digits=10, decimal_places=2)
    payment_intent_id: str = Field(max_length=255, index=True)

    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)
    # bumped by every conditional update
    version: int = Field(default=1)
    status_before_dispute: Optional[TransactionStatus] = None

    # handoff verification
    proximity_verified: bool = Field(default=False)
    proximity_distance_meters: Optional[float] = None
    proximity_verified_by: Optional[int] = Field(default=None, foreign_key="users.id")
    proximity_verified_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )

    buyer_latitude: Optional[float] = None
    buyer_longitude: Optional[float] = None
    buyer_location_accuracy: Optional[float] = None
    buyer_location_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )
    seller_latitude: Optional[float] = None
    seller_longitude: Optional[float] = None
    seller_location_accuracy: Optional[float] = None
    seller_location_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )

    buyer_confirmed: bool = Field(default=False)
    buyer_confirmed_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )
    seller_confirmed: bool = Field(default=False)
    seller_confirmed_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )

    # dispute outcome
    resolution_decision: Optional[DisputeDecision] = None
    refund_amount: Optional[Decimal] = Field(
        default=None, max_digits=10, decimal_places=2
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
    paid_at: Optional[datetime] = Field(default=None, sa_column=_timestamp_column())
    delivered_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )
    disputed_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )
    refunded_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )
    # when the seller payout may be released, see FundHoldPolicy
    funds_release_at: Optional[datetime] = Field(
        default=None, sa_column=_timestamp_column()
    )


class TransactionEvent(SQLModel, table=True):
    """Append-only audit trail of transaction status changes."""

    __tablename__ = "transaction_events"

    id: uuid.UUID = Field(default_factory=new_id, primary_key=True)
    transaction_id: uuid.UUID = Field(foreign_key="transactions.id", index=True)
    from_status: Optional[TransactionStatus] = None
    to_status: TransactionStatus
    actor_id: Optional[int] = Field(default=None, foreign_key="users.id")
    note: Optional[str] = Field(default=None, max_length=1000)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
