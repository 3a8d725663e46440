import uuid
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from pacmac.models.enums.dispute import DisputeDecision
from pacmac.models.enums.transaction_status import TransactionStatus
from pacmac.schemas.location_schema import LocationSample, LocationSnapshot

if TYPE_CHECKING:
    from pacmac.models.transaction_model import Transaction


class CompletionConfirmed(BaseModel):
    buyer: bool
    seller: bool


def _snapshot(latitude, longitude, accuracy, at) -> LocationSnapshot | None:
    if latitude is None or longitude is None or at is None:
        return None
    return LocationSnapshot(
        latitude=latitude, longitude=longitude, accuracy=accuracy, timestamp=at
    )


class TransactionRead(BaseModel):
    id: uuid.UUID
    listing_id: int
    buyer_id: int
    seller_id: int
    currency: str

    # money, frozen when the transaction is created
    amount: Decimal
    flat_fee: Decimal
    percentage_rate: Decimal
    percentage_fee: Decimal
    total_fee: Decimal
    total_amount: Decimal
    seller_payout: Decimal

    status: TransactionStatus
    proximity_verified: bool
    proximity_distance_meters: float | None = None
    completion_confirmed: CompletionConfirmed
    # last fix each party shared for the handoff
    buyer_location: LocationSnapshot | None = None
    seller_location: LocationSnapshot | None = None

    resolution_decision: DisputeDecision | None = None
    refund_amount: Decimal | None = None

    created_at: datetime
    paid_at: datetime | None = None
    delivered_at: datetime | None = None
    completed_at: datetime | None = None
    disputed_at: datetime | None = None
    refunded_at: datetime | None = None
    funds_release_at: datetime | None = None

    @classmethod
    def from_transaction(cls, tx: "Transaction") -> "TransactionRead":
        return cls(
            id=tx.id,
            listing_id=tx.listing_id,
            buyer_id=tx.buyer_id,
            seller_id=tx.seller_id,
            currency=tx.currency,
            amount=tx.amount,
            flat_fee=tx.flat_fee,
            percentage_rate=tx.percentage_rate,
            percentage_fee=tx.percentage_fee,
            total_fee=tx.total_fee,
            total_amount=tx.total_charge,
            seller_payout=tx.seller_payout,
            status=tx.status,
            proximity_verified=tx.proximity_verified,
            proximity_distance_meters=tx.proximity_distance_meters,
            completion_confirmed=CompletionConfirmed(
                buyer=tx.buyer_confirmed, seller=tx.seller_confirmed
            ),
            buyer_location=_snapshot(
                tx.buyer_latitude,
                tx.buyer_longitude,
                tx.buyer_location_accuracy,
                tx.buyer_location_at,
            ),
            seller_location=_snapshot(
                tx.seller_latitude,
                tx.seller_longitude,
                tx.seller_location_accuracy,
                tx.seller_location_at,
            ),
            resolution_decision=tx.resolution_decision,
            refund_amount=tx.refund_amount,
            created_at=tx.created_at,
            paid_at=tx.paid_at,
            delivered_at=tx.delivered_at,
            completed_at=tx.completed_at,
            disputed_at=tx.disputed_at,
            refunded_at=tx.refunded_at,
            funds_release_at=tx.funds_release_at,
        )


class TransactionCreated(BaseModel):
    transaction: TransactionRead
    payment_intent_id: str
    # handed to the client to confirm the charge, never stored
    client_secret: str | None = None


class ProximityStatus(StrEnum):
    VERIFIED = "verified"
    OUT_OF_RANGE = "out_of_range"
    MISSING_LOCATION = "missing_location"
    STALE_LOCATION = "stale_location"


class ProximityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    location: LocationSample | None = None


class ProximityCheck(BaseModel):
    status: ProximityStatus
    within_range: bool
    distance_meters: float | None = None


class ProximityCheckResponse(ProximityCheck):
    transaction: TransactionRead


class TransactionEventRead(BaseModel):
    id: uuid.UUID
    from_status: TransactionStatus | None = None
    to_status: TransactionStatus
    actor_id: int | None = None
    note: str | None = None
    created_at: datetime
