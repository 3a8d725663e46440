import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from pacmac.models.enums.dispute import (
    DisputeDecision,
    DisputePriority,
    DisputeReason,
    DisputeStatus,
)


class DisputeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    reason: DisputeReason
    description: str = Field(min_length=1, max_length=5000)
    priority: DisputePriority = DisputePriority.MEDIUM


class DisputeReview(BaseModel):
    model_config = ConfigDict(extra="forbid")
    # defaults to the staff member starting the review
    assignee_id: int | None = None


class DisputeMessageCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")
    message: str = Field(min_length=1, max_length=5000)
    is_internal: bool = False


class DisputeMessageRead(BaseModel):
    id: uuid.UUID
    sender_id: int
    message: str
    is_internal: bool
    created_at: datetime


class DisputeResolve(BaseModel):
    model_config = ConfigDict(extra="forbid")
    decision: DisputeDecision
    amount: Decimal | None = Field(
        default=None, max_digits=10, decimal_places=2, gt=0
    )
    reason: str = Field(min_length=1, max_length=5000)


class DisputeResolution(BaseModel):
    decision: DisputeDecision
    amount: Decimal | None = None
    reason: str
    resolved_by: int
    resolved_at: datetime


class DisputeRead(BaseModel):
    id: uuid.UUID
    transaction_id: uuid.UUID
    initiator_id: int
    reason: DisputeReason
    description: str
    status: DisputeStatus
    priority: DisputePriority
    assignee_id: int | None = None
    resolution: DisputeResolution | None = None
    messages: list[DisputeMessageRead] = []
    created_at: datetime
    updated_at: datetime | None = None
