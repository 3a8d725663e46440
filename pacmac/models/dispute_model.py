import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import TIMESTAMP, Column, func
from sqlmodel import Field, SQLModel

from pacmac.core.ids import new_id
from pacmac.models.enums.dispute import (
    DisputeDecision,
    DisputePriority,
    DisputeReason,
    DisputeStatus,
)


class Dispute(SQLModel, table=True):
    __tablename__ = "disputes"

    id: uuid.UUID = Field(default_factory=new_id, primary_key=True)

    # Foreign keys
    transaction_id: uuid.UUID = Field(foreign_key="transactions.id", index=True)
    initiator_id: int = Field(foreign_key="users.id")
    assignee_id: Optional[int] = Field(default=None, foreign_key="users.id")

    reason: DisputeReason
    description: str = Field(max_length=5000)
    status: DisputeStatus = Field(default=DisputeStatus.OPEN, index=True)
    priority: DisputePriority = Field(default=DisputePriority.MEDIUM)
    version: int = Field(default=1)

    # resolution
    decision: Optional[DisputeDecision] = None
    resolution_amount: Optional[Decimal] = Field(
        default=None, max_digits=10, decimal_places=2
    )
    resolution_reason: Optional[str] = Field(default=None, max_length=5000)
    resolved_by: Optional[int] = Field(default=None, foreign_key="users.id")
    resolved_at: Optional[datetime] = Field(
        default=None, sa_column=Column(TIMESTAMP(timezone=True), nullable=True)
    )

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


class DisputeMessage(SQLModel, table=True):
    __tablename__ = "dispute_messages"

    id: uuid.UUID = Field(default_factory=new_id, primary_key=True)
    dispute_id: uuid.UUID = Field(foreign_key="disputes.id", index=True)
    sender_id: int = Field(foreign_key="users.id")
    message: str = Field(max_length=5000)
    # staff-only notes
    is_internal: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(TIMESTAMP(timezone=True), nullable=False),
    )
