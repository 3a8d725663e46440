import uuid
from decimal import Decimal
from typing import Optional

from fastapi import Depends
from sqlalchemy import case, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from pacmac.api.dependencies import get_async_session, get_clock, get_payment_gateway
from pacmac.core.clock import Clock, utcnow
from pacmac.core.exceptions import (
    DisputeAlreadyOpen,
    DisputeNotFound,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from pacmac.core.logging import get_logger
from pacmac.models.dispute_model import Dispute, DisputeMessage
from pacmac.models.enums.dispute import (
    DisputeDecision,
    DisputePriority,
    DisputeReason,
    DisputeStatus,
)
from pacmac.models.enums.transaction_status import TransactionStatus
from pacmac.models.transaction_model import Transaction
from pacmac.schemas.dispute_schema import (
    DisputeMessageRead,
    DisputeRead,
    DisputeResolution,
)
from pacmac.services import events as ev
from pacmac.services.events import EventBus, events
from pacmac.services.payments.gateway import PaymentGateway
from pacmac.services.transaction.transaction_service import (
    TransactionService,
    event_payload,
)

logger = get_logger(__name__)

# a transaction may carry only one of these at a time
UNRESOLVED_STATUSES = (
    DisputeStatus.OPEN,
    DisputeStatus.UNDER_REVIEW,
    DisputeStatus.ESCALATED,
)

PRIORITY_ORDER = {
    DisputePriority.URGENT: 4,
    DisputePriority.HIGH: 3,
    DisputePriority.MEDIUM: 2,
    DisputePriority.LOW: 1,
}


def dispute_payload(dispute: Dispute, tx: Optional[Transaction] = None) -> dict:
    payload = {
        "dispute_id": str(dispute.id),
        "transaction_id": str(dispute.transaction_id),
        "status": dispute.status.value,
        "reason": dispute.reason.value,
    }
    if tx is not None:
        payload["buyer_id"] = tx.buyer_id
        payload["seller_id"] = tx.seller_id
    return payload


class DisputeService:
    def __init__(
        self,
        session: AsyncSession,
        transactions: TransactionService,
        event_bus: EventBus = events,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.transactions = transactions
        self.events = event_bus
        self.clock = clock

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self.session.get(Dispute, dispute_id)
        if dispute is None:
            raise DisputeNotFound(dispute_id)
        return dispute

    async def get_messages(
        self, dispute_id: uuid.UUID, include_internal: bool = False
    ) -> list[DisputeMessage]:
        query = select(DisputeMessage).where(DisputeMessage.dispute_id == dispute_id)
        if not include_internal:
            query = query.where(DisputeMessage.is_internal == False)  # noqa: E712
        result = await self.session.execute(query.order_by(DisputeMessage.created_at))
        return result.scalars().all()

    async def to_read(self, dispute: Dispute, include_internal: bool = False) -> DisputeRead:
        messages = await self.get_messages(dispute.id, include_internal=include_internal)
        resolution = None
        if dispute.decision is not None:
            resolution = DisputeResolution(
                decision=dispute.decision,
                amount=dispute.resolution_amount,
                reason=dispute.resolution_reason,
                resolved_by=dispute.resolved_by,
                resolved_at=dispute.resolved_at,
            )
        return DisputeRead(
            id=dispute.id,
            transaction_id=dispute.transaction_id,
            initiator_id=dispute.initiator_id,
            reason=dispute.reason,
            description=dispute.description,
            status=dispute.status,
            priority=dispute.priority,
            assignee_id=dispute.assignee_id,
            resolution=resolution,
            messages=[
                DisputeMessageRead.model_validate(m, from_attributes=True)
                for m in messages
            ],
            created_at=dispute.created_at,
            updated_at=dispute.updated_at,
        )

    async def get_unresolved_dispute(self, transaction_id: uuid.UUID) -> Optional[Dispute]:
        result = await self.session.execute(
            select(Dispute).where(
                Dispute.transaction_id == transaction_id,
                Dispute.status.in_(UNRESOLVED_STATUSES),
            )
        )
        return result.scalars().first()

    async def list_disputes(
        self,
        transaction_id: Optional[uuid.UUID] = None,
        status: Optional[DisputeStatus] = None,
        user_id: Optional[int] = None,
    ) -> list[Dispute]:
        """
        Lists disputes, most urgent first and newest first within a priority.

        :param user_id: Restrict to disputes on transactions the user is a party to.
        """
        priority_rank = case(
            *[(Dispute.priority == p, rank) for p, rank in PRIORITY_ORDER.items()],
            else_=0,
        )
        query = select(Dispute)
        if transaction_id is not None:
            query = query.where(Dispute.transaction_id == transaction_id)
        if status is not None:
            query = query.where(Dispute.status == status)
        if user_id is not None:
            query = query.join(Transaction, Transaction.id == Dispute.transaction_id).where(
                or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id)
            )
        query = query.order_by(priority_rank.desc(), Dispute.created_at.desc())

        result = await self.session.execute(query)
        return result.scalars().all()

    async def _compare_and_set(
        self,
        dispute: Dispute,
        allowed_from: tuple[DisputeStatus, ...],
        target: DisputeStatus,
        values: Optional[dict] = None,
    ) -> Dispute:
        if dispute.status not in allowed_from:
            raise InvalidTransition(dispute.status, target)

        stmt = (
            update(Dispute)
            .where(
                Dispute.id == dispute.id,
                Dispute.status == dispute.status,
                Dispute.version == dispute.version,
            )
            .values(
                status=target,
                version=dispute.version + 1,
                updated_at=self.clock(),
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            fresh = await self.session.get(Dispute, dispute.id, populate_existing=True)
            raise InvalidTransition(
                fresh.status,
                target,
                f"Dispute {dispute.id} changed concurrently (now '{fresh.status.value}').",
            )
        return await self.session.get(Dispute, dispute.id, populate_existing=True)

    async def open_dispute(
        self,
        transaction_id: uuid.UUID,
        initiator_id: int,
        reason: DisputeReason,
        description: str,
        priority: DisputePriority = DisputePriority.MEDIUM,
    ) -> Dispute:
        """
        Opens a dispute and freezes the transaction in disputed.

        :raises TransactionNotFound: If the transaction does not exist.
        :raises DisputeAlreadyOpen: If the transaction already has an unresolved dispute.
        :raises InvalidTransition: If the transaction can no longer be disputed.
        """
        tx = await self.transactions.get_transaction(transaction_id)
        self.transactions.party_of(tx, initiator_id)

        existing = await self.get_unresolved_dispute(transaction_id)
        if existing is not None:
            raise DisputeAlreadyOpen(transaction_id, existing.id)

        dispute = Dispute(
            transaction_id=transaction_id,
            initiator_id=initiator_id,
            reason=reason,
            description=description,
            priority=priority,
            created_at=self.clock(),
            updated_at=self.clock(),
        )
        self.session.add(dispute)
        try:
            # losing a race here means another dispute froze the transaction first
            tx = await self.transactions.mark_disputed(
                tx, initiator_id, note=f"dispute opened: {reason.value}"
            )
        except InvalidTransition:
            await self.session.rollback()
            existing = await self.get_unresolved_dispute(transaction_id)
            if existing is not None:
                raise DisputeAlreadyOpen(transaction_id, existing.id)
            raise
        await self.session.commit()
        await self.session.refresh(dispute)

        logger.info(
            "Dispute %s opened on transaction %s (%s)", dispute.id, tx.id, reason.value
        )
        await self.events.publish(ev.DISPUTE_OPENED, dispute_payload(dispute, tx))
        await self.events.publish(ev.TRANSACTION_DISPUTED, event_payload(tx))
        return dispute

    async def start_review(
        self, dispute_id: uuid.UUID, assignee_id: int
    ) -> Dispute:
        """Assigns the dispute to staff. Disputes are only resolved from review."""
        dispute = await self.get_dispute(dispute_id)
        dispute = await self._compare_and_set(
            dispute,
            (DisputeStatus.OPEN, DisputeStatus.ESCALATED),
            DisputeStatus.UNDER_REVIEW,
            {"assignee_id": assignee_id},
        )
        await self.session.commit()

        await self.events.publish(ev.DISPUTE_UNDER_REVIEW, dispute_payload(dispute))
        return dispute

    async def escalate(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self.get_dispute(dispute_id)
        dispute = await self._compare_and_set(
            dispute,
            (DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW),
            DisputeStatus.ESCALATED,
            {"priority": DisputePriority.URGENT},
        )
        await self.session.commit()

        logger.warning("Dispute %s escalated", dispute.id)
        await self.events.publish(ev.DISPUTE_ESCALATED, dispute_payload(dispute))
        return dispute

    async def add_message(
        self,
        dispute_id: uuid.UUID,
        sender_id: int,
        message: str,
        is_internal: bool = False,
        sender_is_staff: bool = False,
    ) -> DisputeMessage:
        """
        Appends to the dispute thread. Parties and staff can write until the
        dispute is closed, internal notes are staff only.
        """
        dispute = await self.get_dispute(dispute_id)
        if dispute.status == DisputeStatus.CLOSED:
            raise InvalidTransition(
                dispute.status,
                dispute.status,
                "Messages cannot be added to a closed dispute.",
            )
        if not sender_is_staff:
            tx = await self.transactions.get_transaction(dispute.transaction_id)
            self.transactions.party_of(tx, sender_id)
            if is_internal:
                raise PermissionDenied("Only staff can add internal notes.")

        entry = DisputeMessage(
            dispute_id=dispute.id,
            sender_id=sender_id,
            message=message,
            is_internal=is_internal,
            created_at=self.clock(),
        )
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)

        if not is_internal:
            await self.events.publish(
                ev.DISPUTE_MESSAGE_ADDED,
                {**dispute_payload(dispute), "sender_id": sender_id},
            )
        return entry

    async def resolve_dispute(
        self,
        dispute_id: uuid.UUID,
        decision: DisputeDecision,
        amount: Optional[Decimal],
        reason: str,
        resolver_id: int,
    ) -> Dispute:
        """
        Records the decision and releases the frozen transaction: completed for
        seller_favor / no_fault, refunded for buyer_favor / partial_refund.

        :raises InvalidTransition: Unless the dispute is under review.
        :raises ValidationError: If a partial refund amount is missing or out of range,
            or a seller-side decision is given for a transaction that was never paid.
        """
        dispute = await self.get_dispute(dispute_id)
        if dispute.status != DisputeStatus.UNDER_REVIEW:
            raise InvalidTransition(dispute.status, DisputeStatus.RESOLVED)

        tx = await self.transactions.get_transaction(dispute.transaction_id)
        if tx.status != TransactionStatus.DISPUTED:
            raise InvalidTransition(tx.status, DisputeStatus.RESOLVED)

        # an unpaid transaction can only be called off
        if (
            tx.status_before_dispute == TransactionStatus.PENDING
            and decision != DisputeDecision.BUYER_FAVOR
        ):
            raise ValidationError(
                "This transaction was never paid and can only be resolved in the buyer's favor.",
                field="decision",
            )

        if decision == DisputeDecision.PARTIAL_REFUND:
            if amount is None or amount <= 0 or amount >= tx.amount:
                raise ValidationError(
                    f"A partial refund must be between 0 and {tx.amount}.",
                    field="amount",
                )
        else:
            amount = None

        now = self.clock()
        dispute = await self._compare_and_set(
            dispute,
            (DisputeStatus.UNDER_REVIEW,),
            DisputeStatus.RESOLVED,
            {
                "decision": decision,
                "resolution_amount": amount,
                "resolution_reason": reason,
                "resolved_by": resolver_id,
                "resolved_at": now,
            },
        )
        tx = await self.transactions.apply_resolution(tx, decision, amount, resolver_id)
        await self.session.commit()

        logger.info(
            "Dispute %s resolved (%s), transaction %s is %s",
            dispute.id,
            decision.value,
            tx.id,
            tx.status.value,
        )
        await self.events.publish(ev.DISPUTE_RESOLVED, dispute_payload(dispute, tx))
        await self.events.publish(
            ev.TRANSACTION_REFUNDED
            if tx.status == TransactionStatus.REFUNDED
            else ev.TRANSACTION_COMPLETED,
            {**event_payload(tx), "refund_amount": str(tx.refund_amount)},
        )
        return dispute

    async def close_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        """Archives a resolved dispute. Closing a closed dispute is a no-op."""
        dispute = await self.get_dispute(dispute_id)
        if dispute.status == DisputeStatus.CLOSED:
            return dispute

        try:
            dispute = await self._compare_and_set(
                dispute, (DisputeStatus.RESOLVED,), DisputeStatus.CLOSED
            )
        except InvalidTransition:
            fresh = await self.session.get(Dispute, dispute_id, populate_existing=True)
            if fresh.status == DisputeStatus.CLOSED:
                return fresh
            raise
        await self.session.commit()

        await self.events.publish(ev.DISPUTE_CLOSED, dispute_payload(dispute))
        return dispute

    @classmethod
    async def get_dependency(
        cls,
        session: AsyncSession = Depends(get_async_session),
        gateway: PaymentGateway = Depends(get_payment_gateway),
        clock: Clock = Depends(get_clock),
    ) -> "DisputeService":
        return cls(session, TransactionService(session, gateway, clock=clock), clock=clock)
