import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Literal, Optional

from fastapi import Depends
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from pacmac.api.dependencies import get_async_session, get_clock, get_payment_gateway
from pacmac.core.clock import Clock, as_utc, utcnow
from pacmac.core.config import config
from pacmac.core.exceptions import (
    ExternalServiceError,
    InvalidTransition,
    ListingNotFound,
    PaymentNotConfirmed,
    PermissionDenied,
    TransactionNotFound,
)
from pacmac.core.logging import get_logger
from pacmac.models.enums.dispute import DisputeDecision
from pacmac.models.enums.listing_status import ListingStatus
from pacmac.models.enums.transaction_status import TransactionStatus
from pacmac.models.listing_model import Listing
from pacmac.models.transaction_model import Transaction, TransactionEvent
from pacmac.schemas.location_schema import Coordinates, LocationSample
from pacmac.schemas.transaction_schema import ProximityCheck, ProximityStatus
from pacmac.services import events as ev
from pacmac.services.escrow.fees import calculate_escrow_fees
from pacmac.services.events import EventBus, events
from pacmac.services.payments.gateway import PAYMENT_SUCCEEDED, PaymentGateway, PaymentIntent
from pacmac.services.proximity import verify_proximity
from pacmac.services.transaction.fund_hold import FundHoldPolicy
from pacmac.services.transaction.state_machine import (
    compare_and_set,
    ensure_transition,
)

logger = get_logger(__name__)

Party = Literal["buyer", "seller"]

# tolerated clock difference between a device and the server
LOCATION_CLOCK_SKEW = timedelta(seconds=30)

SELLER_WINS = frozenset({DisputeDecision.SELLER_FAVOR, DisputeDecision.NO_FAULT})


def event_payload(tx: Transaction) -> dict:
    return {
        "transaction_id": str(tx.id),
        "listing_id": tx.listing_id,
        "buyer_id": tx.buyer_id,
        "seller_id": tx.seller_id,
        "status": tx.status.value,
        "amount": str(tx.amount),
    }


class TransactionService:
    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        event_bus: EventBus = events,
        clock: Clock = utcnow,
        fund_hold: Optional[FundHoldPolicy] = None,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.events = event_bus
        self.clock = clock
        self.fund_hold = fund_hold or FundHoldPolicy.from_settings()

    async def get_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        tx = await self.session.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFound(transaction_id)
        return tx

    async def list_transactions(
        self,
        user_id: int,
        status: Optional[TransactionStatus] = None,
    ) -> list[Transaction]:
        """
        Returns transactions where the user is the buyer or the seller, newest first.
        """
        query = select(Transaction).where(
            or_(Transaction.buyer_id == user_id, Transaction.seller_id == user_id)
        )
        if status is not None:
            query = query.where(Transaction.status == status)
        query = query.order_by(Transaction.created_at.desc())

        result = await self.session.execute(query)
        return result.scalars().all()

    async def get_history(self, transaction_id: uuid.UUID) -> list[TransactionEvent]:
        await self.get_transaction(transaction_id)
        result = await self.session.execute(
            select(TransactionEvent)
            .where(TransactionEvent.transaction_id == transaction_id)
            .order_by(TransactionEvent.created_at)
        )
        return result.scalars().all()

    def party_of(self, tx: Transaction, user_id: int) -> Party:
        if user_id == tx.buyer_id:
            return "buyer"
        if user_id == tx.seller_id:
            return "seller"
        raise PermissionDenied("Only the buyer or the seller can act on this transaction.")

    async def create_transaction(
        self,
        listing_id: int,
        buyer_id: int,
        amount: Optional[Decimal] = None,
    ) -> tuple[Transaction, PaymentIntent]:
        """
        Creates a pending transaction for a listing and issues the payment intent
        for the total charge. Used for direct purchases and for auction winners.

        :param amount: Agreed price, defaults to the listing price.
        :raises ListingNotFound: If the listing does not exist.
        :raises InvalidTransition: If the listing is no longer active.
        :raises InvalidAmount: If the amount cannot be charged.
        :raises ExternalServiceError: If the processor refused to create the intent.
        """
        listing = await self.session.get(Listing, listing_id)
        if listing is None:
            raise ListingNotFound(listing_id)
        if listing.seller_id == buyer_id:
            raise PermissionDenied("Sellers cannot buy their own listing.")
        if listing.listing_status != ListingStatus.ACTIVE:
            raise InvalidTransition(
                listing.listing_status,
                ListingStatus.SOLD,
                f"Listing {listing_id} is not available.",
            )

        fees = calculate_escrow_fees(listing.price if amount is None else amount)

        # claim the listing so a second buyer cannot purchase it concurrently
        claimed = await self.session.execute(
            update(Listing)
            .where(
                Listing.id == listing_id,
                Listing.listing_status == ListingStatus.ACTIVE,
            )
            .values(listing_status=ListingStatus.SOLD)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.session.rollback()
            raise InvalidTransition(
                ListingStatus.SOLD,
                ListingStatus.SOLD,
                f"Listing {listing_id} is not available.",
            )

        tx = Transaction(
            listing_id=listing.id,
            buyer_id=buyer_id,
            seller_id=listing.seller_id,
            currency=config.currency,
            amount=fees.price,
            flat_fee=fees.flat_fee,
            percentage_rate=fees.percentage_rate,
            percentage_fee=fees.percentage_fee,
            total_fee=fees.total_fee,
            total_charge=fees.total_charge,
            total_charge_minor_units=fees.total_charge_minor_units,
            seller_payout=fees.seller_payout,
            payment_intent_id="",
            created_at=self.clock(),
        )

        try:
            intent = await self.gateway.create_payment_intent(
                fees.total_charge_minor_units,
                config.currency,
                {
                    "transaction_id": tx.id,
                    "listing_id": listing.id,
                    "buyer_id": buyer_id,
                    "seller_id": listing.seller_id,
                    "item_price": fees.price,
                    "escrow_fee": fees.total_fee,
                    "seller_amount": fees.seller_payout,
                    "type": "escrow_payment",
                },
            )
        except ExternalServiceError:
            await self.session.rollback()
            raise

        tx.payment_intent_id = intent.intent_id
        self.session.add(tx)
        self.session.add(
            TransactionEvent(
                transaction_id=tx.id,
                from_status=None,
                to_status=TransactionStatus.PENDING,
                actor_id=buyer_id,
            )
        )
        await self.session.commit()
        await self.session.refresh(tx)

        logger.info(
            "Transaction %s created for listing %s: charge %s (fee %s)",
            tx.id,
            listing.id,
            tx.total_charge,
            tx.total_fee,
        )
        await self.events.publish(ev.TRANSACTION_CREATED, event_payload(tx))
        return tx, intent

    async def confirm_payment(
        self, transaction_id: uuid.UUID, actor_id: Optional[int] = None
    ) -> Transaction:
        """
        Moves a pending transaction to paid after the processor reports the
        payment intent as succeeded. Whatever the client claims is ignored.

        :raises InvalidTransition: If the transaction is not pending.
        :raises PaymentNotConfirmed: If the processor has not captured the payment.
        :raises ExternalServiceError: If the processor could not be reached.
        """
        tx = await self.get_transaction(transaction_id)
        if actor_id is not None:
            self.party_of(tx, actor_id)
        ensure_transition(tx.status, TransactionStatus.PAID)

        try:
            processor_status = await self.gateway.get_payment_intent_status(
                tx.payment_intent_id
            )
        except ExternalServiceError:
            logger.warning(
                "Payment status unknown for transaction %s, left pending", tx.id
            )
            raise

        if processor_status != PAYMENT_SUCCEEDED:
            logger.warning(
                "Transaction %s payment intent %s is '%s', not marking paid",
                tx.id,
                tx.payment_intent_id,
                processor_status,
            )
            raise PaymentNotConfirmed(processor_status)

        tx = await compare_and_set(
            self.session,
            tx,
            {"paid_at": self.clock()},
            target=TransactionStatus.PAID,
            actor_id=actor_id,
        )
        await self.session.commit()

        logger.info("Transaction %s paid", tx.id)
        await self.events.publish(ev.TRANSACTION_PAID, event_payload(tx))
        return tx

    def _location_values(self, party: Party, sample: LocationSample) -> dict:
        return {
            f"{party}_latitude": float(sample.latitude),
            f"{party}_longitude": float(sample.longitude),
            f"{party}_location_accuracy": sample.accuracy,
            f"{party}_location_at": as_utc(sample.timestamp),
        }

    async def record_location(
        self,
        transaction_id: uuid.UUID,
        user_id: int,
        sample: LocationSample,
    ) -> Transaction:
        """
        Stores the caller's location fix on the transaction for the handoff check.
        """
        tx = await self.get_transaction(transaction_id)
        party = self.party_of(tx, user_id)
        if tx.status != TransactionStatus.PAID:
            raise InvalidTransition(
                tx.status,
                TransactionStatus.DELIVERED_PENDING_CONFIRMATION,
                "Locations can only be shared while the handoff is pending.",
            )

        tx = await compare_and_set(self.session, tx, self._location_values(party, sample))
        await self.session.commit()
        return tx

    def _fix_is_fresh(self, at, accuracy: Optional[float]) -> bool:
        now = self.clock()
        at = as_utc(at)
        if at > now + LOCATION_CLOCK_SKEW:
            return False
        if now - at > timedelta(seconds=config.location_max_age_seconds):
            return False
        if accuracy is not None and accuracy > config.location_max_accuracy_meters:
            return False
        return True

    def check_handoff(self, tx: Transaction) -> ProximityCheck:
        """
        Compares the stored buyer and seller fixes. A missing or stale fix is
        reported as not verified and never reaches the distance calculation.
        """
        buyer_at, seller_at = tx.buyer_location_at, tx.seller_location_at
        if (
            buyer_at is None
            or seller_at is None
            or tx.buyer_latitude is None
            or tx.seller_latitude is None
        ):
            return ProximityCheck(status=ProximityStatus.MISSING_LOCATION, within_range=False)

        if not (
            self._fix_is_fresh(buyer_at, tx.buyer_location_accuracy)
            and self._fix_is_fresh(seller_at, tx.seller_location_accuracy)
        ):
            return ProximityCheck(status=ProximityStatus.STALE_LOCATION, within_range=False)

        result = verify_proximity(
            Coordinates(latitude=tx.buyer_latitude, longitude=tx.buyer_longitude),
            Coordinates(latitude=tx.seller_latitude, longitude=tx.seller_longitude),
            radius_meters=config.proximity_radius_meters,
        )
        return ProximityCheck(
            status=(
                ProximityStatus.VERIFIED
                if result.within_range
                else ProximityStatus.OUT_OF_RANGE
            ),
            within_range=result.within_range,
            distance_meters=result.distance_meters,
        )

    async def verify_proximity(
        self,
        transaction_id: uuid.UUID,
        user_id: int,
        sample: Optional[LocationSample] = None,
    ) -> tuple[Transaction, ProximityCheck]:
        """
        Runs the handoff proximity check on behalf of either party, optionally
        storing a fresh fix for the caller first. A within-range result moves
        the transaction to delivered_pending_confirmation.
        """
        tx = await self.get_transaction(transaction_id)
        party = self.party_of(tx, user_id)
        if tx.status != TransactionStatus.PAID:
            raise InvalidTransition(
                tx.status, TransactionStatus.DELIVERED_PENDING_CONFIRMATION
            )

        if sample is not None:
            tx = await compare_and_set(
                self.session, tx, self._location_values(party, sample)
            )

        check = self.check_handoff(tx)
        if check.within_range:
            now = self.clock()
            tx = await compare_and_set(
                self.session,
                tx,
                {
                    "proximity_verified": True,
                    "proximity_distance_meters": check.distance_meters,
                    "proximity_verified_by": user_id,
                    "proximity_verified_at": now,
                    "delivered_at": now,
                },
                target=TransactionStatus.DELIVERED_PENDING_CONFIRMATION,
                actor_id=user_id,
                note=f"{party} verified handoff at {check.distance_meters:.1f} m",
            )
        elif check.distance_meters is not None:
            tx = await compare_and_set(
                self.session, tx, {"proximity_distance_meters": check.distance_meters}
            )
        await self.session.commit()

        logger.info(
            "Proximity check for transaction %s by %s: %s", tx.id, party, check.status
        )
        if check.within_range:
            await self.events.publish(ev.TRANSACTION_DELIVERED, event_payload(tx))
        return tx, check

    async def _completion_values(self, tx: Transaction, completed_at) -> dict:
        result = await self.session.execute(
            select(func.count())
            .select_from(Transaction)
            .where(
                Transaction.seller_id == tx.seller_id,
                Transaction.status == TransactionStatus.COMPLETED,
                Transaction.id != tx.id,
            )
        )
        completed_sales = result.scalar_one()
        hold = self.fund_hold.hold_for(completed_sales)
        return {
            "completed_at": completed_at,
            "funds_release_at": as_utc(completed_at) + hold,
        }

    async def confirm_completion(
        self, transaction_id: uuid.UUID, user_id: int
    ) -> Transaction:
        """
        Records the caller's completion confirmation. The transaction completes
        only once both the buyer and the seller have confirmed.
        """
        tx = await self.get_transaction(transaction_id)
        party = self.party_of(tx, user_id)
        if tx.status != TransactionStatus.DELIVERED_PENDING_CONFIRMATION:
            raise InvalidTransition(tx.status, TransactionStatus.COMPLETED)
        if getattr(tx, f"{party}_confirmed"):
            raise InvalidTransition(
                tx.status,
                TransactionStatus.COMPLETED,
                f"The {party} has already confirmed completion.",
            )

        now = self.clock()
        values = {f"{party}_confirmed": True, f"{party}_confirmed_at": now}
        counterpart_confirmed = (
            tx.seller_confirmed if party == "buyer" else tx.buyer_confirmed
        )

        if counterpart_confirmed:
            values.update(await self._completion_values(tx, now))
            tx = await compare_and_set(
                self.session,
                tx,
                values,
                target=TransactionStatus.COMPLETED,
                actor_id=user_id,
            )
        else:
            tx = await compare_and_set(self.session, tx, values)
        await self.session.commit()

        if tx.status == TransactionStatus.COMPLETED:
            logger.info("Transaction %s completed", tx.id)
            await self.events.publish(ev.TRANSACTION_COMPLETED, event_payload(tx))
        return tx

    async def complete_transaction(
        self, transaction_id: uuid.UUID, actor_id: Optional[int] = None
    ) -> Transaction:
        """
        Explicitly completes a delivered transaction.

        :raises InvalidTransition: Unless both parties have confirmed completion.
        """
        tx = await self.get_transaction(transaction_id)
        if tx.status != TransactionStatus.DELIVERED_PENDING_CONFIRMATION:
            raise InvalidTransition(tx.status, TransactionStatus.COMPLETED)
        if not (tx.buyer_confirmed and tx.seller_confirmed):
            raise InvalidTransition(
                tx.status,
                TransactionStatus.COMPLETED,
                "Both the buyer and the seller must confirm completion.",
            )

        values = await self._completion_values(tx, self.clock())
        tx = await compare_and_set(
            self.session,
            tx,
            values,
            target=TransactionStatus.COMPLETED,
            actor_id=actor_id,
        )
        await self.session.commit()

        logger.info("Transaction %s completed", tx.id)
        await self.events.publish(ev.TRANSACTION_COMPLETED, event_payload(tx))
        return tx

    async def mark_disputed(
        self,
        tx: Transaction,
        actor_id: int,
        note: Optional[str] = None,
    ) -> Transaction:
        """
        Freezes the transaction in disputed. Completed transactions can only be
        reopened within the configured dispute window. The caller commits.
        """
        now = self.clock()
        if tx.status == TransactionStatus.COMPLETED:
            window = timedelta(days=config.dispute_window_days)
            if tx.completed_at is None or as_utc(tx.completed_at) + window < now:
                raise InvalidTransition(
                    tx.status,
                    TransactionStatus.DISPUTED,
                    "The dispute window for this transaction has closed.",
                )

        return await compare_and_set(
            self.session,
            tx,
            {"status_before_dispute": tx.status, "disputed_at": now},
            target=TransactionStatus.DISPUTED,
            actor_id=actor_id,
            note=note,
        )

    async def apply_resolution(
        self,
        tx: Transaction,
        decision: DisputeDecision,
        refund_amount: Optional[Decimal],
        actor_id: int,
    ) -> Transaction:
        """
        Unfreezes a disputed transaction according to the dispute decision.
        seller_favor and no_fault complete it, buyer_favor and partial_refund
        refund it. The caller commits.
        """
        now = self.clock()
        values = {"resolution_decision": decision}

        if decision in SELLER_WINS:
            target = TransactionStatus.COMPLETED
            if tx.completed_at is not None:
                values["completed_at"] = tx.completed_at
                values["funds_release_at"] = tx.funds_release_at
            else:
                values.update(await self._completion_values(tx, now))
        else:
            target = TransactionStatus.REFUNDED
            values["refunded_at"] = now
            if decision == DisputeDecision.PARTIAL_REFUND:
                values["refund_amount"] = refund_amount
            elif tx.paid_at is not None:
                values["refund_amount"] = tx.total_charge
            else:
                # nothing was captured
                values["refund_amount"] = Decimal("0.00")

        return await compare_and_set(
            self.session,
            tx,
            values,
            target=target,
            actor_id=actor_id,
            note=f"dispute resolved: {decision.value}",
        )

    @classmethod
    async def get_dependency(
        cls,
        session: AsyncSession = Depends(get_async_session),
        gateway: PaymentGateway = Depends(get_payment_gateway),
        clock: Clock = Depends(get_clock),
    ) -> "TransactionService":
        return cls(session, gateway, clock=clock)
