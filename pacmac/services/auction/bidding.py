import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from fastapi import Depends
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from pacmac.api.dependencies import get_async_session, get_auction_timers, get_clock
from pacmac.core.clock import Clock, utcnow
from pacmac.core.config import config
from pacmac.core.exceptions import (
    InvalidTransition,
    ListingNotFound,
    PacmacError,
    PermissionDenied,
    ValidationError,
)
from pacmac.core.logging import get_logger
from pacmac.models.auction_timer_model import AuctionTimer
from pacmac.models.bid_model import Bid
from pacmac.models.enums.listing_status import ListingStatus
from pacmac.models.listing_model import Listing
from pacmac.schemas.auction_schema import AuctionState
from pacmac.services import events as ev
from pacmac.services.auction.timer import AuctionTimerService
from pacmac.services.events import EventBus, events
from pacmac.services.payments.gateway import PaymentGateway
from pacmac.services.transaction.transaction_service import TransactionService

logger = get_logger(__name__)


async def highest_bid_for(session: AsyncSession, timer_id: uuid.UUID) -> Optional[Bid]:
    # derived on every read, bids are never cached on the listing
    result = await session.execute(
        select(Bid)
        .where(Bid.auction_timer_id == timer_id)
        .order_by(Bid.amount.desc(), Bid.created_at)
        .limit(1)
    )
    return result.scalars().first()


class BiddingService:
    def __init__(
        self,
        session: AsyncSession,
        timers: AuctionTimerService,
        event_bus: EventBus = events,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.timers = timers
        self.events = event_bus
        self.clock = clock

    async def _get_listing(self, listing_id: int) -> Listing:
        listing = await self.session.get(Listing, listing_id)
        if listing is None:
            raise ListingNotFound(listing_id)
        return listing

    async def get_highest_bid(self, listing_id: int) -> Optional[Bid]:
        """Highest bid of the listing's latest auction run."""
        timer = await self.timers.get_timer(listing_id)
        if timer is None:
            return None
        return await highest_bid_for(self.session, timer.id)

    async def list_bids(self, listing_id: int) -> list[Bid]:
        await self._get_listing(listing_id)
        timer = await self.timers.get_timer(listing_id)
        if timer is None:
            return []
        result = await self.session.execute(
            select(Bid).where(Bid.auction_timer_id == timer.id).order_by(Bid.created_at)
        )
        return result.scalars().all()

    async def auction_state(self, listing_id: int) -> AuctionState:
        await self._get_listing(listing_id)
        timer: Optional[AuctionTimer] = await self.timers.get_timer(listing_id)
        if timer is None:
            return AuctionState(listing_id=listing_id, is_active=False, time_left_seconds=0)

        highest = await highest_bid_for(self.session, timer.id)
        bid_count = await self.session.execute(
            select(func.count()).select_from(Bid).where(Bid.auction_timer_id == timer.id)
        )

        return AuctionState(
            listing_id=listing_id,
            status=timer.status,
            is_active=await self.timers.is_active(listing_id),
            time_left_seconds=await self.timers.time_left(listing_id),
            start_time=timer.start_time,
            end_time=timer.end_time,
            highest_bid=highest.amount if highest else None,
            bid_count=bid_count.scalar_one(),
        )

    async def start_auction(
        self,
        listing_id: int,
        seller_id: int,
        duration: Optional[timedelta] = None,
    ) -> AuctionTimer:
        """
        Opens bidding on an active listing. Restarting an auction replaces the
        running countdown.
        """
        listing = await self._get_listing(listing_id)
        if listing.seller_id != seller_id:
            raise PermissionDenied("Only the seller can start an auction for this listing.")
        if listing.listing_status != ListingStatus.ACTIVE:
            raise InvalidTransition(
                listing.listing_status,
                ListingStatus.ACTIVE,
                f"Listing {listing_id} is not active.",
            )

        if duration is None:
            duration = timedelta(seconds=config.default_auction_duration_seconds)
        timer = await self.timers.start_timer(listing_id, duration)

        await self.events.publish(
            ev.AUCTION_STARTED,
            {
                "listing_id": listing_id,
                "seller_id": seller_id,
                "end_time": timer.end_time.isoformat(),
            },
        )
        return timer

    async def place_bid(self, listing_id: int, bidder_id: int, amount: Decimal) -> Bid:
        """
        Appends a bid. It has to beat the listing's starting price and the
        current highest bid by at least the minimum increment.
        """
        listing = await self._get_listing(listing_id)
        if listing.seller_id == bidder_id:
            raise PermissionDenied("Sellers cannot bid on their own listing.")
        timer = await self.timers.get_timer(listing_id)
        if (
            listing.listing_status != ListingStatus.ACTIVE
            or timer is None
            or not timer.is_active
            or not await self.timers.is_active(listing_id)
        ):
            raise InvalidTransition(
                "closed", "bid", f"Bidding is not open for listing {listing_id}."
            )

        amount = Decimal(amount)
        if amount < listing.price:
            raise ValidationError(
                f"Bid must be at least the starting price of {listing.price}.",
                field="amount",
            )
        highest = await highest_bid_for(self.session, timer.id)
        if highest is not None:
            minimum = highest.amount + config.minimum_bid_increment
            if amount < minimum:
                raise ValidationError(f"Bid must be at least {minimum}.", field="amount")

        bid = Bid(
            listing_id=listing_id,
            auction_timer_id=timer.id,
            bidder_id=bidder_id,
            amount=amount,
            created_at=self.clock(),
        )
        self.session.add(bid)
        await self.session.commit()
        await self.session.refresh(bid)

        logger.info("Bid %s on listing %s by user %s", amount, listing_id, bidder_id)
        await self.events.publish(
            ev.BID_PLACED,
            {
                "listing_id": listing_id,
                "seller_id": listing.seller_id,
                "bidder_id": bidder_id,
                "amount": str(amount),
            },
        )
        return bid

    async def cancel_auction(self, listing_id: int, seller_id: int) -> bool:
        """Stops bidding. Cancelling twice is the same as cancelling once."""
        listing = await self._get_listing(listing_id)
        if listing.seller_id != seller_id:
            raise PermissionDenied("Only the seller can cancel this auction.")

        cancelled = await self.timers.cancel_timer(listing_id)
        if cancelled:
            await self.events.publish(
                ev.AUCTION_CANCELLED,
                {"listing_id": listing_id, "seller_id": seller_id},
            )
        return cancelled

    @classmethod
    async def get_dependency(
        cls,
        session: AsyncSession = Depends(get_async_session),
        timers: AuctionTimerService = Depends(get_auction_timers),
        clock: Clock = Depends(get_clock),
    ) -> "BiddingService":
        return cls(session, timers, clock=clock)


class AuctionSettlement:
    """
    Timer listener that closes an auction: announces the end and opens an
    escrow transaction for the highest bidder.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        event_bus: EventBus = events,
        clock: Clock = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.events = event_bus
        self.clock = clock

    async def __call__(self, timer: AuctionTimer) -> None:
        async with self.session_factory() as session:
            listing = await session.get(Listing, timer.listing_id)
            winning_bid = await highest_bid_for(session, timer.id)

            await self.events.publish(
                ev.AUCTION_ENDED,
                {
                    "listing_id": timer.listing_id,
                    "seller_id": listing.seller_id if listing else None,
                    "winner_id": winning_bid.bidder_id if winning_bid else None,
                    "amount": str(winning_bid.amount) if winning_bid else None,
                },
            )
            if winning_bid is None:
                logger.info("Auction for listing %s ended without bids", timer.listing_id)
                return

            service = TransactionService(
                session, self.gateway, event_bus=self.events, clock=self.clock
            )
            try:
                tx, _ = await service.create_transaction(
                    timer.listing_id, winning_bid.bidder_id, winning_bid.amount
                )
            except PacmacError as e:
                logger.warning(
                    "Could not settle auction for listing %s: %s", timer.listing_id, e
                )
                return

            logger.info(
                "Auction for listing %s settled as transaction %s", timer.listing_id, tx.id
            )
