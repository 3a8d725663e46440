from fastapi import APIRouter, Depends, status
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import desc, select

from pacmac.api.dependencies import (
    get_async_session,
    get_auction_timers,
    get_current_user,
)
from pacmac.core.exceptions import InvalidTransition, ListingNotFound, PermissionDenied
from pacmac.core.logging import get_logger
from pacmac.models.enums.listing_status import ListingStatus
from pacmac.models.listing_model import Listing
from pacmac.models.user_model import User
from pacmac.schemas.listing_schema import ListingCreate, ListingRead
from pacmac.schemas.transaction_schema import TransactionCreated, TransactionRead
from pacmac.services.auction.timer import AuctionTimerService
from pacmac.services.transaction.transaction_service import TransactionService

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/",
    response_model=ListingRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new listing",
    description="Creates an active listing owned by the current user.",
)
async def create_listing(
    *,
    new_listing_data: ListingCreate,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
):
    listing = Listing.model_validate(
        new_listing_data, update={"seller_id": current_user.id}
    )
    session.add(listing)
    await session.commit()
    await session.refresh(listing)

    logger.info("Listing %s created by user %s", listing.id, current_user.id)
    return listing


@router.get(
    "/",
    response_model=list[ListingRead],
    summary="List listings",
)
async def list_listings(
    *,
    session: AsyncSession = Depends(get_async_session),
    listing_status: ListingStatus | None = ListingStatus.ACTIVE,
    seller_id: int | None = None,
):
    query = select(Listing)
    if listing_status is not None:
        query = query.where(Listing.listing_status == listing_status)
    if seller_id is not None:
        query = query.where(Listing.seller_id == seller_id)

    result = await session.execute(query.order_by(desc(Listing.created_at)))
    return result.scalars().all()


@router.get(
    "/{listing_id}",
    response_model=ListingRead,
    summary="Get listing by ID",
)
async def get_listing(
    *,
    listing_id: int,
    session: AsyncSession = Depends(get_async_session),
):
    listing = await session.get(Listing, listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)
    return listing


@router.delete(
    "/{listing_id}",
    response_model=ListingRead,
    summary="Remove a listing",
    description="Marks an active listing as removed and stops its auction, if any.",
)
async def remove_listing(
    *,
    listing_id: int,
    session: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user),
    timers: AuctionTimerService = Depends(get_auction_timers),
):
    listing = await session.get(Listing, listing_id)
    if listing is None:
        raise ListingNotFound(listing_id)
    if listing.seller_id != current_user.id:
        raise PermissionDenied("Only the seller can remove this listing.")
    current_status = listing.listing_status

    result = await session.execute(
        update(Listing)
        .where(
            Listing.id == listing_id,
            Listing.listing_status == ListingStatus.ACTIVE,
        )
        .values(listing_status=ListingStatus.REMOVED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise InvalidTransition(current_status, ListingStatus.REMOVED)
    await session.commit()

    await timers.cancel_timer(listing_id)
    return await session.get(Listing, listing_id, populate_existing=True)


@router.post(
    "/{listing_id}/purchase",
    response_model=TransactionCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Buy a listing at its price",
    description="Opens an escrow transaction and returns the payment intent to confirm on the client.",
)
async def purchase_listing(
    *,
    listing_id: int,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
    timers: AuctionTimerService = Depends(get_auction_timers),
):
    tx, intent = await transactions.create_transaction(listing_id, current_user.id)

    # a direct purchase ends any running auction
    await timers.cancel_timer(listing_id)

    return TransactionCreated(
        transaction=TransactionRead.from_transaction(tx),
        payment_intent_id=intent.intent_id,
        client_secret=intent.client_secret,
    )
