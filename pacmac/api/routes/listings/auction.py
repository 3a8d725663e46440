from datetime import timedelta

from fastapi import APIRouter, Depends, status

from pacmac.api.dependencies import get_current_user
from pacmac.models.user_model import User
from pacmac.schemas.auction_schema import AuctionStart, AuctionState, BidCreate, BidRead
from pacmac.services.auction.bidding import BiddingService

router = APIRouter()


@router.post(
    "/{listing_id}/auction",
    response_model=AuctionState,
    status_code=status.HTTP_201_CREATED,
    summary="Start an auction",
    description="Starts (or restarts) the bidding countdown for a listing. Seller only.",
)
async def start_auction(
    *,
    listing_id: int,
    auction: AuctionStart | None = None,
    current_user: User = Depends(get_current_user),
    bidding: BiddingService = Depends(BiddingService.get_dependency),
):
    duration = None
    if auction is not None and auction.duration_seconds is not None:
        duration = timedelta(seconds=auction.duration_seconds)

    await bidding.start_auction(listing_id, current_user.id, duration)
    return await bidding.auction_state(listing_id)


@router.get(
    "/{listing_id}/auction",
    response_model=AuctionState,
    summary="Get auction state",
    description="Remaining time is computed from the stored end time on every request.",
)
async def get_auction(
    *,
    listing_id: int,
    bidding: BiddingService = Depends(BiddingService.get_dependency),
):
    return await bidding.auction_state(listing_id)


@router.delete(
    "/{listing_id}/auction",
    response_model=AuctionState,
    summary="Cancel an auction",
)
async def cancel_auction(
    *,
    listing_id: int,
    current_user: User = Depends(get_current_user),
    bidding: BiddingService = Depends(BiddingService.get_dependency),
):
    await bidding.cancel_auction(listing_id, current_user.id)
    return await bidding.auction_state(listing_id)


@router.post(
    "/{listing_id}/bids",
    response_model=BidRead,
    status_code=status.HTTP_201_CREATED,
    summary="Place a bid",
)
async def place_bid(
    *,
    listing_id: int,
    bid: BidCreate,
    current_user: User = Depends(get_current_user),
    bidding: BiddingService = Depends(BiddingService.get_dependency),
):
    return await bidding.place_bid(listing_id, current_user.id, bid.amount)


@router.get(
    "/{listing_id}/bids",
    response_model=list[BidRead],
    summary="List bids",
)
async def list_bids(
    *,
    listing_id: int,
    bidding: BiddingService = Depends(BiddingService.get_dependency),
):
    return await bidding.list_bids(listing_id)
