import uuid

from fastapi import APIRouter, Depends

from pacmac.api.dependencies import get_current_user, is_staff
from pacmac.models.enums.transaction_status import TransactionStatus
from pacmac.models.user_model import User
from pacmac.schemas.location_schema import LocationSample
from pacmac.schemas.transaction_schema import (
    ProximityCheckResponse,
    ProximityRequest,
    TransactionEventRead,
    TransactionRead,
)
from pacmac.services.transaction.transaction_service import TransactionService

router = APIRouter(prefix="/transactions", tags=["Transactions"])


async def get_visible_transaction(
    transaction_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    tx = await transactions.get_transaction(transaction_id)
    if not is_staff(current_user):
        transactions.party_of(tx, current_user.id)
    return tx


@router.get(
    "/",
    response_model=list[TransactionRead],
    summary="List my transactions",
    description="Transactions where the current user is the buyer or the seller, newest first.",
)
async def list_transactions(
    *,
    transaction_status: TransactionStatus | None = None,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    result = await transactions.list_transactions(current_user.id, transaction_status)
    return [TransactionRead.from_transaction(tx) for tx in result]


@router.get(
    "/{transaction_id}",
    response_model=TransactionRead,
    summary="Get transaction by ID",
)
async def get_transaction(*, tx=Depends(get_visible_transaction)):
    return TransactionRead.from_transaction(tx)


@router.get(
    "/{transaction_id}/history",
    response_model=list[TransactionEventRead],
    summary="Get the status history of a transaction",
)
async def get_transaction_history(
    *,
    tx=Depends(get_visible_transaction),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    return await transactions.get_history(tx.id)


@router.post(
    "/{transaction_id}/confirm-payment",
    response_model=TransactionRead,
    summary="Confirm payment",
    description="Checks the payment intent with the processor and marks the transaction paid if it succeeded.",
)
async def confirm_payment(
    *,
    transaction_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    tx = await transactions.confirm_payment(transaction_id, current_user.id)
    return TransactionRead.from_transaction(tx)


@router.put(
    "/{transaction_id}/location",
    response_model=TransactionRead,
    summary="Share my location for the handoff",
)
async def record_location(
    *,
    transaction_id: uuid.UUID,
    location: LocationSample,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    tx = await transactions.record_location(transaction_id, current_user.id, location)
    return TransactionRead.from_transaction(tx)


@router.post(
    "/{transaction_id}/verify-proximity",
    response_model=ProximityCheckResponse,
    summary="Verify that buyer and seller are together",
    description="Optionally shares a fresh location first. Within range, the transaction moves to delivered_pending_confirmation.",
)
async def verify_proximity(
    *,
    transaction_id: uuid.UUID,
    proximity: ProximityRequest | None = None,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    sample = proximity.location if proximity is not None else None
    tx, check = await transactions.verify_proximity(
        transaction_id, current_user.id, sample
    )
    return ProximityCheckResponse(
        **check.model_dump(), transaction=TransactionRead.from_transaction(tx)
    )


@router.post(
    "/{transaction_id}/confirm-completion",
    response_model=TransactionRead,
    summary="Confirm the handoff is complete",
    description="The transaction completes once both the buyer and the seller have confirmed.",
)
async def confirm_completion(
    *,
    transaction_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    tx = await transactions.confirm_completion(transaction_id, current_user.id)
    return TransactionRead.from_transaction(tx)


@router.post(
    "/{transaction_id}/complete",
    response_model=TransactionRead,
    summary="Complete a confirmed transaction",
)
async def complete_transaction(
    *,
    tx=Depends(get_visible_transaction),
    current_user: User = Depends(get_current_user),
    transactions: TransactionService = Depends(TransactionService.get_dependency),
):
    tx = await transactions.complete_transaction(tx.id, current_user.id)
    return TransactionRead.from_transaction(tx)
