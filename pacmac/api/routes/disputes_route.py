import uuid

from fastapi import APIRouter, Depends, status

from pacmac.api.dependencies import get_current_user, is_staff
from pacmac.core.exceptions import PermissionDenied
from pacmac.models.dispute_model import Dispute
from pacmac.models.enums.dispute import DisputeStatus
from pacmac.models.user_model import User
from pacmac.schemas.dispute_schema import (
    DisputeCreate,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputeRead,
    DisputeResolve,
    DisputeReview,
)
from pacmac.services.dispute.dispute_service import DisputeService

router = APIRouter(tags=["Disputes"])


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    if not is_staff(current_user):
        raise PermissionDenied("Only staff can do this.")
    return current_user


async def get_visible_dispute(
    dispute_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
) -> Dispute:
    dispute = await disputes.get_dispute(dispute_id)
    if not is_staff(current_user):
        tx = await disputes.transactions.get_transaction(dispute.transaction_id)
        disputes.transactions.party_of(tx, current_user.id)
    return dispute


@router.post(
    "/transactions/{transaction_id}/disputes",
    response_model=DisputeRead,
    status_code=status.HTTP_201_CREATED,
    summary="Open a dispute",
    description="Freezes the transaction until staff resolve the dispute.",
)
async def open_dispute(
    *,
    transaction_id: uuid.UUID,
    dispute: DisputeCreate,
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    opened = await disputes.open_dispute(
        transaction_id,
        current_user.id,
        dispute.reason,
        dispute.description,
        dispute.priority,
    )
    return await disputes.to_read(opened)


@router.get(
    "/disputes",
    response_model=list[DisputeRead],
    summary="List disputes",
    description="Staff see every dispute, other users only disputes on their own transactions. Most urgent first.",
)
async def list_disputes(
    *,
    transaction_id: uuid.UUID | None = None,
    dispute_status: DisputeStatus | None = None,
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    staff = is_staff(current_user)
    result = await disputes.list_disputes(
        transaction_id=transaction_id,
        status=dispute_status,
        user_id=None if staff else current_user.id,
    )
    return [await disputes.to_read(d, include_internal=staff) for d in result]


@router.get(
    "/disputes/{dispute_id}",
    response_model=DisputeRead,
    summary="Get dispute by ID",
)
async def get_dispute(
    *,
    dispute: Dispute = Depends(get_visible_dispute),
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    return await disputes.to_read(dispute, include_internal=is_staff(current_user))


@router.post(
    "/disputes/{dispute_id}/review",
    response_model=DisputeRead,
    summary="Start reviewing a dispute",
)
async def start_review(
    *,
    dispute_id: uuid.UUID,
    review: DisputeReview | None = None,
    staff: User = Depends(require_staff),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    assignee_id = staff.id
    if review is not None and review.assignee_id is not None:
        assignee_id = review.assignee_id

    dispute = await disputes.start_review(dispute_id, assignee_id)
    return await disputes.to_read(dispute, include_internal=True)


@router.post(
    "/disputes/{dispute_id}/escalate",
    response_model=DisputeRead,
    summary="Escalate a dispute",
)
async def escalate_dispute(
    *,
    dispute: Dispute = Depends(get_visible_dispute),
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    dispute = await disputes.escalate(dispute.id)
    return await disputes.to_read(dispute, include_internal=is_staff(current_user))


@router.post(
    "/disputes/{dispute_id}/messages",
    response_model=DisputeMessageRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add a message to the dispute thread",
)
async def add_message(
    *,
    dispute_id: uuid.UUID,
    message: DisputeMessageCreate,
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    return await disputes.add_message(
        dispute_id,
        current_user.id,
        message.message,
        is_internal=message.is_internal,
        sender_is_staff=is_staff(current_user),
    )


@router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=DisputeRead,
    summary="Resolve a dispute",
    description="Records the decision and moves the transaction to completed or refunded.",
)
async def resolve_dispute(
    *,
    dispute_id: uuid.UUID,
    resolution: DisputeResolve,
    staff: User = Depends(require_staff),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    dispute = await disputes.resolve_dispute(
        dispute_id,
        resolution.decision,
        resolution.amount,
        resolution.reason,
        staff.id,
    )
    return await disputes.to_read(dispute, include_internal=True)


@router.post(
    "/disputes/{dispute_id}/close",
    response_model=DisputeRead,
    summary="Close a resolved dispute",
)
async def close_dispute(
    *,
    dispute: Dispute = Depends(get_visible_dispute),
    current_user: User = Depends(get_current_user),
    disputes: DisputeService = Depends(DisputeService.get_dependency),
):
    dispute = await disputes.close_dispute(dispute.id)
    return await disputes.to_read(dispute, include_internal=is_staff(current_user))
