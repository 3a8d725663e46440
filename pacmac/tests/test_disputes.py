import os

os.environ["TESTING"] = "1"

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from fastapi import status
from httpx import AsyncClient

from pacmac.core.exceptions import (
    DisputeAlreadyOpen,
    InvalidTransition,
    PermissionDenied,
    TransactionNotFound,
    ValidationError,
)
from pacmac.models.enums.dispute import (
    DisputeDecision,
    DisputePriority,
    DisputeReason,
    DisputeStatus,
)
from pacmac.models.enums.transaction_status import TransactionStatus
from pacmac.models.listing_model import Listing
from pacmac.schemas.location_schema import LocationSample
from pacmac.services.dispute.dispute_service import DisputeService
from pacmac.services.transaction.transaction_service import TransactionService
from pacmac.tests.conftest import as_user


@pytest.fixture
def transactions(session, gateway, event_bus, clock) -> TransactionService:
    return TransactionService(session, gateway, event_bus=event_bus, clock=clock)


@pytest.fixture
def disputes(session, transactions, event_bus, clock) -> DisputeService:
    return DisputeService(session, transactions, event_bus=event_bus, clock=clock)


@pytest_asyncio.fixture
async def paid_tx(transactions, listing, buyer):
    tx, _ = await transactions.create_transaction(listing.id, buyer.id)
    return await transactions.confirm_payment(tx.id, buyer.id)


async def complete(transactions, clock, tx, buyer, seller):
    for user, lat in ((seller, 48.1487), (buyer, 48.1486)):
        await transactions.record_location(
            tx.id,
            user.id,
            LocationSample(latitude=lat, longitude=17.1077, accuracy=5, timestamp=clock()),
        )
    await transactions.verify_proximity(tx.id, buyer.id)
    await transactions.confirm_completion(tx.id, buyer.id)
    return await transactions.confirm_completion(tx.id, seller.id)


async def open_dispute(disputes, tx, buyer, reason=DisputeReason.ITEM_NOT_RECEIVED):
    return await disputes.open_dispute(tx.id, buyer.id, reason, "Seller never showed up.")


@pytest.mark.asyncio
async def test_opening_a_dispute_freezes_the_transaction(
    disputes, transactions, paid_tx, buyer, recorder
):
    dispute = await open_dispute(disputes, paid_tx, buyer)

    assert dispute.status == DisputeStatus.OPEN
    assert dispute.priority == DisputePriority.MEDIUM
    tx = await transactions.get_transaction(paid_tx.id)
    assert tx.status == TransactionStatus.DISPUTED
    assert tx.status_before_dispute == TransactionStatus.PAID
    assert recorder.names[-2:] == ["dispute.opened", "transaction.disputed"]

    # no progression while the dispute is open
    with pytest.raises(InvalidTransition):
        await transactions.verify_proximity(tx.id, buyer.id)


@pytest.mark.asyncio
async def test_second_open_dispute_is_rejected(disputes, paid_tx, buyer, seller):
    first = await open_dispute(disputes, paid_tx, buyer)

    with pytest.raises(DisputeAlreadyOpen) as exc_info:
        await open_dispute(disputes, paid_tx, seller, DisputeReason.BUYER_NO_SHOW)
    assert exc_info.value.dispute_id == first.id


@pytest.mark.asyncio
async def test_dispute_on_unknown_transaction(disputes, buyer):
    with pytest.raises(TransactionNotFound):
        await disputes.open_dispute(
            uuid.uuid4(), buyer.id, DisputeReason.OTHER, "Where is it?"
        )


@pytest.mark.asyncio
async def test_only_parties_open_disputes(disputes, paid_tx, stranger):
    with pytest.raises(PermissionDenied):
        await open_dispute(disputes, paid_tx, stranger)


@pytest.mark.asyncio
async def test_resolution_requires_review(disputes, paid_tx, buyer, staff):
    dispute = await open_dispute(disputes, paid_tx, buyer)

    with pytest.raises(InvalidTransition):
        await disputes.resolve_dispute(
            dispute.id, DisputeDecision.BUYER_FAVOR, None, "No show.", staff.id
        )


@pytest.mark.asyncio
async def test_buyer_favor_refunds_the_charge(
    disputes, transactions, paid_tx, buyer, staff, recorder
):
    dispute = await open_dispute(disputes, paid_tx, buyer)
    dispute = await disputes.start_review(dispute.id, staff.id)
    assert dispute.status == DisputeStatus.UNDER_REVIEW
    assert dispute.assignee_id == staff.id

    dispute = await disputes.resolve_dispute(
        dispute.id, DisputeDecision.BUYER_FAVOR, None, "Seller did not show.", staff.id
    )

    assert dispute.status == DisputeStatus.RESOLVED
    assert dispute.decision == DisputeDecision.BUYER_FAVOR
    assert dispute.resolved_by == staff.id
    tx = await transactions.get_transaction(paid_tx.id)
    assert tx.status == TransactionStatus.REFUNDED
    assert tx.refund_amount == Decimal("54.50")
    assert tx.resolution_decision == DisputeDecision.BUYER_FAVOR
    assert recorder.names[-2:] == ["dispute.resolved", "transaction.refunded"]


@pytest.mark.asyncio
async def test_seller_favor_completes(disputes, transactions, paid_tx, buyer, staff):
    dispute = await open_dispute(disputes, paid_tx, buyer)
    await disputes.start_review(dispute.id, staff.id)

    await disputes.resolve_dispute(
        dispute.id, DisputeDecision.SELLER_FAVOR, None, "Handoff happened.", staff.id
    )

    tx = await transactions.get_transaction(paid_tx.id)
    assert tx.status == TransactionStatus.COMPLETED
    assert tx.completed_at is not None
    assert tx.funds_release_at is not None


@pytest.mark.asyncio
async def test_partial_refund_amount_is_bounded(
    disputes, transactions, paid_tx, buyer, staff
):
    dispute = await open_dispute(disputes, paid_tx, buyer, DisputeReason.DAMAGED_ITEM)
    await disputes.start_review(dispute.id, staff.id)

    for amount in (None, Decimal("50.00"), Decimal("75.00")):
        with pytest.raises(ValidationError):
            await disputes.resolve_dispute(
                dispute.id, DisputeDecision.PARTIAL_REFUND, amount, "Scratched.", staff.id
            )

    await disputes.resolve_dispute(
        dispute.id, DisputeDecision.PARTIAL_REFUND, Decimal("15.00"), "Scratched.", staff.id
    )
    tx = await transactions.get_transaction(paid_tx.id)
    assert tx.status == TransactionStatus.REFUNDED
    assert tx.refund_amount == Decimal("15.00")


@pytest.mark.asyncio
async def test_dispute_before_payment_refunds_nothing(
    disputes, transactions, listing, buyer, staff
):
    tx, _ = await transactions.create_transaction(listing.id, buyer.id)
    dispute = await open_dispute(disputes, tx, buyer, DisputeReason.PAYMENT_ISSUE)
    await disputes.start_review(dispute.id, staff.id)
    await disputes.resolve_dispute(
        dispute.id, DisputeDecision.BUYER_FAVOR, None, "Never charged.", staff.id
    )

    tx = await transactions.get_transaction(tx.id)
    assert tx.status == TransactionStatus.REFUNDED
    assert tx.refund_amount == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "decision",
    [DisputeDecision.SELLER_FAVOR, DisputeDecision.NO_FAULT, DisputeDecision.PARTIAL_REFUND],
)
async def test_unpaid_transaction_cannot_settle_for_the_seller(
    disputes, transactions, listing, buyer, staff, recorder, decision
):
    tx, _ = await transactions.create_transaction(listing.id, buyer.id)
    tx_id = tx.id
    dispute = await open_dispute(disputes, tx, buyer, DisputeReason.PAYMENT_ISSUE)
    dispute_id = dispute.id
    await disputes.start_review(dispute_id, staff.id)

    with pytest.raises(ValidationError) as exc_info:
        await disputes.resolve_dispute(
            dispute_id, decision, Decimal("10.00"), "Handoff went fine.", staff.id
        )
    assert exc_info.value.field == "decision"

    tx = await transactions.get_transaction(tx_id)
    assert tx.status == TransactionStatus.DISPUTED
    assert tx.completed_at is None
    assert tx.funds_release_at is None
    assert "transaction.completed" not in recorder.names

    dispute = await disputes.get_dispute(dispute_id)
    assert dispute.status == DisputeStatus.UNDER_REVIEW


@pytest.mark.asyncio
async def test_escalation_raises_priority(disputes, paid_tx, buyer, staff):
    dispute = await open_dispute(disputes, paid_tx, buyer)

    dispute = await disputes.escalate(dispute.id)
    assert dispute.status == DisputeStatus.ESCALATED
    assert dispute.priority == DisputePriority.URGENT

    with pytest.raises(InvalidTransition):
        await disputes.escalate(dispute.id)

    dispute = await disputes.start_review(dispute.id, staff.id)
    assert dispute.status == DisputeStatus.UNDER_REVIEW


@pytest.mark.asyncio
async def test_close_is_idempotent_and_blocks_messages(
    disputes, paid_tx, buyer, staff, recorder
):
    dispute = await open_dispute(disputes, paid_tx, buyer)

    with pytest.raises(InvalidTransition):
        await disputes.close_dispute(dispute.id)

    await disputes.start_review(dispute.id, staff.id)
    await disputes.resolve_dispute(
        dispute.id, DisputeDecision.NO_FAULT, None, "Misunderstanding.", staff.id
    )
    # messages are still allowed on resolved disputes
    await disputes.add_message(dispute.id, buyer.id, "Thanks.")

    closed = await disputes.close_dispute(dispute.id)
    again = await disputes.close_dispute(dispute.id)
    assert closed.status == again.status == DisputeStatus.CLOSED
    assert recorder.names.count("dispute.closed") == 1

    with pytest.raises(InvalidTransition):
        await disputes.add_message(dispute.id, buyer.id, "One more thing")


@pytest.mark.asyncio
async def test_message_thread(disputes, clock, paid_tx, buyer, seller, stranger, staff):
    dispute = await open_dispute(disputes, paid_tx, buyer)

    await disputes.add_message(dispute.id, buyer.id, "I waited an hour.")
    clock.advance(seconds=1)
    await disputes.add_message(dispute.id, seller.id, "I was there.")
    clock.advance(seconds=1)
    await disputes.add_message(
        dispute.id, staff.id, "Check the GPS logs.", is_internal=True, sender_is_staff=True
    )

    with pytest.raises(PermissionDenied):
        await disputes.add_message(dispute.id, stranger.id, "Hello")
    with pytest.raises(PermissionDenied):
        await disputes.add_message(dispute.id, buyer.id, "Secret", is_internal=True)

    public = await disputes.get_messages(dispute.id)
    everything = await disputes.get_messages(dispute.id, include_internal=True)
    assert [m.sender_id for m in public] == [buyer.id, seller.id]
    assert len(everything) == 3


@pytest.mark.asyncio
async def test_completed_transaction_within_window(
    disputes, transactions, clock, paid_tx, buyer, seller
):
    tx = await complete(transactions, clock, paid_tx, buyer, seller)
    assert tx.status == TransactionStatus.COMPLETED

    clock.advance(days=6)
    dispute = await open_dispute(disputes, tx, buyer, DisputeReason.ITEM_NOT_AS_DESCRIBED)
    assert dispute.status == DisputeStatus.OPEN

    tx = await transactions.get_transaction(tx.id)
    assert tx.status_before_dispute == TransactionStatus.COMPLETED


@pytest.mark.asyncio
async def test_completed_transaction_after_window(
    disputes, transactions, clock, paid_tx, buyer, seller
):
    tx = await complete(transactions, clock, paid_tx, buyer, seller)
    tx_id = tx.id

    clock.advance(days=8)
    with pytest.raises(InvalidTransition):
        await open_dispute(disputes, tx, buyer, DisputeReason.ITEM_NOT_AS_DESCRIBED)

    assert await disputes.list_disputes(transaction_id=tx_id) == []


@pytest.mark.asyncio
async def test_refunded_transaction_cannot_be_disputed_again(
    disputes, paid_tx, buyer, staff
):
    dispute = await open_dispute(disputes, paid_tx, buyer)
    await disputes.start_review(dispute.id, staff.id)
    await disputes.resolve_dispute(
        dispute.id, DisputeDecision.BUYER_FAVOR, None, "Refund.", staff.id
    )

    with pytest.raises(InvalidTransition):
        await open_dispute(disputes, paid_tx, buyer)


@pytest.mark.asyncio
async def test_disputes_are_listed_by_priority(
    disputes, transactions, session, seller, buyer, clock
):
    opened = []
    for priority in (DisputePriority.LOW, DisputePriority.HIGH, DisputePriority.MEDIUM):
        listing = Listing(
            title=f"{priority.value} item",
            description="Item",
            price=Decimal("10.00"),
            seller_id=seller.id,
        )
        session.add(listing)
        await session.commit()
        tx, _ = await transactions.create_transaction(listing.id, buyer.id)
        clock.advance(minutes=1)
        opened.append(
            await disputes.open_dispute(
                tx.id, buyer.id, DisputeReason.OTHER, "Problem.", priority
            )
        )

    listed = await disputes.list_disputes()
    assert [d.priority for d in listed] == [
        DisputePriority.HIGH,
        DisputePriority.MEDIUM,
        DisputePriority.LOW,
    ]
    assert await disputes.list_disputes(user_id=seller.id) == listed
    assert len(await disputes.list_disputes(status=DisputeStatus.OPEN)) == 3


@pytest.mark.asyncio
async def test_dispute_to_refund_over_the_api(
    async_client: AsyncClient, listing, seller, buyer, staff, recorded_events
):
    response = await async_client.post(
        f"/listings/{listing.id}/purchase", headers=as_user(buyer)
    )
    tx_id = response.json()["transaction"]["id"]
    response = await async_client.post(
        f"/transactions/{tx_id}/confirm-payment", headers=as_user(buyer)
    )
    assert response.json()["status"] == "paid"

    response = await async_client.post(
        f"/transactions/{tx_id}/disputes",
        json={"reason": "item_not_received", "description": "Seller never came."},
        headers=as_user(buyer),
    )
    assert response.status_code == status.HTTP_201_CREATED
    dispute = response.json()
    assert dispute["status"] == "open"

    response = await async_client.get(f"/transactions/{tx_id}", headers=as_user(buyer))
    assert response.json()["status"] == "disputed"

    response = await async_client.post(
        f"/transactions/{tx_id}/disputes",
        json={"reason": "other", "description": "Again."},
        headers=as_user(seller),
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "dispute_already_open"

    # only staff review and resolve
    response = await async_client.post(
        f"/disputes/{dispute['id']}/review", headers=as_user(buyer)
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = await async_client.post(
        f"/disputes/{dispute['id']}/resolve",
        json={"decision": "buyer_favor", "reason": "No show."},
        headers=as_user(staff),
    )
    assert response.status_code == status.HTTP_409_CONFLICT

    response = await async_client.post(
        f"/disputes/{dispute['id']}/review", headers=as_user(staff)
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "under_review"
    assert response.json()["assignee_id"] == staff.id

    response = await async_client.post(
        f"/disputes/{dispute['id']}/messages",
        json={"message": "Seller confirmed they missed the meeting.", "is_internal": True},
        headers=as_user(staff),
    )
    assert response.status_code == status.HTTP_201_CREATED

    response = await async_client.post(
        f"/disputes/{dispute['id']}/resolve",
        json={"decision": "buyer_favor", "reason": "Seller did not show."},
        headers=as_user(staff),
    )
    assert response.status_code == status.HTTP_200_OK
    resolved = response.json()
    assert resolved["status"] == "resolved"
    assert resolved["resolution"]["decision"] == "buyer_favor"
    assert resolved["resolution"]["resolved_by"] == staff.id

    response = await async_client.get(f"/transactions/{tx_id}", headers=as_user(buyer))
    assert response.json()["status"] == "refunded"
    assert Decimal(response.json()["refund_amount"]) == Decimal("54.50")

    # the buyer does not see staff notes
    response = await async_client.get(
        f"/disputes/{dispute['id']}", headers=as_user(buyer)
    )
    assert response.json()["messages"] == []

    response = await async_client.post(
        f"/disputes/{dispute['id']}/close", headers=as_user(buyer)
    )
    assert response.json()["status"] == "closed"
    response = await async_client.post(
        f"/disputes/{dispute['id']}/close", headers=as_user(buyer)
    )
    assert response.status_code == status.HTTP_200_OK

    assert "dispute.opened" in recorded_events.names
    assert "transaction.refunded" in recorded_events.names


@pytest.mark.asyncio
async def test_invalid_partial_refund_over_the_api(
    async_client: AsyncClient, listing, buyer, staff
):
    response = await async_client.post(
        f"/listings/{listing.id}/purchase", headers=as_user(buyer)
    )
    tx_id = response.json()["transaction"]["id"]
    response = await async_client.post(
        f"/transactions/{tx_id}/disputes",
        json={"reason": "damaged_item", "description": "Cracked screen."},
        headers=as_user(buyer),
    )
    dispute_id = response.json()["id"]
    await async_client.post(f"/disputes/{dispute_id}/review", headers=as_user(staff))

    response = await async_client.post(
        f"/disputes/{dispute_id}/resolve",
        json={"decision": "partial_refund", "amount": "60.00", "reason": "Too much."},
        headers=as_user(staff),
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["field"] == "amount"
