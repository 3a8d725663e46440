import os

os.environ["TESTING"] = "1"

from decimal import Decimal

import pytest
from faker import Faker
from fastapi import status
from httpx import AsyncClient

from pacmac.models.enums.listing_status import ListingStatus
from pacmac.tests.conftest import as_user

fake = Faker()


def listing_payload(price="150.00") -> dict:
    return {
        "title": fake.sentence(nb_words=4),
        "description": fake.text(max_nb_chars=300),
        "price": price,
        "category": "electronics",
        "location_label": fake.city(),
    }


@pytest.mark.asyncio
async def test_create_listing(async_client: AsyncClient, seller):
    payload = listing_payload()
    response = await async_client.post("/listings/", json=payload, headers=as_user(seller))
    assert response.status_code == status.HTTP_201_CREATED

    data = response.json()
    assert data["title"] == payload["title"]
    assert data["description"] == payload["description"]
    assert data["price"] == payload["price"]
    assert data["seller_id"] == seller.id
    assert data["listing_status"] == ListingStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_create_listing_rejects_non_positive_price(async_client: AsyncClient, seller):
    response = await async_client.post(
        "/listings/", json=listing_payload(price="0"), headers=as_user(seller)
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_get_listing_by_id(async_client: AsyncClient, listing):
    response = await async_client.get(f"/listings/{listing.id}")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["id"] == listing.id

    response = await async_client.get("/listings/9999")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["error"] == "not_found"


@pytest.mark.asyncio
async def test_remove_listing(async_client: AsyncClient, listing, seller, buyer):
    response = await async_client.delete(f"/listings/{listing.id}", headers=as_user(buyer))
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = await async_client.delete(f"/listings/{listing.id}", headers=as_user(seller))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["listing_status"] == ListingStatus.REMOVED.value

    response = await async_client.get("/listings/")
    assert response.json() == []

    # removed listings cannot be bought
    response = await async_client.post(
        f"/listings/{listing.id}/purchase", headers=as_user(buyer)
    )
    assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_remove_listing_twice(async_client: AsyncClient, listing, seller):
    listing_id = listing.id

    response = await async_client.delete(f"/listings/{listing_id}", headers=as_user(seller))
    assert response.status_code == status.HTTP_200_OK

    response = await async_client.delete(f"/listings/{listing_id}", headers=as_user(seller))
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "invalid_transition"


@pytest.mark.asyncio
async def test_auction_over_the_api(async_client: AsyncClient, listing, seller, buyer, clock):
    response = await async_client.post(
        f"/listings/{listing.id}/auction",
        json={"duration_seconds": 600},
        headers=as_user(seller),
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["is_active"] is True
    assert response.json()["time_left_seconds"] == 600

    response = await async_client.post(
        f"/listings/{listing.id}/bids", json={"amount": "55.00"}, headers=as_user(buyer)
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["bidder_id"] == buyer.id

    response = await async_client.post(
        f"/listings/{listing.id}/bids", json={"amount": "55.01"}, headers=as_user(buyer)
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["field"] == "amount"

    clock.advance(seconds=120)
    response = await async_client.get(f"/listings/{listing.id}/auction")
    state = response.json()
    assert state["time_left_seconds"] == 480
    assert Decimal(state["highest_bid"]) == Decimal("55.00")
    assert state["bid_count"] == 1

    response = await async_client.get(f"/listings/{listing.id}/bids")
    assert len(response.json()) == 1

    response = await async_client.delete(
        f"/listings/{listing.id}/auction", headers=as_user(seller)
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["is_active"] is False
    assert response.json()["status"] == "cancelled"

    # cancelling again changes nothing
    response = await async_client.delete(
        f"/listings/{listing.id}/auction", headers=as_user(seller)
    )
    assert response.status_code == status.HTTP_200_OK

    response = await async_client.post(
        f"/listings/{listing.id}/bids", json={"amount": "60.00"}, headers=as_user(buyer)
    )
    assert response.status_code == status.HTTP_409_CONFLICT


@pytest.mark.asyncio
async def test_auction_defaults_to_configured_duration(
    async_client: AsyncClient, listing, seller
):
    response = await async_client.post(
        f"/listings/{listing.id}/auction", headers=as_user(seller)
    )
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["time_left_seconds"] == 24 * 60 * 60
