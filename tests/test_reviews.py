"""
tests/test_reviews.py
Tests for review creation, rating validation and the public review listings.
"""

import uuid

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.conftest import auth_headers


async def _review(client: AsyncClient, author: User, property_id, rating=5, comment="Lovely place"):
    return await client.post(
        "/reviews",
        headers=auth_headers(author),
        json={"property_id": str(property_id), "rating": rating, "comment": comment},
    )


@pytest.mark.asyncio
async def test_create_review_success(client: AsyncClient, student: User, make_property):
    prop = await make_property()
    response = await _review(client, student, prop.id)
    assert response.status_code == 201
    data = response.json()
    assert data["rating"] == 5
    assert data["comment"] == "Lovely place"
    assert data["student_name"] == "Sam Student"


@pytest.mark.asyncio
@pytest.mark.parametrize("rating", [0, 6])
async def test_rating_out_of_range(client: AsyncClient, student: User, make_property, rating: int):
    prop = await make_property()
    response = await _review(client, student, prop.id, rating=rating)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_one_review_per_property(client: AsyncClient, student: User, make_property):
    prop = await make_property()
    assert (await _review(client, student, prop.id)).status_code == 201

    response = await _review(client, student, prop.id, rating=1)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_review_missing_property(client: AsyncClient, student: User):
    response = await _review(client, student, uuid.uuid4())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_landlord_cannot_review(client: AsyncClient, landlord: User, make_property):
    prop = await make_property()
    response = await _review(client, landlord, prop.id)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_property_reviews_listed_publicly(
    client: AsyncClient,
    student: User,
    other_student: User,
    make_property,
):
    prop = await make_property()
    await _review(client, student, prop.id, rating=4)
    await _review(client, other_student, prop.id, rating=2)

    response = await client.get(f"/reviews/property/{prop.id}")
    assert response.status_code == 200
    data = response.json()
    assert sorted(r["rating"] for r in data) == [2, 4]
    assert {r["student_name"] for r in data} == {"Sam Student", "Alex Student"}

    detail = await client.get(f"/properties/{prop.id}")
    assert len(detail.json()["reviews"]) == 2


@pytest.mark.asyncio
async def test_property_reviews_missing_property(client: AsyncClient):
    response = await client.get(f"/reviews/property/{uuid.uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_landlord_reviews_span_listings(
    client: AsyncClient,
    student: User,
    landlord: User,
    other_landlord: User,
    make_property,
):
    first = await make_property(title="First")
    second = await make_property(title="Second")
    elsewhere = await make_property(owner=other_landlord, title="Not theirs")
    for prop in (first, second, elsewhere):
        await _review(client, student, prop.id)

    response = await client.get(f"/reviews/landlord/{landlord.id}")
    assert response.status_code == 200
    assert {r["property_id"] for r in response.json()} == {str(first.id), str(second.id)}
