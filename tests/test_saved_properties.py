"""
tests/test_saved_properties.py
Tests for student bookmarks.
"""

import uuid

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_save_and_list(client: AsyncClient, student: User, make_property):
    prop = await make_property()
    headers = auth_headers(student)

    response = await client.post(f"/saved-properties/{prop.id}", headers=headers)
    assert response.status_code == 201

    response = await client.get("/saved-properties", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["property"]["id"] == str(prop.id)
    assert data[0]["saved_at"]


@pytest.mark.asyncio
async def test_save_twice_conflicts(client: AsyncClient, student: User, make_property):
    prop = await make_property()
    headers = auth_headers(student)
    await client.post(f"/saved-properties/{prop.id}", headers=headers)

    response = await client.post(f"/saved-properties/{prop.id}", headers=headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_save_missing_property(client: AsyncClient, student: User):
    response = await client.post(f"/saved-properties/{uuid.uuid4()}", headers=auth_headers(student))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_saved_lists_are_private(
    client: AsyncClient,
    student: User,
    other_student: User,
    make_property,
):
    prop = await make_property()
    await client.post(f"/saved-properties/{prop.id}", headers=auth_headers(student))

    response = await client.get("/saved-properties", headers=auth_headers(other_student))
    assert response.json() == []


@pytest.mark.asyncio
async def test_unsave(client: AsyncClient, student: User, make_property):
    prop = await make_property()
    headers = auth_headers(student)
    await client.post(f"/saved-properties/{prop.id}", headers=headers)

    response = await client.delete(f"/saved-properties/{prop.id}", headers=headers)
    assert response.status_code == 200

    response = await client.delete(f"/saved-properties/{prop.id}", headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_landlord_cannot_save(client: AsyncClient, landlord: User, make_property):
    prop = await make_property()
    response = await client.post(f"/saved-properties/{prop.id}", headers=auth_headers(landlord))
    assert response.status_code == 403
