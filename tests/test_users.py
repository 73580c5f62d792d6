"""
tests/test_users.py
Tests for profile read and update.
"""

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_get_my_profile(client: AsyncClient, student: User):
    response = await client.get("/users/me", headers=auth_headers(student))
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == str(student.id)
    assert data["name"] == "Sam Student"
    assert data["role"] == "student"


@pytest.mark.asyncio
async def test_update_profile_fields(client: AsyncClient, student: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(student),
        json={
            "name": "Samira Student",
            "phone": "+447700900123",
            "avatar_url": "https://cdn.example.com/avatars/sam.png",
        },
    )
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "Samira Student"
    assert data["phone"] == "+447700900123"
    assert data["avatar_url"] == "https://cdn.example.com/avatars/sam.png"


@pytest.mark.asyncio
async def test_update_profile_ignores_role_and_email(client: AsyncClient, student: User):
    """Fields outside the update schema are dropped, not applied."""
    response = await client.put(
        "/users/me",
        headers=auth_headers(student),
        json={"role": "admin", "email": "hijack@example.com"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "student"
    assert data["email"] == "student@example.com"


@pytest.mark.asyncio
async def test_update_profile_invalid_phone(client: AsyncClient, student: User):
    response = await client.put(
        "/users/me",
        headers=auth_headers(student),
        json={"phone": "not-a-number"},
    )
    assert response.status_code == 400
    assert response.json()["details"][0]["field"] == "phone"


@pytest.mark.asyncio
async def test_profile_requires_auth(client: AsyncClient):
    response = await client.put("/users/me", json={"name": "Nobody"})
    assert response.status_code == 401
