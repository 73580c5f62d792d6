"""
tests/test_chat.py
Tests for student-landlord messaging and conversation listing.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Conversation, User
from tests.conftest import auth_headers


async def _send(client: AsyncClient, sender: User, recipient_id, content="Is the room still free?"):
    return await client.post(
        "/chat/messages",
        headers=auth_headers(sender),
        json={"recipient_id": str(recipient_id), "content": content},
    )


@pytest.mark.asyncio
async def test_first_message_starts_conversation(
    client: AsyncClient,
    student: User,
    landlord: User,
):
    response = await _send(client, student, landlord.id)
    assert response.status_code == 201
    data = response.json()
    assert data["sender_id"] == str(student.id)
    assert data["receiver_id"] == str(landlord.id)
    assert data["conversation_id"]


@pytest.mark.asyncio
async def test_one_conversation_per_pair(
    client: AsyncClient,
    student: User,
    landlord: User,
    db: AsyncSession,
):
    first = (await _send(client, student, landlord.id)).json()
    reply = (await _send(client, landlord, student.id, "Yes, come by tomorrow")).json()
    assert first["conversation_id"] == reply["conversation_id"]

    count = await db.scalar(select(func.count()).select_from(Conversation))
    assert count == 1

    response = await client.get(
        "/chat/messages",
        headers=auth_headers(student),
        params={"conversation_id": first["conversation_id"]},
    )
    assert response.status_code == 200
    assert [m["content"] for m in response.json()] == [
        "Is the room still free?",
        "Yes, come by tomorrow",
    ]


@pytest.mark.asyncio
async def test_cannot_message_yourself(client: AsyncClient, student: User):
    response = await _send(client, student, student.id)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_students_cannot_message_each_other(
    client: AsyncClient,
    student: User,
    other_student: User,
):
    response = await _send(client, student, other_student.id)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_message_unknown_recipient(client: AsyncClient, student: User):
    response = await _send(client, student, uuid.uuid4())
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_blank_message_rejected(client: AsyncClient, student: User, landlord: User):
    response = await _send(client, student, landlord.id, content="   ")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_non_participant_cannot_read(
    client: AsyncClient,
    student: User,
    other_student: User,
    landlord: User,
):
    conversation_id = (await _send(client, student, landlord.id)).json()["conversation_id"]

    response = await client.get(
        "/chat/messages",
        headers=auth_headers(other_student),
        params={"conversation_id": conversation_id},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_conversation_looks_forbidden(client: AsyncClient, student: User):
    response = await client.get(
        "/chat/messages",
        headers=auth_headers(student),
        params={"conversation_id": str(uuid.uuid4())},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_conversation_list_shows_other_party_and_preview(
    client: AsyncClient,
    student: User,
    landlord: User,
    other_landlord: User,
):
    await _send(client, student, landlord.id, "Hello first landlord")
    await _send(client, landlord, student.id, "Hi there")
    await _send(client, student, other_landlord.id, "Hello second landlord")

    response = await client.get("/chat/conversations", headers=auth_headers(student))
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 2

    by_party = {c["other_party"]["id"]: c for c in data}
    assert by_party[str(landlord.id)]["last_message"]["content"] == "Hi there"
    assert by_party[str(other_landlord.id)]["last_message"]["content"] == "Hello second landlord"

    # Landlord only sees their own conversation
    response = await client.get("/chat/conversations", headers=auth_headers(landlord))
    data = response.json()
    assert len(data) == 1
    assert data[0]["other_party"]["id"] == str(student.id)


@pytest.mark.asyncio
async def test_conversations_ordered_by_latest_activity(
    client: AsyncClient,
    student: User,
    landlord: User,
    other_landlord: User,
):
    await _send(client, student, landlord.id, "First contact")
    await _send(client, student, other_landlord.id, "Second contact")
    await _send(client, landlord, student.id, "Reply revives the older thread")

    response = await client.get("/chat/conversations", headers=auth_headers(student))
    assert [c["other_party"]["id"] for c in response.json()] == [
        str(landlord.id),
        str(other_landlord.id),
    ]


@pytest.mark.asyncio
async def test_concurrent_first_message_reuses_conversation(
    client: AsyncClient,
    student: User,
    landlord: User,
    db: AsyncSession,
    monkeypatch,
):
    """
    A sender whose lookup misses a conversation created in the meantime
    hits the pair's unique constraint and falls back to the existing row.
    """
    landlord_id = landlord.id
    student_headers = auth_headers(student)
    existing_id = (await _send(client, student, landlord_id)).json()["conversation_id"]

    real_scalar = db.scalar
    hidden = []

    async def scalar_missing_conversation(statement, *args, **kwargs):
        if not hidden and "conversations" in str(statement):
            hidden.append(statement)
            return None
        return await real_scalar(statement, *args, **kwargs)

    monkeypatch.setattr(db, "scalar", scalar_missing_conversation)

    response = await client.post(
        "/chat/messages",
        headers=student_headers,
        json={"recipient_id": str(landlord_id), "content": "Sent while the first was in flight"},
    )
    assert response.status_code == 201
    assert response.json()["conversation_id"] == existing_id
    assert hidden

    count = await db.scalar(select(func.count()).select_from(Conversation))
    assert count == 1
