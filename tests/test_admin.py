"""
tests/test_admin.py
Tests for flag submission, the flag queue, user moderation, content removal, analytics and audit log.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AdminAuditLog, AdminFlag, Review, User
from tests.conftest import auth_headers


async def _flag_user(client: AsyncClient, reporter: User, target: User, reason="Asking for deposits off-platform"):
    return await client.post(
        "/flags",
        headers=auth_headers(reporter),
        json={"user_id": str(target.id), "reason": reason},
    )


# ── Access ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/admin/flags", "/admin/users/spam", "/admin/analytics", "/admin/audit-logs"])
async def test_admin_routes_forbidden_for_others(client: AsyncClient, student: User, path: str):
    response = await client.get(path, headers=auth_headers(student))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_routes_require_auth(client: AsyncClient):
    response = await client.get("/admin/analytics")
    assert response.status_code == 401


# ── Flag Queue ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_resolve_flag(
    client: AsyncClient,
    admin_user: User,
    student: User,
    landlord: User,
    db: AsyncSession,
):
    flag_id = (await _flag_user(client, student, landlord)).json()["id"]
    headers = auth_headers(admin_user)

    response = await client.get("/admin/flags", headers=headers, params={"resolved": False})
    assert [f["id"] for f in response.json()] == [flag_id]

    response = await client.put(f"/admin/flags/{flag_id}/resolve", headers=headers)
    assert response.status_code == 200
    assert response.json()["resolved"] is True

    response = await client.put(f"/admin/flags/{flag_id}/resolve", headers=headers)
    assert response.status_code == 409

    response = await client.get("/admin/flags", headers=headers, params={"resolved": False})
    assert response.json() == []

    log = await db.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "RESOLVE_FLAG"))
    assert log.entity_id == flag_id
    assert log.admin_id == admin_user.id


@pytest.mark.asyncio
async def test_spam_users_ranked_by_open_flags(
    client: AsyncClient,
    admin_user: User,
    student: User,
    other_student: User,
    landlord: User,
    other_landlord: User,
):
    await _flag_user(client, student, landlord)
    await _flag_user(client, other_student, landlord)
    await _flag_user(client, student, other_landlord)

    response = await client.get("/admin/users/spam", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert [(u["id"], u["open_flags"]) for u in data] == [
        (str(landlord.id), 2),
        (str(other_landlord.id), 1),
    ]


# ── User Moderation ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_suspend_and_reactivate(client: AsyncClient, admin_user: User, landlord: User):
    headers = auth_headers(admin_user)
    landlord_headers = auth_headers(landlord)

    response = await client.post(
        f"/admin/users/{landlord.id}/suspend",
        headers=headers,
        json={"reason": "Repeated fake listings"},
    )
    assert response.status_code == 200

    # Suspended account is locked out immediately
    response = await client.get("/auth/me", headers=landlord_headers)
    assert response.status_code == 403

    response = await client.post(
        f"/admin/users/{landlord.id}/suspend",
        headers=headers,
        json={"reason": "Repeated fake listings"},
    )
    assert response.status_code == 409

    response = await client.post(f"/admin/users/{landlord.id}/reactivate", headers=headers)
    assert response.status_code == 200
    assert (await client.get("/auth/me", headers=landlord_headers)).status_code == 200


@pytest.mark.asyncio
async def test_suspend_requires_reason(client: AsyncClient, admin_user: User, landlord: User):
    response = await client.post(
        f"/admin/users/{landlord.id}/suspend",
        headers=auth_headers(admin_user),
        json={"reason": "no"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cannot_suspend_admin(client: AsyncClient, admin_user: User):
    response = await client.post(
        f"/admin/users/{admin_user.id}/suspend",
        headers=auth_headers(admin_user),
        json={"reason": "Testing the guard"},
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_suspend_unknown_user(client: AsyncClient, admin_user: User):
    response = await client.post(
        f"/admin/users/{uuid.uuid4()}/suspend",
        headers=auth_headers(admin_user),
        json={"reason": "Does not exist"},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_user(client: AsyncClient, admin_user: User, student: User, db: AsyncSession):
    student_id = student.id
    response = await client.delete(f"/admin/users/{student_id}", headers=auth_headers(admin_user))
    assert response.status_code == 200

    assert await db.scalar(select(User.id).where(User.id == student_id)) is None
    log = await db.scalar(select(AdminAuditLog).where(AdminAuditLog.action == "DELETE_USER"))
    assert log.payload["email"] == "student@example.com"


# ── Content Removal ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_property(client: AsyncClient, admin_user: User, make_property):
    prop = await make_property()
    response = await client.delete(f"/admin/properties/{prop.id}", headers=auth_headers(admin_user))
    assert response.status_code == 200

    assert (await client.get(f"/properties/{prop.id}")).status_code == 404


@pytest.mark.asyncio
async def test_delete_review(
    client: AsyncClient,
    admin_user: User,
    student: User,
    make_property,
    db: AsyncSession,
):
    prop = await make_property()
    review_id = (await client.post(
        "/reviews",
        headers=auth_headers(student),
        json={"property_id": str(prop.id), "rating": 1, "comment": "Spam spam spam"},
    )).json()["id"]

    response = await client.delete(f"/admin/reviews/{review_id}", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert await db.scalar(select(Review.id).where(Review.id == uuid.UUID(review_id))) is None

    response = await client.delete(f"/admin/reviews/{review_id}", headers=auth_headers(admin_user))
    assert response.status_code == 404


# ── Analytics + Audit ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_analytics_counts(
    client: AsyncClient,
    admin_user: User,
    student: User,
    landlord: User,
    make_property,
):
    reviewed = await make_property(title="Reviewed")
    await make_property(title="Quiet")
    await client.post(
        "/reviews",
        headers=auth_headers(student),
        json={"property_id": str(reviewed.id), "rating": 4},
    )
    await _flag_user(client, student, landlord)

    response = await client.get("/admin/analytics", headers=auth_headers(admin_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total_users"] == 3
    assert data["users_by_role"] == {"student": 1, "landlord": 1, "admin": 1}
    assert data["total_properties"] == 2
    assert data["total_reviews"] == 1
    assert data["open_flags"] == 1
    assert data["top_listings"][0]["title"] == "Reviewed"
    assert data["top_listings"][0]["avg_rating"] == 4.0


@pytest.mark.asyncio
async def test_audit_log_filter(client: AsyncClient, admin_user: User, landlord: User, student: User):
    headers = auth_headers(admin_user)
    await client.post(
        f"/admin/users/{landlord.id}/suspend",
        headers=headers,
        json={"reason": "Fake listings"},
    )
    await client.delete(f"/admin/users/{student.id}", headers=headers)

    response = await client.get("/admin/audit-logs", headers=headers, params={"action": "suspend_user"})
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    assert data["items"][0]["entity_id"] == str(landlord.id)
    assert data["items"][0]["admin_email"] == "admin@example.com"
    assert data["items"][0]["payload"] == {"reason": "Fake listings"}


# ── Flags (user side) ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_flag_requires_exactly_one_target(client: AsyncClient, student: User, landlord: User, make_property):
    prop = await make_property()
    response = await client.post(
        "/flags",
        headers=auth_headers(student),
        json={"user_id": str(landlord.id), "property_id": str(prop.id), "reason": "Both targets"},
    )
    assert response.status_code == 400

    response = await client.post("/flags", headers=auth_headers(student), json={"reason": "No target"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_flag_property(client: AsyncClient, student: User, make_property, db: AsyncSession):
    prop = await make_property()
    response = await client.post(
        "/flags",
        headers=auth_headers(student),
        json={"property_id": str(prop.id), "reason": "Photos are of a different flat"},
    )
    assert response.status_code == 201
    assert response.json()["resolved"] is False

    flags = (await db.execute(select(AdminFlag))).scalars().all()
    assert len(flags) == 1 and flags[0].property_id == prop.id


@pytest.mark.asyncio
async def test_cannot_flag_yourself(client: AsyncClient, student: User):
    response = await _flag_user(client, student, student)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_flag_missing_target(client: AsyncClient, student: User):
    response = await client.post(
        "/flags",
        headers=auth_headers(student),
        json={"property_id": str(uuid.uuid4()), "reason": "Listing vanished"},
    )
    assert response.status_code == 404
