"""Tests for caller identity and role-based access.

Anonymous callers may read public content only; an unknown X-User-Id is
registered as a community member on first use.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from barkly.dependencies.auth import Caller
from barkly.models.database_models import CulturalSensitivity, User, UserRole
from barkly.services.cultural_safety import allowed_levels, can_access
from tests.conftest import MEMBER_HEADERS


@pytest.mark.asyncio
async def test_upload_requires_user_header(client: AsyncClient):
    resp = await client.post(
        "/api/documents/upload",
        files=[("files", ("notes.txt", b"hello world", "text/plain"))],
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_is_registered_as_member(client: AsyncClient, db_session):
    resp = await client.post("/api/communities", json={"name": "Elliott"}, headers=MEMBER_HEADERS)
    assert resp.status_code == 201

    result = await db_session.execute(select(User).where(User.id == "member-1"))
    user = result.scalar_one()
    assert user.role == UserRole.MEMBER
    assert user.email == "member1@example.com"
    assert user.name == "Member One"


@pytest.mark.asyncio
async def test_member_cannot_create_protocol(client: AsyncClient):
    resp = await client.post(
        "/api/cultural/protocols",
        json={"name": "No photos", "protocol_type": "media"},
        headers=MEMBER_HEADERS,
    )
    assert resp.status_code == 403
    assert "elder" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_anonymous_cannot_list_elder_reviews(client: AsyncClient):
    resp = await client.get("/api/cultural/elder-reviews")
    assert resp.status_code == 401


def test_role_levels():
    assert allowed_levels(UserRole.PUBLIC) == [CulturalSensitivity.PUBLIC]
    assert allowed_levels(UserRole.MEMBER) == [
        CulturalSensitivity.PUBLIC,
        CulturalSensitivity.COMMUNITY,
    ]
    assert CulturalSensitivity.RESTRICTED in allowed_levels(UserRole.RESEARCHER)
    assert CulturalSensitivity.SACRED not in allowed_levels(UserRole.RESEARCHER)
    assert can_access(UserRole.ELDER, CulturalSensitivity.SACRED)
    assert can_access(UserRole.ADMIN, CulturalSensitivity.SACRED)


def test_anonymous_caller_reads_public_only():
    caller = Caller(user=None, role=UserRole.PUBLIC)
    assert caller.user_id is None
    assert caller.can_read(CulturalSensitivity.PUBLIC)
    assert not caller.can_read(CulturalSensitivity.COMMUNITY)
