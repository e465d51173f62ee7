"""Tests for community create and list."""
import pytest
from httpx import AsyncClient

from tests.conftest import MEMBER_HEADERS, upload_text


@pytest.mark.asyncio
async def test_create_community(client: AsyncClient):
    resp = await client.post(
        "/api/communities",
        json={"name": "Tennant Creek", "region": "Barkly"},
        headers=MEMBER_HEADERS,
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["name"] == "Tennant Creek"
    assert data["region"] == "Barkly"
    assert data["document_count"] == 0


@pytest.mark.asyncio
async def test_create_duplicate_community(client: AsyncClient):
    body = {"name": "Ali Curung"}
    assert (await client.post("/api/communities", json=body, headers=MEMBER_HEADERS)).status_code == 201
    resp = await client.post("/api/communities", json=body, headers=MEMBER_HEADERS)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_create_community_requires_user(client: AsyncClient):
    resp = await client.post("/api/communities", json={"name": "Elliott"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_list_communities_with_document_counts(client: AsyncClient):
    first = await client.post("/api/communities", json={"name": "Tennant Creek"}, headers=MEMBER_HEADERS)
    await client.post("/api/communities", json={"name": "Ali Curung"}, headers=MEMBER_HEADERS)
    community_id = first.json()["id"]

    await upload_text(client, community_id=str(community_id))
    await upload_text(client, filename="second.txt", community_id=str(community_id))

    resp = await client.get("/api/communities")
    assert resp.status_code == 200
    data = resp.json()
    assert [c["name"] for c in data] == ["Ali Curung", "Tennant Creek"]
    assert data[0]["document_count"] == 0
    assert data[1]["document_count"] == 2
