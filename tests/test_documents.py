"""Tests for document upload, access control, processing and review."""
import asyncio
import json
import os

import pytest
from httpx import AsyncClient

from barkly.models.database_models import Document
from barkly.services.llm_client import llm_client
from barkly.services.pipeline import processing_pipeline, remove_stored_file
from barkly.services.pipeline_manager import JobPhase, job_manager
from tests.conftest import (
    ANALYSIS_REPLY,
    ELDER_HEADERS,
    EMPTY_PDF,
    MEMBER2_HEADERS,
    MEMBER_HEADERS,
    PUBLIC_TEXT,
    RESEARCHER_HEADERS,
    SACRED_TEXT,
    make_pdf,
    upload_text,
)


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_upload_text_document(client: AsyncClient):
    result = await upload_text(client)

    assert result["status"] == "completed"
    assert result["cultural_sensitivity"] == "public"
    assert result["requires_elder_review"] is False
    assert result["extraction"]["method"] == "plain_text"
    assert result["extraction"]["confidence"] == 1.0
    assert result["chunk_count"] == 1
    assert result["word_count"] == len(PUBLIC_TEXT.split())


@pytest.mark.asyncio
async def test_upload_stores_form_fields(client: AsyncClient):
    result = await upload_text(
        client,
        category="youth",
        source="Program survey 2024",
        tags="youth, transport,",
    )
    resp = await client.get(f"/api/documents/{result['document_id']}")

    assert resp.status_code == 200
    data = resp.json()
    assert data["category"] == "youth"
    assert data["source"] == "Program survey 2024"
    assert data["tags"] == ["youth", "transport"]
    assert data["chunk_count"] == 1
    assert data["metadata_json"]["detected_language"] == "en"


@pytest.mark.asyncio
async def test_upload_sacred_document_needs_review(client: AsyncClient, seeded_users):
    result = await upload_text(client, body=SACRED_TEXT, filename="ceremony.txt")

    assert result["status"] == "needs_review"
    assert result["cultural_sensitivity"] == "sacred"
    assert result["requires_elder_review"] is True

    doc_id = result["document_id"]
    assert (await client.get(f"/api/documents/{doc_id}", headers=MEMBER_HEADERS)).status_code == 403
    assert (await client.get(f"/api/documents/{doc_id}")).status_code == 403
    assert (await client.get(f"/api/documents/{doc_id}", headers=ELDER_HEADERS)).status_code == 200


@pytest.mark.asyncio
async def test_requested_sensitivity_can_only_raise_level(client: AsyncClient, seeded_users):
    raised = await upload_text(client, cultural_sensitivity="restricted")
    assert raised["cultural_sensitivity"] == "restricted"
    assert raised["status"] == "needs_review"

    kept = await upload_text(client, body=SACRED_TEXT, cultural_sensitivity="public")
    assert kept["cultural_sensitivity"] == "sacred"

    doc_id = raised["document_id"]
    assert (await client.get(f"/api/documents/{doc_id}", headers=MEMBER_HEADERS)).status_code == 403
    assert (await client.get(f"/api/documents/{doc_id}", headers=RESEARCHER_HEADERS)).status_code == 200


@pytest.mark.asyncio
async def test_upload_unsupported_type_is_per_file_error(client: AsyncClient):
    resp = await client.post(
        "/api/documents/upload",
        headers=MEMBER_HEADERS,
        files=[
            ("files", ("table.csv", b"a,b,c", "text/csv")),
            ("files", ("report.txt", PUBLIC_TEXT.encode("utf-8"), "text/plain")),
        ],
    )

    assert resp.status_code == 201
    data = resp.json()
    assert data["total_files"] == 2
    assert data["successful"] == 1
    assert data["failed"] == 1
    failed = data["results"][0]
    assert failed["success"] is False
    assert "Unsupported file type" in failed["error"]
    assert data["results"][1]["success"] is True


@pytest.mark.asyncio
async def test_upload_empty_pdf(client: AsyncClient):
    resp = await client.post(
        "/api/documents/upload",
        headers=MEMBER_HEADERS,
        files=[("files", ("empty.pdf", EMPTY_PDF, "application/pdf"))],
    )

    assert resp.status_code == 201
    result = resp.json()["results"][0]
    assert result["success"] is False
    assert "no extractable text" in result["error"]


@pytest.mark.asyncio
async def test_upload_pdf(client: AsyncClient):
    resp = await client.post(
        "/api/documents/upload",
        headers=MEMBER_HEADERS,
        files=[("files", ("report.pdf", make_pdf([PUBLIC_TEXT, PUBLIC_TEXT]), "application/pdf"))],
    )

    result = resp.json()["results"][0]
    assert result["success"] is True
    assert result["extraction"]["method"] == "pymupdf"
    assert result["page_count"] == 2

    chunks = (await client.get(f"/api/documents/{result['document_id']}/chunks")).json()
    assert chunks[0]["start_page"] == 1
    assert chunks[-1]["end_page"] == 2


@pytest.mark.asyncio
async def test_upload_unknown_community(client: AsyncClient):
    resp = await client.post(
        "/api/documents/upload",
        headers=MEMBER_HEADERS,
        files=[("files", ("report.txt", PUBLIC_TEXT.encode("utf-8"), "text/plain"))],
        data={"community_id": "999"},
    )

    result = resp.json()["results"][0]
    assert result["success"] is False
    assert result["error"] == "Community 999 not found"


@pytest.mark.asyncio
async def test_upload_too_many_files(client: AsyncClient):
    files = [("files", (f"f{i}.txt", b"text", "text/plain")) for i in range(11)]
    resp = await client.post("/api/documents/upload", headers=MEMBER_HEADERS, files=files)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_upload_with_ai_analysis(client: AsyncClient, fake_llm):
    result = await upload_text(client, enable_ai="true")

    assert result["themes_found"] == 3
    assert result["quotes_found"] == 2
    assert result["status"] == "completed"
    assert len(fake_llm) == 2


@pytest.mark.asyncio
async def test_upload_ai_failure_keeps_document(client: AsyncClient, monkeypatch):
    async def _boom(document_id, db, status=None):
        raise RuntimeError("model crashed")

    monkeypatch.setattr(processing_pipeline, "process", _boom)
    result = await upload_text(client, enable_ai="true")

    assert result["status"] == "failed"
    assert result["error"] == "AI analysis failed: model crashed"
    assert (await client.get(f"/api/documents/{result['document_id']}")).status_code == 200


# ---------------------------------------------------------------------------
# Verify extraction
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_verify_extraction_text(client: AsyncClient):
    resp = await client.post(
        "/api/documents/verify-extraction",
        files={"file": ("notes.txt", PUBLIC_TEXT.encode("utf-8"), "text/plain")},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["extraction"]["method"] == "plain_text"
    assert data["text_length"] == len(PUBLIC_TEXT)
    assert len(data["preview"]) == 500
    assert data["preview"].endswith("...")
    assert data["advanced"] is None

    listing = await client.get("/api/documents")
    assert listing.json() == []


@pytest.mark.asyncio
async def test_verify_extraction_pdf(client: AsyncClient):
    resp = await client.post(
        "/api/documents/verify-extraction",
        files={"file": ("report.pdf", make_pdf([PUBLIC_TEXT]), "application/pdf")},
    )

    data = resp.json()
    assert data["extraction"]["method"] == "pymupdf"
    assert data["page_count"] == 1
    assert data["advanced"]["is_scanned"] is False


@pytest.mark.asyncio
async def test_verify_extraction_unsupported(client: AsyncClient):
    resp = await client.post(
        "/api/documents/verify-extraction",
        files={"file": ("image.png", b"\x89PNG", "image/png")},
    )
    assert resp.status_code == 400


# ---------------------------------------------------------------------------
# List / overview / get / delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_documents_filtered_by_role(client: AsyncClient, seeded_users):
    await upload_text(client)
    await upload_text(client, body=SACRED_TEXT, filename="ceremony.txt")

    anonymous = (await client.get("/api/documents")).json()
    assert [d["filename"] for d in anonymous] == ["report.txt"]

    member = (await client.get("/api/documents", headers=MEMBER_HEADERS)).json()
    assert len(member) == 1

    elder = (await client.get("/api/documents", headers=ELDER_HEADERS)).json()
    assert {d["filename"] for d in elder} == {"report.txt", "ceremony.txt"}

    needs_review = (
        await client.get("/api/documents", params={"status": "needs_review"}, headers=ELDER_HEADERS)
    ).json()
    assert [d["filename"] for d in needs_review] == ["ceremony.txt"]


@pytest.mark.asyncio
async def test_documents_overview(client: AsyncClient, seeded_users):
    await upload_text(client)
    await upload_text(client, body=SACRED_TEXT, filename="ceremony.txt")

    anonymous = (await client.get("/api/documents/overview")).json()
    assert anonymous["total_documents"] == 1
    assert anonymous["by_sensitivity"] == {"public": 1}

    elder = (await client.get("/api/documents/overview", headers=ELDER_HEADERS)).json()
    assert elder["total_documents"] == 2
    assert elder["by_sensitivity"] == {"public": 1, "sacred": 1}
    assert elder["by_status"] == {"completed": 1, "needs_review": 1}
    assert elder["by_extraction_method"] == {"plain_text": 2}
    assert elder["total_chunks"] == 2
    assert elder["total_themes"] == 0
    assert elder["low_confidence_count"] == 0
    assert elder["average_extraction_confidence"] is not None


@pytest.mark.asyncio
async def test_get_missing_document(client: AsyncClient):
    assert (await client.get("/api/documents/999999")).status_code == 404


@pytest.mark.asyncio
async def test_document_chunks(client: AsyncClient):
    result = await upload_text(client)
    resp = await client.get(f"/api/documents/{result['document_id']}/chunks")

    assert resp.status_code == 200
    chunks = resp.json()
    assert len(chunks) == 1
    assert chunks[0]["start_char"] == 0
    assert chunks[0]["end_char"] == len(PUBLIC_TEXT)
    assert chunks[0]["content"] == PUBLIC_TEXT


@pytest.mark.asyncio
async def test_delete_document_permissions(client: AsyncClient, db_session):
    result = await upload_text(client)
    doc_id = result["document_id"]
    file_path = (await db_session.get(Document, doc_id)).file_path
    assert os.path.exists(file_path)

    resp = await client.delete(f"/api/documents/{doc_id}", headers=MEMBER2_HEADERS)
    assert resp.status_code == 403

    resp = await client.delete(f"/api/documents/{doc_id}", headers=MEMBER_HEADERS)
    assert resp.status_code == 204
    assert not os.path.exists(file_path)
    assert (await client.get(f"/api/documents/{doc_id}")).status_code == 404


@pytest.mark.asyncio
async def test_elder_may_delete_any_document(client: AsyncClient, seeded_users):
    result = await upload_text(client, body=SACRED_TEXT)
    resp = await client.delete(f"/api/documents/{result['document_id']}", headers=ELDER_HEADERS)
    assert resp.status_code == 204


@pytest.mark.asyncio
async def test_delete_requires_user(client: AsyncClient):
    result = await upload_text(client)
    assert (await client.delete(f"/api/documents/{result['document_id']}")).status_code == 401


def test_remove_stored_file_ignores_missing_path(tmp_path):
    stored = tmp_path / "upload.txt"
    stored.write_text("notes")

    remove_stored_file(str(stored))
    assert not stored.exists()

    remove_stored_file(str(stored))
    remove_stored_file("")


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_process_document(client: AsyncClient, fake_llm):
    result = await upload_text(client)
    resp = await client.post(f"/api/documents/{result['document_id']}/process", headers=MEMBER_HEADERS)

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "completed"
    assert data["chunks_analyzed"] == 1
    assert data["themes_saved"] == 3
    assert data["quotes_saved"] == 2
    assert data["insights_saved"] == 2
    assert data["keywords_saved"] == 2
    assert data["entities_saved"] == 2
    assert data["embedded_chunks"] == 0
    assert data["cultural_sensitivity"] == "public"
    assert "Embedding service unavailable; chunks left unembedded" in data["errors"]

    document = (await client.get(f"/api/documents/{result['document_id']}")).json()
    assert document["summary"] == ANALYSIS_REPLY["summary"]


@pytest.mark.asyncio
async def test_process_without_llm_saves_nothing(client: AsyncClient):
    result = await upload_text(client)
    resp = await client.post(f"/api/documents/{result['document_id']}/process", headers=MEMBER_HEADERS)

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "completed"
    assert data["themes_saved"] == 0
    assert data["entities_saved"] == 0


@pytest.mark.asyncio
async def test_reprocess_replaces_analysis(client: AsyncClient, fake_llm):
    result = await upload_text(client)
    doc_id = result["document_id"]
    await client.post(f"/api/documents/{doc_id}/process", headers=MEMBER_HEADERS)
    await client.post(f"/api/documents/{doc_id}/process", headers=MEMBER_HEADERS)

    overview = (await client.get("/api/documents/overview")).json()
    assert overview["total_themes"] == 3
    assert overview["total_quotes"] == 2


@pytest.mark.asyncio
async def test_process_missing_document(client: AsyncClient):
    resp = await client.post("/api/documents/999999/process", headers=MEMBER_HEADERS)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_process_requires_user(client: AsyncClient):
    result = await upload_text(client)
    resp = await client.post(f"/api/documents/{result['document_id']}/process")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_sacred_theme_raises_document_level(client: AsyncClient, monkeypatch, seeded_users):
    reply = {
        "summary": "Notes about a ceremony.",
        "themes": [{"name": "Ceremony Practices", "confidence": 0.9, "evidence": "the sacred ceremony"}],
        "quotes": [],
        "keywords": [],
        "insights": [],
    }

    async def _reply(prompt, system=None, max_tokens=1000):
        return json.dumps(reply)

    monkeypatch.setattr(llm_client, "call", _reply)
    result = await upload_text(client)
    doc_id = result["document_id"]

    resp = await client.post(f"/api/documents/{doc_id}/process", headers=MEMBER_HEADERS)
    data = resp.json()
    assert data["cultural_sensitivity"] == "sacred"
    assert data["requires_elder_review"] is True
    assert data["status"] == "needs_review"

    assert (await client.get(f"/api/documents/{doc_id}/review", headers=MEMBER_HEADERS)).status_code == 403

    review = (await client.get(f"/api/documents/{doc_id}/review", headers=ELDER_HEADERS)).json()
    theme = review["themes_by_category"]["general"][0]
    assert theme["cultural_sensitivity"] == "sacred"
    assert theme["requires_elder_review"] is True
    assert review["verification"]["needs_review"] == 1

    stats = (await client.get("/api/cultural/stats")).json()
    assert stats["by_level"] == {"sacred": 1}


@pytest.mark.asyncio
async def test_review_document(client: AsyncClient, fake_llm):
    result = await upload_text(client)
    doc_id = result["document_id"]
    await client.post(f"/api/documents/{doc_id}/process", headers=MEMBER_HEADERS)

    resp = await client.get(f"/api/documents/{doc_id}/review")
    assert resp.status_code == 200
    data = resp.json()

    assert set(data["themes_by_category"]) == {"youth", "general", "employment"}
    youth = data["themes_by_category"]["youth"][0]
    assert youth["name"] == "Youth Engagement"
    assert youth["confidence_level"] == "excellent"
    assert data["themes_by_category"]["general"][0]["confidence_level"] == "medium"
    assert data["themes_by_category"]["employment"][0]["confidence_level"] == "low"

    verification = data["verification"]
    assert verification["total_themes"] == 3
    assert verification["high_confidence"] == 1
    assert verification["medium_confidence"] == 1
    assert verification["low_confidence"] == 1
    assert verification["duplicates"] == []
    assert verification["needs_review"] == 0

    quotes = data["quotes_by_sensitivity"]["public"]
    assert len(quotes) == 2
    located = ANALYSIS_REPLY["quotes"][0]["text"]
    assert quotes[0]["quote_text"] == located
    assert quotes[0]["start_position"] == PUBLIC_TEXT.index(located)
    assert quotes[0]["end_position"] == PUBLIC_TEXT.index(located) + len(located)
    assert quotes[1]["start_position"] is None

    assert [i["importance"] for i in data["insights"]] == [8, 6]
    assert data["keywords"] == [
        {"term": "youth", "frequency": 3, "category": "community"},
        {"term": "transport", "frequency": 1, "category": "general"},
    ]
    assert data["document"]["chunk_count"] == 1


# ---------------------------------------------------------------------------
# Background processing
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_background_processing(client: AsyncClient, monkeypatch):
    async def _fake_job(document_id, status):
        status.chunks_done = status.chunks_total
        status.result = {"document_id": document_id}
        status.phase = JobPhase.COMPLETED

    monkeypatch.setattr(processing_pipeline, "process_in_background", _fake_job)
    result = await upload_text(client)
    doc_id = result["document_id"]

    resp = await client.post(f"/api/documents/{doc_id}/process-background", headers=MEMBER_HEADERS)
    assert resp.status_code == 202
    data = resp.json()
    assert data["phase"] == "queued"
    assert data["chunks_total"] == 1

    for _ in range(100):
        if not job_manager.is_running(doc_id):
            break
        await asyncio.sleep(0.01)

    status = (await client.get(f"/api/documents/{doc_id}/process-status")).json()
    assert status["phase"] == "completed"
    assert status["chunks_done"] == 1
    assert status["result"] == {"document_id": doc_id}


@pytest.mark.asyncio
async def test_background_processing_conflict(client: AsyncClient, monkeypatch):
    result = await upload_text(client)
    monkeypatch.setattr(job_manager, "is_running", lambda document_id: True)

    resp = await client.post(
        f"/api/documents/{result['document_id']}/process-background",
        headers=MEMBER_HEADERS,
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_sync_process_refused_while_background_job_runs(client: AsyncClient, monkeypatch):
    release = asyncio.Event()

    async def _slow_job(document_id, status):
        await release.wait()

    monkeypatch.setattr(processing_pipeline, "process_in_background", _slow_job)
    result = await upload_text(client)
    doc_id = result["document_id"]

    resp = await client.post(f"/api/documents/{doc_id}/process-background", headers=MEMBER_HEADERS)
    assert resp.status_code == 202

    resp = await client.post(f"/api/documents/{doc_id}/process", headers=MEMBER_HEADERS)
    assert resp.status_code == 409
    assert "already running" in resp.json()["detail"]

    release.set()
    for _ in range(100):
        if not job_manager.is_running(doc_id):
            break
        await asyncio.sleep(0.01)

    resp = await client.post(f"/api/documents/{doc_id}/process", headers=MEMBER_HEADERS)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_background_refused_while_sync_process_runs(client: AsyncClient):
    result = await upload_text(client)
    doc_id = result["document_id"]

    with job_manager.claim(doc_id):
        resp = await client.post(
            f"/api/documents/{doc_id}/process-background",
            headers=MEMBER_HEADERS,
        )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_process_status_without_job(client: AsyncClient):
    result = await upload_text(client)
    resp = await client.get(f"/api/documents/{result['document_id']}/process-status")
    assert resp.status_code == 404
