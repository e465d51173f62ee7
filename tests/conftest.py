"""
Shared fixtures for Barkly backend integration tests.

Tests run against a throwaway SQLite database (aiosqlite) unless
TEST_DATABASE_URL points somewhere else, e.g. a PostgreSQL test database.
Tables are created before and dropped after every test.  The LLM and the
embedding service are reported as unreachable unless a test patches them.
"""
from __future__ import annotations

import json
import os
import tempfile
import textwrap
from typing import AsyncGenerator

import fitz  # PyMuPDF
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override DATABASE_URL and UPLOAD_DIR *before* any barkly module is
# imported, so that settings and the global engine point at the test setup.
_TMP_DIR = tempfile.mkdtemp(prefix="barkly-test-")
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'barkly_test.db')}",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")

from barkly.database import Base, get_db  # noqa: E402
from barkly.main import app  # noqa: E402
from barkly.models.database_models import User, UserRole  # noqa: E402
from barkly.services.embedding import embedding_service  # noqa: E402
from barkly.services.llm_client import llm_client  # noqa: E402
from barkly.services.pipeline_manager import job_manager  # noqa: E402


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session on freshly created tables; drop them afterwards."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to use the per-test session.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def seeded_users(db_session: AsyncSession) -> None:
    """Users whose roles cannot be reached through auto-registration."""
    for user_id, role in (
        ("elder-1", UserRole.ELDER),
        ("elder-2", UserRole.ELDER),
        ("admin-1", UserRole.ADMIN),
        ("researcher-1", UserRole.RESEARCHER),
    ):
        db_session.add(User(id=user_id, email=f"{user_id}@example.com", role=role))
    await db_session.commit()


@pytest.fixture(autouse=True)
def offline_services(monkeypatch):
    """LLM and embeddings unreachable by default; no background jobs left over."""

    async def _no_reply(prompt, system=None, max_tokens=1000):
        return ""

    async def _unavailable():
        return False

    monkeypatch.setattr(llm_client, "call", _no_reply)
    monkeypatch.setattr(llm_client, "is_available", _unavailable)
    monkeypatch.setattr(embedding_service, "check_ollama_health", _unavailable)

    job_manager._running.clear()
    job_manager._latest.clear()
    yield
    job_manager._running.clear()
    job_manager._latest.clear()


@pytest.fixture
def fake_llm(monkeypatch):
    """
    Route LLM calls to canned JSON: entity prompts get ENTITY_REPLY, every
    other prompt gets ANALYSIS_REPLY.  Returns the list of prompts seen.
    """
    prompts = []

    async def _reply(prompt, system=None, max_tokens=1000):
        prompts.append(prompt)
        if "canonicalName" in prompt:
            return json.dumps(ENTITY_REPLY)
        return "```json\n" + json.dumps(ANALYSIS_REPLY) + "\n```"

    monkeypatch.setattr(llm_client, "call", _reply)
    return prompts


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

MEMBER_HEADERS = {
    "X-User-Id": "member-1",
    "X-User-Email": "member1@example.com",
    "X-User-Name": "Member One",
}

MEMBER2_HEADERS = {
    "X-User-Id": "member-2",
    "X-User-Email": "member2@example.com",
}

ELDER_HEADERS = {"X-User-Id": "elder-1"}
ELDER2_HEADERS = {"X-User-Id": "elder-2"}
ADMIN_HEADERS = {"X-User-Id": "admin-1"}
RESEARCHER_HEADERS = {"X-User-Id": "researcher-1"}

PUBLIC_TEXT = (
    "The youth program in Tennant Creek runs every Tuesday and Thursday afternoon. "
    "Young people meet at the youth centre to play basketball, cook meals together "
    "and talk with mentors about school and work. The program started in 2019 with "
    "support from the local council and the health service. Attendance has grown "
    "from ten to more than forty participants each week. Parents say the program "
    "gives their children a safe place to go after school. Staff would like more "
    "funding for transport, because many families live far from the centre and the "
    "bus does not run in the evening. The mentors also help with homework, driving "
    "lessons and job applications. Several participants have since found work at the "
    "supermarket, the council depot and the mine. Young people said that having "
    "adults who listen to them is the most important part of the program."
)

SACRED_TEXT = (
    PUBLIC_TEXT
    + " The ceremony held at the site each year is sacred and must not be recorded "
    "or shared outside the family groups who hold responsibility for it."
)

ANALYSIS_REPLY = {
    "summary": "A youth program in Tennant Creek supports young people after school.",
    "themes": [
        {"name": "Youth Engagement", "confidence": 0.92, "evidence": "forty participants each week"},
        {"name": "Transport Barriers", "confidence": 0.65, "evidence": "bus does not run in the evening"},
        {"name": "Employment Pathways", "confidence": 0.5, "evidence": "found work at the supermarket"},
    ],
    "quotes": [
        {
            "text": "having adults who listen to them is the most important part of the program",
            "context": "Feedback from participants",
            "significance": "Shows what young people value",
            "confidence": 0.9,
        },
        {
            "text": "a sentence that appears nowhere in the document at all",
            "context": "",
            "significance": "",
            "confidence": 0.4,
        },
    ],
    "keywords": [
        {"term": "Youth", "frequency": 3, "category": "community"},
        {"term": "transport", "frequency": 1, "category": "logistics"},
    ],
    "insights": [
        {"text": "Fund an evening bus service", "category": "recommendation", "importance": 8},
        {"text": "Attendance is growing", "category": "opportunity", "importance": 6},
    ],
}

ENTITY_REPLY = {
    "entities": [
        {
            "name": "Tennant Creek",
            "canonicalName": "Tennant Creek",
            "type": "location",
            "confidence": 0.95,
            "mentions": 1,
            "contexts": ["The youth program in Tennant Creek"],
            "importance": 8,
        },
        {
            "name": "the local council",
            "canonicalName": "Local Council",
            "type": "organisation",
            "confidence": 0.8,
            "mentions": 2,
            "contexts": ["support from the local council"],
            "importance": 6,
        },
        {
            "name": "maybe",
            "type": "concept",
            "confidence": 0.1,
        },
    ]
}


async def upload_text(
    client: AsyncClient,
    body: str = PUBLIC_TEXT,
    filename: str = "report.txt",
    headers=None,
    **form,
) -> dict:
    """Upload one text file and return its per-file result."""
    resp = await client.post(
        "/api/documents/upload",
        headers=headers or MEMBER_HEADERS,
        files=[("files", (filename, body.encode("utf-8"), "text/plain"))],
        data=form,
    )
    assert resp.status_code == 201, resp.text
    result = resp.json()["results"][0]
    assert result["success"], result
    return result


def make_pdf(pages, metadata=None) -> bytes:
    """Build a text PDF with PyMuPDF, one entry of *pages* per page."""
    doc = fitz.open()
    for page_text in pages:
        page = doc.new_page()
        page.insert_text((72, 100), "\n".join(textwrap.wrap(page_text, 80)), fontsize=11)
    if metadata:
        doc.set_metadata(metadata)
    data = doc.tobytes()
    doc.close()
    return data


EMPTY_PDF = (
    b"%PDF-1.4\n"
    b"1 0 obj<</Type/Catalog/Pages 2 0 R>>endobj\n"
    b"2 0 obj<</Type/Pages/Kids[3 0 R]/Count 1>>endobj\n"
    b"3 0 obj<</Type/Page/MediaBox[0 0 612 792]/Parent 2 0 R>>endobj\n"
    b"xref\n0 4\n"
    b"0000000000 65535 f \n"
    b"0000000009 00000 n \n"
    b"0000000058 00000 n \n"
    b"0000000115 00000 n \n"
    b"trailer<</Size 4/Root 1 0 R>>\n"
    b"startxref\n190\n%%EOF\n"
)
