"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

All 12 tables as defined in barkly/models/database_models.py:
communities, users, documents, document_chunks, document_themes,
document_quotes, document_insights, document_keywords, entities,
cultural_protocols, elder_reviews, cultural_reviews.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VECTOR_DIM = 768

ENUMS = {
    "cultural_sensitivity": ("public", "community", "restricted", "sacred"),
    "processing_status": ("pending", "processing", "completed", "failed", "needs_review"),
    "extraction_method": (
        "pymupdf", "pypdf", "buffer_parse", "ocr", "python_docx", "raw_xml", "plain_text", "failed",
    ),
    "user_role": ("public", "member", "researcher", "elder", "admin"),
    "review_status": ("pending", "in_review", "completed"),
    "review_decision": ("approved", "approved_with_conditions", "rejected", "needs_changes"),
    "urgency": ("low", "medium", "high", "critical"),
    "insight_category": ("opportunity", "challenge", "recommendation"),
    "entity_type": (
        "person", "organization", "location", "concept", "event", "product", "service", "method", "tool",
    ),
}


def _enum(name: str) -> postgresql.ENUM:
    """Column type for an enum created up front in upgrade()."""
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    # pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(op.get_bind(), checkfirst=True)

    # ── communities ───────────────────────────────────────────────────────
    op.create_table(
        "communities",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("region", sa.String(255), nullable=True),
        _created_at(),
    )

    # ── users ─────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", _enum("user_role"), nullable=False, server_default="member"),
        sa.Column("community_id", sa.Integer, sa.ForeignKey("communities.id", ondelete="SET NULL"), nullable=True, index=True),
        _created_at(),
    )

    # ── documents ─────────────────────────────────────────────────────────
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("community_id", sa.Integer, sa.ForeignKey("communities.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("uploaded_by", sa.String(255), nullable=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(512), nullable=False),
        sa.Column("file_type", sa.String(50), nullable=False),
        sa.Column("file_size", sa.Integer, nullable=False, server_default="0"),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("source", sa.String(255), nullable=True),
        sa.Column("tags", sa.JSON, nullable=True),
        sa.Column("content_text", sa.Text, nullable=True),
        sa.Column("page_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("word_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("extraction_method", _enum("extraction_method"), nullable=True),
        sa.Column("extraction_confidence", sa.Float, nullable=True),
        sa.Column("extraction_warnings", sa.JSON, nullable=True),
        sa.Column("processing_status", _enum("processing_status"), nullable=False, server_default="pending", index=True),
        sa.Column("processing_error", sa.Text, nullable=True),
        sa.Column("cultural_sensitivity", _enum("cultural_sensitivity"), nullable=False, server_default="community", index=True),
        sa.Column("requires_elder_review", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("elder_approved", sa.Boolean, nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
        _created_at(),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )

    # ── document_chunks ───────────────────────────────────────────────────
    op.create_table(
        "document_chunks",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("chunk_index", sa.Integer, nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("start_char", sa.Integer, nullable=False),
        sa.Column("end_char", sa.Integer, nullable=False),
        sa.Column("start_page", sa.Integer, nullable=True),
        sa.Column("end_page", sa.Integer, nullable=True),
        sa.Column("word_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("embedding", Vector(VECTOR_DIM), nullable=True),
        sa.Column("metadata_json", sa.JSON, nullable=True),
    )

    # ── document_themes ───────────────────────────────────────────────────
    op.create_table(
        "document_themes",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("evidence", sa.Text, nullable=True),
        sa.Column("evidence_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("supporting_chunks", sa.JSON, nullable=True),
        sa.Column("cultural_sensitivity", _enum("cultural_sensitivity"), nullable=False, server_default="public"),
        sa.Column("requires_elder_review", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("elder_reviewed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("ai_model", sa.String(100), nullable=True),
        _created_at(),
        sa.UniqueConstraint("document_id", "slug", name="uq_document_theme_slug"),
    )

    # ── document_quotes ───────────────────────────────────────────────────
    op.create_table(
        "document_quotes",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("chunk_index", sa.Integer, nullable=True),
        sa.Column("quote_text", sa.Text, nullable=False),
        sa.Column("context", sa.Text, nullable=True),
        sa.Column("significance", sa.Text, nullable=True),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("start_position", sa.Integer, nullable=True),
        sa.Column("end_position", sa.Integer, nullable=True),
        sa.Column("page_number", sa.Integer, nullable=True),
        sa.Column("speaker_name", sa.String(255), nullable=True),
        sa.Column("cultural_sensitivity", _enum("cultural_sensitivity"), nullable=False, server_default="public"),
        sa.Column("requires_elder_approval", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("elder_approved", sa.Boolean, nullable=True),
        sa.Column("ai_model", sa.String(100), nullable=True),
        _created_at(),
    )

    # ── document_insights ─────────────────────────────────────────────────
    op.create_table(
        "document_insights",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("category", _enum("insight_category"), nullable=False),
        sa.Column("importance", sa.Integer, nullable=False, server_default="5"),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("evidence", sa.Text, nullable=True),
        _created_at(),
    )

    # ── document_keywords ─────────────────────────────────────────────────
    op.create_table(
        "document_keywords",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("term", sa.String(255), nullable=False),
        sa.Column("frequency", sa.Integer, nullable=False, server_default="1"),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
    )

    # ── entities ──────────────────────────────────────────────────────────
    op.create_table(
        "entities",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("document_id", sa.Integer, sa.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("canonical_name", sa.String(255), nullable=False, index=True),
        sa.Column("entity_type", _enum("entity_type"), nullable=False, index=True),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("mentions", sa.Integer, nullable=False, server_default="1"),
        sa.Column("contexts", sa.JSON, nullable=True),
        sa.Column("importance", sa.Integer, nullable=False, server_default="5"),
        _created_at(),
    )

    # ── cultural_protocols ────────────────────────────────────────────────
    op.create_table(
        "cultural_protocols",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("community_id", sa.Integer, sa.ForeignKey("communities.id", ondelete="CASCADE"), nullable=True, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("protocol_type", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("applicable_content", sa.JSON, nullable=True),
        sa.Column("restrictions", sa.JSON, nullable=True),
        sa.Column("required_approvals", sa.JSON, nullable=True),
        sa.Column("consequences", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(255), nullable=True),
        _created_at(),
    )

    # ── elder_reviews ─────────────────────────────────────────────────────
    op.create_table(
        "elder_reviews",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("content_id", sa.Integer, nullable=False, index=True),
        sa.Column("content_type", sa.String(50), nullable=False),
        sa.Column("elder_id", sa.String(255), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("requested_by", sa.String(255), nullable=True),
        sa.Column("status", _enum("review_status"), nullable=False, server_default="pending"),
        sa.Column("urgency", _enum("urgency"), nullable=False, server_default="medium"),
        sa.Column("cultural_concerns", sa.JSON, nullable=True),
        sa.Column("decision", _enum("review_decision"), nullable=True),
        sa.Column("concerns", sa.JSON, nullable=True),
        sa.Column("recommendations", sa.JSON, nullable=True),
        sa.Column("protocol_violations", sa.JSON, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        _created_at(),
        sa.Column("review_date", sa.DateTime(timezone=True), nullable=True),
    )

    # ── cultural_reviews ──────────────────────────────────────────────────
    op.create_table(
        "cultural_reviews",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("content_id", sa.Integer, nullable=False, index=True),
        sa.Column("content_type", sa.String(50), nullable=False),
        sa.Column("community_id", sa.Integer, sa.ForeignKey("communities.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("sensitivity_level", _enum("cultural_sensitivity"), nullable=False),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("flags", sa.JSON, nullable=True),
        sa.Column("recommendations", sa.JSON, nullable=True),
        sa.Column("protocol_violations", sa.JSON, nullable=True),
        sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("review_type", sa.String(20), nullable=False, server_default="automatic"),
        sa.Column("status", _enum("review_status"), nullable=False, server_default="pending"),
        sa.Column("escalated", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("estimated_review_hours", sa.Integer, nullable=False, server_default="2"),
        _created_at(),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("cultural_reviews")
    op.drop_table("elder_reviews")
    op.drop_table("cultural_protocols")
    op.drop_table("entities")
    op.drop_table("document_keywords")
    op.drop_table("document_insights")
    op.drop_table("document_quotes")
    op.drop_table("document_themes")
    op.drop_table("document_chunks")
    op.drop_table("documents")
    op.drop_table("users")
    op.drop_table("communities")

    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
