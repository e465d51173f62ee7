"""
LLM-based document analysis: themes, quotes, insights, keywords and entities.

Each chunk is analysed independently; results are then aggregated per
document (themes merged by slug, quotes de-duplicated and located in the
document text, keywords summed, entities merged by canonical name) and every
theme and quote is classified for cultural sensitivity before it is saved.

Public API
----------
DocumentAnalysisService.analyze_chunk(chunk_text, document_context) -> Dict
DocumentAnalysisService.extract_entities(chunk_text, context)       -> List[Dict]
DocumentAnalysisService.aggregate(chunk_analyses, full_text, ...)   -> DocumentAnalysis
DocumentAnalysisService.process_document(document_id, db)           -> AnalysisSummary
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.models.database_models import (
    Chunk,
    CulturalSensitivity,
    Document,
    DocumentInsight,
    DocumentKeyword,
    DocumentQuote,
    DocumentTheme,
    Entity,
    EntityType,
    InsightCategory,
)
from barkly.services import cultural_safety
from barkly.services.chunking import find_page_number
from barkly.services.llm_client import LLMClient, clamp, llm_client
from barkly.utils.helpers import (
    clean_entity_name,
    find_text_span,
    normalize_text,
    slugify,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ChunkAnalysis:
    """One chunk's raw analysis, with the offsets needed to place its quotes."""

    chunk_index: int
    start_char: int
    end_char: int
    start_page: Optional[int]
    content: str
    result: Dict[str, Any]
    entities: List[Dict[str, Any]] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class DocumentAnalysis:
    summary: str
    themes: List[Dict[str, Any]]
    quotes: List[Dict[str, Any]]
    insights: List[Dict[str, Any]]
    keywords: List[Dict[str, Any]]
    entities: List[Dict[str, Any]]


@dataclasses.dataclass
class AnalysisSummary:
    """Returned by process_document to summarise what was extracted and saved."""

    document_id: int
    chunks_analyzed: int
    chunks_skipped: int
    themes_saved: int
    quotes_saved: int
    insights_saved: int
    keywords_saved: int
    entities_saved: int
    cultural_sensitivity: CulturalSensitivity
    requires_elder_review: bool
    errors: List[str]


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_ANALYSIS_SYSTEM_PROMPT = """\
You are a document analyst specializing in community research and youth development \
in Aboriginal communities of the Barkly region.
Extract key themes, significant quotes, and actionable insights from the text.
Focus on clarity and relevance. Respond in JSON format only.\
"""

_ANALYSIS_PROMPT = """\
Analyze this document chunk:
{context_line}
Text: {chunk_text}

Extract and return in JSON format:
{{
  "summary": "2-3 sentence summary",
  "themes": [{{"name": "theme name", "confidence": 0.0-1.0, "evidence": "supporting text"}}],
  "quotes": [{{"text": "significant quote", "context": "surrounding context", \
"significance": "why this matters", "confidence": 0.0-1.0}}],
  "keywords": [{{"term": "keyword", "frequency": 1, "category": "community|technical|emotional|general"}}],
  "insights": [{{"text": "actionable insight", "category": "opportunity|challenge|recommendation", \
"importance": 1-10}}]
}}

Focus on 3-5 key themes, 2-4 important quotes, and 3-5 actionable insights.
Quotes must be copied word for word from the text.\
"""

_ANALYSIS_RETRY_PROMPT = """\
Return ONLY a JSON object for this text, no markdown:

{chunk_text}

{{"summary": "...", "themes": [{{"name": "...", "confidence": 0.8, "evidence": "..."}}], \
"quotes": [{{"text": "...", "context": "...", "significance": "...", "confidence": 0.8}}], \
"keywords": [{{"term": "...", "frequency": 1, "category": "general"}}], \
"insights": [{{"text": "...", "category": "recommendation", "importance": 5}}]}}\
"""

_ENTITY_SYSTEM_PROMPT = """\
You are an expert entity extraction system. Extract all meaningful entities from text \
with high precision.

Entity types:
- person: Individuals, roles, positions
- organization: Companies, institutions, groups, teams
- location: Places, addresses, regions, venues
- concept: Ideas, methodologies, frameworks, principles
- event: Meetings, activities, processes, incidents
- product: Tools, software, systems, deliverables
- service: Offerings, programs, initiatives
- method: Techniques, approaches, procedures
- tool: Technologies, platforms, instruments\
"""

_ENTITY_PROMPT = """\
Extract entities from this text:
{context_line}
Text to analyze:
{chunk_text}

Return results in this exact JSON format:
{{"entities": [{{"name": "Entity name as it appears", "canonicalName": "Normalized name", \
"type": "person|organization|location|concept|event|product|service|method|tool", \
"confidence": 0.0-1.0, "mentions": 1, "contexts": ["short context"], "importance": 1-10}}]}}

Normalize similar entities (e.g. "John Smith" and "J. Smith") and be precise with types.\
"""

_ENTITY_RETRY_PROMPT = """\
List the named entities in this text as JSON only:

{chunk_text}

{{"entities": [{{"name": "...", "canonicalName": "...", "type": "organization", \
"confidence": 0.8, "mentions": 1, "contexts": ["..."], "importance": 5}}]}}\
"""


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class DocumentAnalysisService:
    """
    Per-chunk LLM analysis and per-document aggregation.

    LLM failures never raise: a chunk whose call fails contributes an empty
    result, and the document is still saved with whatever was found.
    """

    MIN_CHUNK_WORDS: int = 20      # chunks shorter than this are skipped
    MIN_ENTITY_CONFIDENCE: float = 0.3
    MAX_ENTITY_CONTEXTS: int = 5
    MAX_CHUNK_CHARS: int = 4000

    VALID_KEYWORD_CATEGORIES = frozenset({"community", "technical", "emotional", "general"})

    # First match wins, so order matters
    THEME_CATEGORIES: Sequence[str] = (
        "initiative", "program", "service", "facility", "support", "development",
        "education", "youth", "health", "housing", "training", "employment",
    )

    ANALYSIS_SYSTEM_PROMPT = _ANALYSIS_SYSTEM_PROMPT
    ANALYSIS_PROMPT = _ANALYSIS_PROMPT
    ANALYSIS_RETRY_PROMPT = _ANALYSIS_RETRY_PROMPT
    ENTITY_SYSTEM_PROMPT = _ENTITY_SYSTEM_PROMPT
    ENTITY_PROMPT = _ENTITY_PROMPT
    ENTITY_RETRY_PROMPT = _ENTITY_RETRY_PROMPT

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        self.llm = client or llm_client

    # ------------------------------------------------------------------
    # Per-chunk extraction
    # ------------------------------------------------------------------

    async def analyze_chunk(
        self,
        chunk_text: str,
        document_context: str = "",
    ) -> Dict[str, Any]:
        """
        Analyse one chunk.

        Returns a dict with keys summary, themes, quotes, keywords, insights.
        All lists are empty when the chunk is too short or the LLM fails.
        """
        empty: Dict[str, Any] = {
            "summary": "", "themes": [], "quotes": [], "keywords": [], "insights": [],
        }
        if self._is_too_short(chunk_text):
            return empty

        truncated = chunk_text[: self.MAX_CHUNK_CHARS]
        context_line = f"Context: {document_context}\n" if document_context else ""
        success, raw = await self.llm.call_json(
            self.ANALYSIS_PROMPT.format(context_line=context_line, chunk_text=truncated),
            system=self.ANALYSIS_SYSTEM_PROMPT,
            max_tokens=2000,
            retry_prompt=self.ANALYSIS_RETRY_PROMPT.format(chunk_text=truncated),
        )
        if not success or not isinstance(raw, dict):
            return empty

        result = {
            "summary": str(raw.get("summary") or "").strip(),
            "themes": self._validate_themes(raw.get("themes")),
            "quotes": self._validate_quotes(raw.get("quotes")),
            "keywords": self._validate_keywords(raw.get("keywords")),
            "insights": self._validate_insights(raw.get("insights")),
        }
        logger.info(
            "analyze_chunk: %d themes, %d quotes, %d insights, %d keywords",
            len(result["themes"]),
            len(result["quotes"]),
            len(result["insights"]),
            len(result["keywords"]),
        )
        return result

    async def extract_entities(
        self,
        chunk_text: str,
        context: str = "",
    ) -> List[Dict[str, Any]]:
        """
        Extract named entities from one chunk.

        Returns dicts with keys name, canonical_name, entity_type, confidence,
        mentions, contexts, importance.  Unknown types become ``concept``;
        entities below MIN_ENTITY_CONFIDENCE are dropped.
        """
        if self._is_too_short(chunk_text):
            return []

        truncated = chunk_text[: self.MAX_CHUNK_CHARS]
        context_line = f"Context: {context}\n" if context else ""
        success, raw = await self.llm.call_json(
            self.ENTITY_PROMPT.format(context_line=context_line, chunk_text=truncated),
            system=self.ENTITY_SYSTEM_PROMPT,
            max_tokens=1500,
            retry_prompt=self.ENTITY_RETRY_PROMPT.format(chunk_text=truncated),
        )
        if not success:
            return []

        items = raw.get("entities") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            return []

        entities: List[Dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or item.get("canonicalName") or "").strip()
            if not name:
                continue
            confidence = clamp(item.get("confidence", 0.5))
            if confidence < self.MIN_ENTITY_CONFIDENCE:
                continue

            try:
                entity_type = EntityType(str(item.get("type", "")).lower())
            except ValueError:
                entity_type = EntityType.CONCEPT

            contexts = item.get("contexts") or []
            if not isinstance(contexts, list):
                contexts = [str(contexts)]

            entities.append({
                "name": name,
                "canonical_name": str(item.get("canonicalName") or name).strip(),
                "entity_type": entity_type,
                "confidence": confidence,
                "mentions": max(1, self._to_int(item.get("mentions"), 1)),
                "contexts": [str(c).strip() for c in contexts if str(c).strip()],
                "importance": int(clamp(self._to_int(item.get("importance"), 5), 1, 10)),
            })

        logger.info("extract_entities: %d entities from chunk", len(entities))
        return entities

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def aggregate(
        self,
        chunk_analyses: Sequence[ChunkAnalysis],
        full_text: str = "",
        page_breaks: Optional[List[int]] = None,
    ) -> DocumentAnalysis:
        """Merge per-chunk results into one document-level analysis."""
        themes: Dict[str, Dict[str, Any]] = {}
        quotes: Dict[str, Dict[str, Any]] = {}
        insights: Dict[str, Dict[str, Any]] = {}
        keywords: Dict[str, Dict[str, Any]] = {}
        entities: Dict[str, Dict[str, Any]] = {}
        summaries: List[str] = []

        for analysis in chunk_analyses:
            result = analysis.result
            if result.get("summary"):
                summaries.append(result["summary"])

            for theme in result.get("themes", []):
                slug = slugify(theme["name"])
                existing = themes.get(slug)
                if existing is None:
                    themes[slug] = {
                        "name": theme["name"],
                        "slug": slug,
                        "category": self.categorize_theme(theme["name"]),
                        "confidence": theme["confidence"],
                        "evidence": theme["evidence"],
                        "evidence_count": 1,
                        "supporting_chunks": [analysis.chunk_index],
                    }
                    continue
                existing["confidence"] = max(existing["confidence"], theme["confidence"])
                existing["evidence_count"] += 1
                if not existing["evidence"] and theme["evidence"]:
                    existing["evidence"] = theme["evidence"]
                if analysis.chunk_index not in existing["supporting_chunks"]:
                    existing["supporting_chunks"].append(analysis.chunk_index)

            for quote in result.get("quotes", []):
                key = normalize_text(quote["text"])
                if not key or key in quotes:
                    continue
                start, end = self._locate_quote(quote["text"], analysis, full_text)
                page = analysis.start_page
                if start is not None and page_breaks:
                    page = find_page_number(start, page_breaks)
                quotes[key] = dict(
                    quote,
                    chunk_index=analysis.chunk_index,
                    start_position=start,
                    end_position=end,
                    page_number=page,
                )

            for insight in result.get("insights", []):
                key = normalize_text(insight["text"])
                if key and key not in insights:
                    insights[key] = insight

            for keyword in result.get("keywords", []):
                term = keyword["term"].lower()
                if term in keywords:
                    keywords[term]["frequency"] += keyword["frequency"]
                else:
                    keywords[term] = dict(keyword, term=term)

            for entity in analysis.entities:
                key = clean_entity_name(entity["canonical_name"]) or clean_entity_name(entity["name"])
                if not key:
                    continue
                existing = entities.get(key)
                if existing is None:
                    entities[key] = dict(
                        entity, contexts=list(entity["contexts"][: self.MAX_ENTITY_CONTEXTS])
                    )
                    continue
                existing["mentions"] += entity["mentions"]
                existing["confidence"] = max(existing["confidence"], entity["confidence"])
                existing["importance"] = max(existing["importance"], entity["importance"])
                for ctx in entity["contexts"]:
                    if len(existing["contexts"]) >= self.MAX_ENTITY_CONTEXTS:
                        break
                    if ctx not in existing["contexts"]:
                        existing["contexts"].append(ctx)

        return DocumentAnalysis(
            summary=" ".join(summaries[:3]),
            themes=sorted(themes.values(), key=lambda t: t["confidence"], reverse=True),
            quotes=list(quotes.values()),
            insights=sorted(insights.values(), key=lambda i: i["importance"], reverse=True),
            keywords=sorted(keywords.values(), key=lambda k: k["frequency"], reverse=True),
            entities=sorted(entities.values(), key=lambda e: e["importance"], reverse=True),
        )

    @classmethod
    def categorize_theme(cls, name: str) -> str:
        lower = name.lower()
        for category in cls.THEME_CATEGORIES:
            if category in lower:
                return category
        return "general"

    @staticmethod
    def confidence_level(score: float) -> str:
        if score >= 0.9:
            return "excellent"
        if score >= 0.8:
            return "high"
        if score >= 0.6:
            return "medium"
        if score >= 0.4:
            return "low"
        return "very_low"

    @staticmethod
    def find_duplicate_themes(names: Sequence[str]) -> List[str]:
        """Names that collapse onto an earlier name once plurals and case are ignored."""
        seen: Dict[str, str] = {}
        duplicates: List[str] = []
        for name in names:
            key = " ".join(w.rstrip("s") for w in clean_entity_name(name).split())
            if key in seen:
                duplicates.append(name)
            else:
                seen[key] = name
        return duplicates

    # ------------------------------------------------------------------
    # Full document run
    # ------------------------------------------------------------------

    async def process_document(
        self,
        document_id: int,
        db: AsyncSession,
        on_chunk_done=None,
    ) -> AnalysisSummary:
        """
        Analyse every chunk of a document and replace its stored analysis.

        1. Load the document and its chunks.
        2. analyze_chunk + extract_entities for each chunk long enough.
        3. Aggregate across chunks.
        4. Classify each theme and quote for cultural sensitivity.
        5. Delete the previous analysis rows and save the new ones.
        6. Raise the document's sensitivity to the highest level found and
           file automatic cultural reviews.

        *on_chunk_done* is called with the number of chunks finished so far.
        """
        document = await db.get(Document, document_id)
        if document is None:
            raise ValueError(f"Document {document_id} not found in database")

        chunk_result = await db.execute(
            select(Chunk).where(Chunk.document_id == document_id).order_by(Chunk.chunk_index)
        )
        chunks = chunk_result.scalars().all()
        document_context = document.filename
        if document.category:
            document_context = f"{document.filename} ({document.category})"

        analyses: List[ChunkAnalysis] = []
        chunks_skipped = 0
        errors: List[str] = []

        for done, chunk in enumerate(chunks, start=1):
            if self._is_too_short(chunk.content):
                chunks_skipped += 1
                logger.debug(
                    "Skipping short chunk %d (~%d words)",
                    chunk.chunk_index,
                    len(chunk.content.split()),
                )
            else:
                try:
                    result = await self.analyze_chunk(chunk.content, document_context)
                    entities = await self.extract_entities(chunk.content, document_context)
                    analyses.append(
                        ChunkAnalysis(
                            chunk_index=chunk.chunk_index,
                            start_char=chunk.start_char,
                            end_char=chunk.end_char,
                            start_page=chunk.start_page,
                            content=chunk.content,
                            result=result,
                            entities=entities,
                        )
                    )
                except Exception as exc:
                    msg = f"Chunk {chunk.chunk_index}: {exc}"
                    errors.append(msg)
                    logger.error("process_document error — %s", msg, exc_info=True)
                    chunks_skipped += 1
            if on_chunk_done is not None:
                on_chunk_done(done)

        page_breaks = (document.metadata_json or {}).get("page_breaks")
        aggregated = self.aggregate(analyses, document.content_text or "", page_breaks)

        for model in (DocumentTheme, DocumentQuote, DocumentInsight, DocumentKeyword, Entity):
            await db.execute(delete(model).where(model.document_id == document_id))

        model_name = self.llm.model
        levels: List[CulturalSensitivity] = [document.cultural_sensitivity]
        flagged: List[tuple] = []

        for theme in aggregated.themes:
            safety = cultural_safety.analyze_cultural_safety(
                f"{theme['name']} {theme['evidence']}", "theme"
            )
            levels.append(safety.level)
            row = DocumentTheme(
                document_id=document_id,
                name=theme["name"][:255],
                slug=theme["slug"],
                category=theme["category"],
                confidence=theme["confidence"],
                evidence=theme["evidence"],
                evidence_count=theme["evidence_count"],
                supporting_chunks=theme["supporting_chunks"],
                cultural_sensitivity=safety.level,
                requires_elder_review=safety.elder_approval_required,
                ai_model=model_name,
            )
            db.add(row)
            if safety.elder_approval_required:
                flagged.append((row, "theme", theme["name"], safety))

        for quote in aggregated.quotes:
            safety = cultural_safety.analyze_cultural_safety(
                f"{quote['text']} {quote['context']}", "quote"
            )
            levels.append(safety.level)
            row = DocumentQuote(
                document_id=document_id,
                chunk_index=quote["chunk_index"],
                quote_text=quote["text"],
                context=quote["context"],
                significance=quote["significance"],
                confidence=quote["confidence"],
                start_position=quote["start_position"],
                end_position=quote["end_position"],
                page_number=quote["page_number"],
                cultural_sensitivity=safety.level,
                requires_elder_approval=safety.elder_approval_required,
                ai_model=model_name,
            )
            db.add(row)
            if safety.elder_approval_required:
                flagged.append((row, "quote", quote["text"], safety))

        for insight in aggregated.insights:
            db.add(
                DocumentInsight(
                    document_id=document_id,
                    text=insight["text"],
                    category=insight["category"],
                    importance=insight["importance"],
                    confidence=insight["confidence"],
                    evidence=insight["evidence"],
                )
            )

        for keyword in aggregated.keywords:
            db.add(
                DocumentKeyword(
                    document_id=document_id,
                    term=keyword["term"][:255],
                    frequency=keyword["frequency"],
                    category=keyword["category"],
                )
            )

        for entity in aggregated.entities:
            db.add(
                Entity(
                    document_id=document_id,
                    name=entity["name"][:255],
                    canonical_name=entity["canonical_name"][:255],
                    entity_type=entity["entity_type"],
                    confidence=entity["confidence"],
                    mentions=entity["mentions"],
                    contexts=entity["contexts"],
                    importance=entity["importance"],
                )
            )

        if aggregated.summary:
            document.summary = aggregated.summary

        level = cultural_safety.max_level(levels)
        if level != document.cultural_sensitivity:
            logger.info(
                "Document %d sensitivity raised %s -> %s",
                document_id,
                document.cultural_sensitivity.value,
                level.value,
            )
            document.cultural_sensitivity = level
        if cultural_safety.CULTURAL_SAFETY_LEVELS[level].elder_approval_required or flagged:
            document.requires_elder_review = True

        await db.flush()

        for row, content_type, text, safety in flagged:
            await cultural_safety.submit_for_cultural_review(
                db,
                content_id=row.id,
                content_type=content_type,
                content=text,
                community_id=document.community_id,
                analysis=safety,
            )

        await db.commit()

        summary = AnalysisSummary(
            document_id=document_id,
            chunks_analyzed=len(analyses),
            chunks_skipped=chunks_skipped,
            themes_saved=len(aggregated.themes),
            quotes_saved=len(aggregated.quotes),
            insights_saved=len(aggregated.insights),
            keywords_saved=len(aggregated.keywords),
            entities_saved=len(aggregated.entities),
            cultural_sensitivity=document.cultural_sensitivity,
            requires_elder_review=document.requires_elder_review,
            errors=errors,
        )
        logger.info(
            "process_document %d: %d chunks analysed, %d themes, %d quotes, %d entities",
            document_id,
            summary.chunks_analyzed,
            summary.themes_saved,
            summary.quotes_saved,
            summary.entities_saved,
        )
        return summary

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _validate_themes(self, raw: Any) -> List[Dict[str, Any]]:
        themes: List[Dict[str, Any]] = []
        seen: set = set()
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or "").strip()
            if not name or slugify(name) in seen:
                continue
            seen.add(slugify(name))
            themes.append({
                "name": name,
                "confidence": clamp(item.get("confidence", 0.7)),
                "evidence": str(item.get("evidence") or "").strip(),
            })
        return themes

    def _validate_quotes(self, raw: Any) -> List[Dict[str, Any]]:
        quotes: List[Dict[str, Any]] = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip().strip('"“”').strip()
            if not text:
                continue
            quotes.append({
                "text": text,
                "context": str(item.get("context") or "").strip(),
                "significance": str(item.get("significance") or "").strip(),
                "confidence": clamp(item.get("confidence", 0.7)),
            })
        return quotes

    def _validate_keywords(self, raw: Any) -> List[Dict[str, Any]]:
        keywords: List[Dict[str, Any]] = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            term = str(item.get("term") or "").strip()
            if not term:
                continue
            category = str(item.get("category") or "general").lower()
            if category not in self.VALID_KEYWORD_CATEGORIES:
                category = "general"
            keywords.append({
                "term": term,
                "frequency": max(1, self._to_int(item.get("frequency"), 1)),
                "category": category,
            })
        return keywords

    def _validate_insights(self, raw: Any) -> List[Dict[str, Any]]:
        insights: List[Dict[str, Any]] = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict):
                continue
            text = str(item.get("text") or "").strip()
            if not text:
                continue
            try:
                category = InsightCategory(str(item.get("category", "")).lower())
            except ValueError:
                category = InsightCategory.RECOMMENDATION
            insights.append({
                "text": text,
                "category": category,
                "importance": int(clamp(self._to_int(item.get("importance"), 5), 1, 10)),
                "confidence": clamp(item.get("confidence", 0.7)),
                "evidence": str(item.get("evidence") or "").strip() or None,
            })
        return insights

    @staticmethod
    def _locate_quote(
        text: str,
        analysis: ChunkAnalysis,
        full_text: str,
    ) -> tuple:
        """Document offsets of a quote; searches the chunk's span first, then the whole text."""
        if full_text:
            span = find_text_span(full_text[analysis.start_char: analysis.end_char], text)
            if span is not None:
                return span[0] + analysis.start_char, span[1] + analysis.start_char
            span = find_text_span(full_text, text)
            if span is not None:
                return span
            return None, None

        span = find_text_span(analysis.content, text)
        if span is None:
            return None, None
        return span[0] + analysis.start_char, span[1] + analysis.start_char

    def _is_too_short(self, text: str) -> bool:
        return len((text or "").split()) < self.MIN_CHUNK_WORDS

    @staticmethod
    def _to_int(value: Any, default: int) -> int:
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


# Module-level singleton
analysis_service = DocumentAnalysisService()
