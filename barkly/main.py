"""
Barkly research backend: FastAPI application factory and wiring.

Startup creates tables, reports which optional services (LLM, embeddings,
OCR) are reachable, and prepares the upload directory.  Every response gets
an ``X-Process-Time`` header; unhandled errors become structured JSON.
"""
import logging
import os
import shutil
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from barkly.config import settings
from barkly.database import close_db, init_db
from barkly.routers import communities, cultural, documents, entities, health, search
from barkly.services.embedding import embedding_service
from barkly.services.llm_client import llm_client

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Polled by the frontend; not worth a log line each
QUIET_PATHS = frozenset({"/", "/api/health", "/api/health/"})


# ---------------------------------------------------------------------------
# Startup checks
# ---------------------------------------------------------------------------

async def _report_optional_services() -> None:
    """Log which optional services answer.  The API starts either way."""
    if await llm_client.is_available():
        logger.info("✓ LLM provider '%s' reachable (model %s)", llm_client.provider, llm_client.model)
    else:
        logger.warning(
            "⚠ LLM provider '%s' unreachable at %s; AI analysis is disabled until it is up",
            llm_client.provider,
            llm_client.base_url,
        )

    if await embedding_service.check_ollama_health():
        logger.info("✓ Embedding model '%s' reachable", embedding_service.model)
    else:
        logger.warning("⚠ Embedding service unreachable; chunks are stored without vectors")

    if settings.OCR_ENABLED and not (
        os.path.exists(settings.TESSERACT_CMD) or shutil.which("tesseract")
    ):
        logger.warning("⚠ tesseract not found; scanned PDFs cannot be extracted")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown event handler."""
    logger.info("Starting Barkly research backend …")

    # Required: raises if the database is unreachable
    await init_db()
    logger.info("✓ Database ready")

    await _report_optional_services()

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    logger.info("✓ Upload directory: %s", os.path.abspath(settings.UPLOAD_DIR))
    logger.info(
        "Barkly backend ready on http://%s:%d (docs at /docs)", settings.HOST, settings.PORT
    )

    yield  # ← server is running

    logger.info("Shutting down Barkly backend …")
    await close_db()


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Barkly Research API",
    description=(
        "**Barkly** — community research platform with cultural safety built in.\n\n"
        "Upload community documents (PDF/DOCX/TXT/MD), extract their text with "
        "confidence scores, analyse themes, quotes and insights, and route "
        "culturally sensitive content through elder review.\n\n"
        "Key endpoints:\n"
        "- `POST /api/documents/upload` — upload documents\n"
        "- `POST /api/documents/verify-extraction` — check extraction quality\n"
        "- `POST /api/documents/{id}/process` — AI analysis of one document\n"
        "- `GET  /api/documents/{id}/review` — analysis for manual verification\n"
        "- `POST /api/cultural/elder-reviews` — request elder review\n"
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request / response logging middleware
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log every request with method, path, status code, and elapsed time.
    Attaches an ``X-Process-Time`` header (milliseconds) to every response.
    """
    t0 = time.monotonic()
    response = await call_next(request)
    elapsed_ms = round((time.monotonic() - t0) * 1000, 2)

    if request.url.path not in QUIET_PATHS:
        logger.info(
            "%s %s → %d  (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
        )

    response.headers["X-Process-Time"] = f"{elapsed_ms}ms"
    return response


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return a structured JSON error for any unhandled exception."""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error": str(exc),
            "path": str(request.url.path),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(health.router,       prefix="/api/health",      tags=["Health"])
app.include_router(communities.router,  prefix="/api/communities", tags=["Communities"])
app.include_router(documents.router,    prefix="/api/documents",   tags=["Documents"])
app.include_router(cultural.router,     prefix="/api/cultural",    tags=["Cultural Safety"])
app.include_router(entities.router,     prefix="/api/entities",    tags=["Entities"])
app.include_router(search.router,       prefix="/api/search",      tags=["Search"])


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

@app.get("/", tags=["Root"], include_in_schema=False)
async def root():
    """API root — returns basic service info."""
    return {
        "name": "Barkly Research API",
        "version": "0.1.0",
        "description": "Community Research Platform Backend",
        "docs": "/docs",
        "health": "/api/health",
        "endpoints": {
            "communities": "/api/communities",
            "documents": "/api/documents",
            "cultural": "/api/cultural",
            "entities": "/api/entities",
            "search": "/api/search",
        },
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "barkly.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level="info",
    )
