"""
Setup verification script for the Barkly research backend.
Checks dependencies, services and configuration before first run.
"""
import asyncio
import os
import shutil
import sys
from typing import List, Tuple

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_status(message: str, status: bool):
    """Print colored status message."""
    symbol = f"{GREEN}✓{RESET}" if status else f"{RED}✗{RESET}"
    print(f"{symbol} {message}")


async def check_python_version() -> bool:
    """Check Python version is 3.11+."""
    version = sys.version_info
    if version.major == 3 and version.minor >= 11:
        print_status(f"Python version: {version.major}.{version.minor}.{version.micro}", True)
        return True
    else:
        print_status(f"Python version {version.major}.{version.minor} (requires 3.11+)", False)
        return False


async def check_dependencies() -> bool:
    """Check if required packages are installed."""
    required_packages = [
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "asyncpg",
        "pgvector",
        "pydantic_settings",
        "httpx",
        "aiofiles",
        "fitz",
        "pypdf",
        "docx",
        "pytesseract",
        "PIL",
        "langdetect",
    ]

    all_installed = True
    for package in required_packages:
        try:
            __import__(package)
            print_status(f"Package '{package}' installed", True)
        except ImportError:
            print_status(f"Package '{package}' missing", False)
            all_installed = False

    return all_installed


async def check_env_file() -> bool:
    """Check if .env file exists."""
    if os.path.exists(".env"):
        print_status(".env file exists", True)
        return True
    else:
        print_status(".env file missing (defaults from barkly/config.py apply)", False)
        return False


async def check_upload_dir() -> bool:
    """Check if upload directory exists."""
    from barkly.config import settings

    if os.path.exists(settings.UPLOAD_DIR):
        print_status(f"Upload directory exists: {settings.UPLOAD_DIR}", True)
        return True
    else:
        print_status("Upload directory missing (will be created on startup)", False)
        return False


async def check_tesseract() -> bool:
    """OCR is only needed for scanned PDFs; a missing binary is reported, not fatal."""
    from barkly.config import settings

    if not settings.OCR_ENABLED:
        print_status("OCR disabled (OCR_ENABLED=false)", True)
        return True

    found = os.path.exists(settings.TESSERACT_CMD) or shutil.which("tesseract") is not None
    print_status(f"Tesseract binary: {'Found' if found else 'Missing'}", found)
    if not found:
        print(f"  {YELLOW}Scanned PDFs will fail extraction until tesseract is installed{RESET}")
    return found


async def check_llm() -> bool:
    """Check the configured LLM provider and, for Ollama, the embedding model."""
    from barkly.config import settings
    from barkly.services.embedding import embedding_service
    from barkly.services.llm_client import llm_client

    llm_ok = await llm_client.is_available()
    print_status(
        f"LLM provider '{llm_client.provider}' at {llm_client.base_url} (model {llm_client.model})",
        llm_ok,
    )

    embed_ok = await embedding_service.check_ollama_health()
    print_status(
        f"Embedding service at {settings.OLLAMA_BASE_URL} (model {settings.OLLAMA_EMBED_MODEL})",
        embed_ok,
    )

    if not (llm_ok and embed_ok):
        print(f"  {YELLOW}Uploads work without these; AI analysis and similarity search do not{RESET}")
        print(f"  {YELLOW}Install Ollama from: https://ollama.ai/{RESET}")
    return llm_ok and embed_ok


async def check_postgres() -> bool:
    """Check the database connection and the pgvector extension."""
    from sqlalchemy import text
    from sqlalchemy.ext.asyncio import create_async_engine

    from barkly.config import settings

    engine = create_async_engine(settings.DATABASE_URL)
    try:
        async with engine.connect() as conn:
            result = await conn.execute(
                text("SELECT COUNT(*) FROM pg_extension WHERE extname = 'vector'")
            )
            installed = (result.scalar() or 0) > 0

        print_status("PostgreSQL connection successful", True)
        print_status(f"pgvector extension: {'Installed' if installed else 'Missing'}", installed)
        return installed

    except Exception as e:
        print_status(f"PostgreSQL connection failed: {str(e)}", False)
        print(f"  {YELLOW}Check DATABASE_URL and that PostgreSQL is running{RESET}")
        return False
    finally:
        await engine.dispose()


async def main():
    """Run all verification checks."""
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}Barkly Backend - Setup Verification{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

    checks: List[Tuple[str, callable]] = [
        ("Python Version", check_python_version),
        ("Dependencies", check_dependencies),
        ("Environment File", check_env_file),
        ("Upload Directory", check_upload_dir),
        ("Tesseract OCR", check_tesseract),
        ("PostgreSQL + pgvector", check_postgres),
        ("LLM + Embeddings", check_llm),
    ]

    results = []

    for check_name, check_func in checks:
        print(f"\n{BLUE}Checking {check_name}...{RESET}")
        try:
            result = await check_func()
            results.append(result)
        except Exception as e:
            print_status(f"Error during check: {str(e)}", False)
            results.append(False)

    # Summary
    print(f"\n{BLUE}{'='*60}{RESET}")
    passed = sum(results)
    total = len(results)

    if passed == total:
        print(f"{GREEN}✓ All checks passed! ({passed}/{total}){RESET}")
        print(f"\n{GREEN}You're ready to run the backend:{RESET}")
        print(f"  alembic upgrade head")
        print(f"  uvicorn barkly.main:app --reload")
    else:
        print(f"{RED}✗ Some checks failed ({passed}/{total} passed){RESET}")
        print(f"\n{YELLOW}Please fix the issues above before running the backend.{RESET}")
        sys.exit(1)

    print(f"{BLUE}{'='*60}{RESET}\n")


if __name__ == "__main__":
    asyncio.run(main())
