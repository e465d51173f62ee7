"""
Common utility functions and helpers.
"""
from typing import Optional, Tuple
import hashlib
import re
import unicodedata


def normalize_text(text: str) -> str:
    """
    Normalize text for comparison.

    Lower-cases, folds curly quotes, drops punctuation and collapses
    whitespace, so two renderings of the same quote compare equal.

    Args:
        text: Raw text string

    Returns:
        Normalized text
    """
    text = unicodedata.normalize('NFKC', text)
    text = text.replace('’', "'").replace('‘', "'")
    text = text.replace('“', '"').replace('”', '"')
    text = text.lower()
    text = re.sub(r'[^\w\s]', '', text)
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


def clean_entity_name(name: str) -> str:
    """
    Canonical form of an entity or theme name for deduplication.

    Args:
        name: Raw name

    Returns:
        Cleaned name
    """
    name = name.lower().strip()
    # Remove leading articles only; "The Smith Family" and "Smith Family" match
    name = re.sub(r'^(the|a|an)\s+', '', name)
    name = re.sub(r'[^\w\s&-]', '', name)
    name = re.sub(r'\s+', ' ', name)
    return name.strip()


def slugify(text: str, max_length: int = 100) -> str:
    """
    URL-safe slug: lower-case ASCII words joined by hyphens.

    Args:
        text: Text to slugify
        max_length: Maximum slug length

    Returns:
        Slug, or "untitled" when nothing usable remains
    """
    text = unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')
    text = re.sub(r'[^\w\s-]', '', text.lower())
    text = re.sub(r'[\s_-]+', '-', text).strip('-')
    return text[:max_length].rstrip('-') or 'untitled'


def generate_hash(text: str) -> str:
    """
    Generate SHA256 hash of text.

    Args:
        text: Text to hash

    Returns:
        Hex digest of hash
    """
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def find_text_span(haystack: str, needle: str) -> Optional[Tuple[int, int]]:
    """
    ``(start, end)`` of *needle* in *haystack*, ignoring case and whitespace runs.

    Returns None when the text does not occur.
    """
    needle = needle.strip().strip('"“”')
    if not needle:
        return None

    index = haystack.find(needle)
    if index != -1:
        return index, index + len(needle)

    words = [re.escape(w) for w in needle.split()]
    pattern = re.compile(r'\s+'.join(words), re.IGNORECASE)
    match = pattern.search(haystack)
    return (match.start(), match.end()) if match else None


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


LIKE_ESCAPE = "\\"


def contains_pattern(fragment: str) -> str:
    """LIKE pattern matching *fragment* literally anywhere; use with ``escape=LIKE_ESCAPE``."""
    escaped = (
        fragment.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"
