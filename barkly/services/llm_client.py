"""
Async LLM client shared by the analysis services.

``LLM_PROVIDER`` picks the wire format: ``ollama`` posts to /api/generate,
``openai`` to any OpenAI-compatible /v1/chat/completions endpoint.  Transport
and HTTP errors are logged and surface as an empty reply, which callers
treat as "LLM unavailable".

Models wrap JSON in prose, code fences or Python literals, or stop before
closing every bracket; ``parse_json_robust`` tries a fixed sequence of
repaired candidates until one decodes.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

import httpx

from barkly.config import settings

logger = logging.getLogger(__name__)


class LLMClient:
    """
    Provider-agnostic completion client.

    At most MAX_CONCURRENT requests are in flight; ``call_json`` makes up to
    MAX_JSON_RETRIES attempts when the reply does not parse.
    """

    MAX_CONCURRENT: int = 2
    MAX_JSON_RETRIES: int = 2
    TEMPERATURE: float = 0.1

    def __init__(self, provider: Optional[str] = None) -> None:
        self.provider = (provider or settings.LLM_PROVIDER).lower()
        if self.provider == "openai":
            self.base_url = settings.OPENAI_BASE_URL.rstrip("/")
            self.model = settings.OPENAI_MODEL
        else:
            self.base_url = settings.OLLAMA_BASE_URL.rstrip("/")
            self.model = settings.OLLAMA_LLM_MODEL
        self.timeout = httpx.Timeout(float(settings.OLLAMA_TIMEOUT), connect=10.0)
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    async def call(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1000,
    ) -> str:
        """The model's text reply, or ``""`` when the provider fails."""
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    if self.provider == "openai":
                        return await self._complete_openai(client, prompt, system, max_tokens)
                    return await self._complete_ollama(client, prompt, system, max_tokens)
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "%s returned HTTP %d: %s",
                    self.provider,
                    exc.response.status_code,
                    exc.response.text[:300],
                )
            except httpx.TimeoutException:
                logger.error("%s request timed out after %.0f s", self.provider, self.timeout.read)
            except httpx.HTTPError as exc:
                logger.error("%s request failed: %s", self.provider, exc)
            except ValueError as exc:
                logger.error("%s sent a body that is not JSON: %s", self.provider, exc)
        return ""

    async def call_json(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1500,
        retry_prompt: Optional[str] = None,
    ) -> Tuple[bool, Any]:
        """
        Ask for JSON and parse the reply.

        Attempts after the first use *retry_prompt* when one is given.  An
        empty reply ends the loop at once, since the provider is down rather
        than confused.  Returns ``(success, parsed_value)``.
        """
        for attempt in range(1, self.MAX_JSON_RETRIES + 1):
            current = prompt if attempt == 1 else (retry_prompt or prompt)
            reply = await self.call(current, system=system, max_tokens=max_tokens)
            if not reply:
                logger.warning("Empty LLM reply on attempt %d; not retrying", attempt)
                return False, None

            ok, parsed = parse_json_robust(reply)
            if ok:
                if attempt > 1:
                    logger.info("LLM reply parsed on attempt %d", attempt)
                return True, parsed
            logger.warning(
                "LLM reply is not JSON (attempt %d/%d)", attempt, self.MAX_JSON_RETRIES
            )

        logger.error("No parsable JSON after %d attempts", self.MAX_JSON_RETRIES)
        return False, None

    async def is_available(self) -> bool:
        """True when the provider's model listing endpoint answers 200."""
        path = "/v1/models" if self.provider == "openai" else "/api/tags"
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.base_url}{path}", headers=self._openai_headers())
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("LLM health check failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Provider requests
    # ------------------------------------------------------------------

    async def _complete_ollama(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
    ) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"num_predict": max_tokens, "temperature": self.TEMPERATURE},
        }
        if system:
            payload["system"] = system
        resp = await client.post(f"{self.base_url}/api/generate", json=payload)
        resp.raise_for_status()
        return resp.json().get("response") or ""

    async def _complete_openai(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
    ) -> str:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        resp = await client.post(
            f"{self.base_url}/v1/chat/completions",
            headers=self._openai_headers(),
            json={
                "model": self.model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": self.TEMPERATURE,
            },
        )
        resp.raise_for_status()
        choices = resp.json().get("choices") or [{}]
        return (choices[0].get("message") or {}).get("content") or ""

    def _openai_headers(self) -> Dict[str, str]:
        if self.provider != "openai" or not settings.OPENAI_API_KEY:
            return {}
        return {"Authorization": f"Bearer {settings.OPENAI_API_KEY}"}


# ---------------------------------------------------------------------------
# JSON recovery
# ---------------------------------------------------------------------------

_FENCES = re.compile(r"^```[a-z]*[ \t]*\n?|\n?```\s*$", re.IGNORECASE)

_REPAIRS = (
    (re.compile(r",(\s*[}\]])"), r"\1"),
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
    (re.compile(r"\bNone\b"), "null"),
    # // comments only at line start or after whitespace, so URLs survive
    (re.compile(r"(^|\s)//[^\n]*"), r"\1"),
)

_CLOSERS = ("]", "}", "}]", "]}", "}]}")


def parse_json_robust(response: str) -> Tuple[bool, Any]:
    """
    Decode JSON from an LLM reply, repairing it where needed.

    Candidates, in order: the raw reply, the reply without code fences, the
    repaired reply, each balanced ``{…}``/``[…]`` fragment (raw, then
    repaired), and finally the repaired reply with missing closers added.
    Returns ``(success, parsed_value)``.
    """
    if not response or not response.strip():
        return False, None

    for candidate in _candidates(response):
        try:
            return True, json.loads(candidate)
        except ValueError:
            continue

    logger.warning("Could not recover JSON from LLM reply: %s", response[:400])
    return False, None


def _candidates(response: str) -> Iterator[str]:
    text = response.strip()
    yield text

    text = _FENCES.sub("", text).strip()
    yield text

    repaired = _repair(text)
    yield repaired

    for fragment in _balanced_fragments(text):
        yield fragment
        yield _repair(fragment)

    for closer in _CLOSERS:
        yield repaired + closer


def _repair(text: str) -> str:
    for pattern, replacement in _REPAIRS:
        text = pattern.sub(replacement, text)
    return text.strip()


def _balanced_fragments(text: str) -> Iterator[str]:
    """The first balanced object and array in *text*, earliest opener first."""
    openers = sorted(
        (text.find(open_b), open_b, close_b)
        for open_b, close_b in (("{", "}"), ("[", "]"))
        if open_b in text
    )
    for start, open_b, close_b in openers:
        end = _matching_close(text, start, open_b, close_b)
        if end is not None:
            yield text[start:end + 1]


def _matching_close(text: str, start: int, open_b: str, close_b: str) -> Optional[int]:
    """Index of the bracket closing ``text[start]``, skipping string contents."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return index
    return None


def clamp(value: Any, lo: float = 0.0, hi: float = 1.0) -> float:
    """*value* as a float within [lo, hi]; the midpoint if it is not a number."""
    try:
        return max(lo, min(hi, float(value)))
    except (TypeError, ValueError):
        return (lo + hi) / 2.0


# Module-level singleton
llm_client = LLMClient()
