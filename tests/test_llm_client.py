"""Tests for LLM reply parsing and the JSON retry loop."""
import pytest

from barkly.services.llm_client import LLMClient, clamp, parse_json_robust


def test_parse_plain_json():
    assert parse_json_robust('{"a": 1}') == (True, {"a": 1})


def test_parse_fenced_json_with_trailing_comma():
    ok, value = parse_json_robust('```json\n{"a": [1, 2,]}\n```')
    assert ok
    assert value == {"a": [1, 2]}


def test_parse_python_literals_inside_prose():
    ok, value = parse_json_robust('Here you go: {"a": True, "b": None} hope it helps')
    assert ok
    assert value == {"a": True, "b": None}


def test_parse_unclosed_structure():
    ok, value = parse_json_robust('{"themes": [{"name": "Youth"}')
    assert ok
    assert value == {"themes": [{"name": "Youth"}]}


def test_parse_keeps_urls_in_strings():
    ok, value = parse_json_robust('{"url": "http://example.org/a",}')
    assert ok
    assert value == {"url": "http://example.org/a"}


def test_parse_bare_array():
    ok, value = parse_json_robust('Entities:\n[{"name": "Tennant Creek"}]')
    assert ok
    assert value == [{"name": "Tennant Creek"}]


def test_parse_failures():
    assert parse_json_robust("") == (False, None)
    assert parse_json_robust("no json here") == (False, None)


def test_clamp():
    assert clamp("0.5") == 0.5
    assert clamp(2) == 1.0
    assert clamp(-1) == 0.0
    assert clamp("high") == 0.5
    assert clamp(None, 1, 10) == 5.5
    assert clamp(15, 1, 10) == 10


@pytest.mark.asyncio
async def test_call_json_retries_with_simpler_prompt(monkeypatch):
    client = LLMClient("ollama")
    replies = iter(["I cannot answer that", '{"ok": true}'])
    prompts = []

    async def _call(prompt, system=None, max_tokens=1000):
        prompts.append(prompt)
        return next(replies)

    monkeypatch.setattr(client, "call", _call)
    ok, value = await client.call_json("full prompt", retry_prompt="simple prompt")

    assert (ok, value) == (True, {"ok": True})
    assert prompts == ["full prompt", "simple prompt"]


@pytest.mark.asyncio
async def test_call_json_gives_up_after_retries(monkeypatch):
    client = LLMClient("ollama")
    prompts = []

    async def _call(prompt, system=None, max_tokens=1000):
        prompts.append(prompt)
        return "still not json"

    monkeypatch.setattr(client, "call", _call)
    assert await client.call_json("prompt") == (False, None)
    assert len(prompts) == LLMClient.MAX_JSON_RETRIES


@pytest.mark.asyncio
async def test_call_json_empty_reply_skips_retries(monkeypatch):
    client = LLMClient("ollama")
    prompts = []

    async def _call(prompt, system=None, max_tokens=1000):
        prompts.append(prompt)
        return ""

    monkeypatch.setattr(client, "call", _call)
    assert await client.call_json("prompt", retry_prompt="retry") == (False, None)
    assert prompts == ["prompt"]


def test_provider_selection():
    ollama = LLMClient("ollama")
    assert ollama.provider == "ollama"
    assert not ollama.base_url.endswith("/")
    assert ollama._openai_headers() == {}

    openai = LLMClient("OpenAI")
    assert openai.provider == "openai"
    assert openai.model
