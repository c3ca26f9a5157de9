"""Tests for utils.fallback — provider selection, adapters, key store."""

import json

import httpx
import pytest

from core.errors import FallbackExhaustedError
from utils.fallback import FallbackSelector, KeyStore

pytestmark = pytest.mark.anyio

MESSAGES = [
    {"role": "system", "content": "You write code."},
    {"role": "user", "content": "Write hello world."},
]


def _selector(tmp_path, handler, environ=None):
    store = KeyStore(path=str(tmp_path / "keys.json"), environ=environ or {})
    return FallbackSelector(key_store=store, transport=httpx.MockTransport(handler))


def _openai_reply(text):
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def test_no_keys_means_no_providers(tmp_path):
    selector = _selector(tmp_path, lambda request: _openai_reply("x"))
    assert selector.available_providers() == []


def test_env_key_makes_provider_available(tmp_path):
    selector = _selector(tmp_path, lambda request: _openai_reply("x"),
                         environ={"HF_TOKEN": "hf_123"})
    assert [p.name for p in selector.available_providers()] == ["Hugging Face"]
    assert selector.get_api_key("hugging face") == "hf_123"


def test_saved_key_overrides_environment(tmp_path):
    selector = _selector(tmp_path, lambda request: _openai_reply("x"),
                         environ={"GROQ_API_KEY": "from-env"})
    selector.set_api_key("Groq", "from-file")
    assert selector.get_api_key("Groq") == "from-file"
    with open(tmp_path / "keys.json") as f:
        assert json.load(f) == {"Groq": "from-file"}

    selector.set_api_key("Groq", "")
    assert selector.get_api_key("Groq") == "from-env"


def test_unknown_provider_rejected(tmp_path):
    selector = _selector(tmp_path, lambda request: _openai_reply("x"))
    with pytest.raises(ValueError, match="Unknown fallback provider"):
        selector.set_api_key("Nope", "key")


def test_corrupt_key_file_is_ignored(tmp_path):
    (tmp_path / "keys.json").write_text("{not json")
    selector = _selector(tmp_path, lambda request: _openai_reply("x"),
                         environ={"GROQ_API_KEY": "env"})
    assert selector.get_api_key("Groq") == "env"


async def test_no_providers_raises_with_guidance(tmp_path):
    selector = _selector(tmp_path, lambda request: _openai_reply("x"))
    with pytest.raises(FallbackExhaustedError) as excinfo:
        await selector.try_with_fallback(MESSAGES)
    assert "https://console.groq.com/keys" in str(excinfo.value)


async def test_first_success_wins_in_priority_order(tmp_path):
    seen = []

    def handler(request):
        seen.append(request.url.host)
        body = json.loads(request.content)
        assert body["messages"][0] == {"role": "system", "content": "You write code."}
        assert body["max_tokens"] == 4096
        assert request.headers["Authorization"].startswith("Bearer ")
        if request.url.host == "api.groq.com":
            return httpx.Response(429, text="rate limited")
        return _openai_reply("print('hello')")

    selector = _selector(tmp_path, handler, environ={
        "GROQ_API_KEY": "g", "TOGETHER_API_KEY": "t", "OPENROUTER_API_KEY": "o",
    })
    result = await selector.try_with_fallback(MESSAGES, {"temperature": 0.2, "max_tokens": 4096})
    assert result.provider_name == "Together AI"
    assert result.response_text == "print('hello')"
    assert seen == ["api.groq.com", "api.together.xyz"]


async def test_openrouter_sends_extra_headers(tmp_path):
    captured = {}

    def handler(request):
        captured.update(request.headers)
        return _openai_reply("ok")

    selector = _selector(tmp_path, handler, environ={"OPENROUTER_API_KEY": "o"})
    await selector.try_with_fallback(MESSAGES)
    assert captured["x-title"] == "Quota Pipeline"
    assert "http-referer" in captured


async def test_huggingface_adapter_shape(tmp_path):
    captured = {}

    def handler(request):
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json=[{"generated_text": "def hello(): pass"}])

    selector = _selector(tmp_path, handler, environ={"HUGGINGFACE_API_KEY": "hf"})
    result = await selector.try_with_fallback(MESSAGES, {"temperature": 0.3, "max_tokens": 512})
    assert result.provider_name == "Hugging Face"
    assert result.response_text == "def hello(): pass"

    body = captured["body"]
    assert body["inputs"] == "System: You write code.\n\nUser: Write hello world.\n\nAssistant:"
    assert body["parameters"] == {"temperature": 0.3, "max_new_tokens": 512, "return_full_text": False}


async def test_all_failures_are_listed(tmp_path):
    def handler(request):
        if request.url.host == "api.groq.com":
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"unexpected": True})

    selector = _selector(tmp_path, handler, environ={"GROQ_API_KEY": "g", "HF_TOKEN": "h"})
    with pytest.raises(FallbackExhaustedError) as excinfo:
        await selector.try_with_fallback(MESSAGES)

    message = str(excinfo.value)
    assert message.startswith("All fallback providers failed:")
    assert "Groq API error: 500 - boom" in message
    assert len(excinfo.value.failures) == 2


async def test_transport_error_falls_through(tmp_path):
    def handler(request):
        if request.url.host == "api.groq.com":
            raise httpx.ConnectError("connection refused")
        return _openai_reply("ok")

    selector = _selector(tmp_path, handler, environ={"GROQ_API_KEY": "g", "TOGETHER_API_KEY": "t"})
    result = await selector.try_with_fallback(MESSAGES)
    assert result.provider_name == "Together AI"
