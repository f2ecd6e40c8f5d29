import httpx
import openai
import pytest

from adapters.llm.openai_provider import OpenAIProvider
from sqlgrep.errors.exceptions import (
    ConfigurationError,
    EmptyRequestError,
    UpstreamError,
)


class FakeCompletion:
    """Minimal fake object that matches what OpenAIProvider reads from SDK response."""

    def __init__(self, content: str, prompt_tokens: int = 5, completion_tokens: int = 7):
        self.content = content
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens

    def model_dump(self):
        return {
            "choices": [{"index": 0, "message": {"role": "assistant", "content": self.content}}],
            "usage": {
                "prompt_tokens": self.prompt_tokens,
                "completion_tokens": self.completion_tokens,
            },
        }


MESSAGES = [{"role": "user", "content": "How many users?"}]


def _provider(**kwargs) -> OpenAIProvider:
    kwargs.setdefault("api_key", "test-key")
    return OpenAIProvider(**kwargs)


def test_complete_returns_raw_dict(monkeypatch):
    provider = _provider(model="gpt-test")
    seen = {}

    def fake_create_chat_completion(**kwargs):
        seen.update(kwargs)
        return FakeCompletion('{"steps": []}')

    monkeypatch.setattr(provider, "_create_chat_completion", fake_create_chat_completion)

    raw = provider.complete(MESSAGES)

    assert raw["choices"][0]["message"]["content"] == '{"steps": []}'
    assert seen["model"] == "gpt-test"
    assert seen["messages"] == MESSAGES
    usage = provider.get_last_usage()
    assert usage["prompt_tokens"] == 5
    assert usage["completion_tokens"] == 7


@pytest.mark.parametrize("key", [None, "", "   "])
def test_missing_credential_is_configuration_error(key):
    with pytest.raises(ConfigurationError):
        OpenAIProvider(api_key=key).complete(MESSAGES)


def test_empty_messages(monkeypatch):
    provider = _provider()
    monkeypatch.setattr(
        provider, "_create_chat_completion", lambda **kw: pytest.fail("must not be called")
    )
    with pytest.raises(EmptyRequestError):
        provider.complete([])


def test_http_error_becomes_upstream_error(monkeypatch):
    provider = _provider()
    request = httpx.Request("POST", "http://localhost:9999/chat/completions")
    response = httpx.Response(429, request=request, text="rate limited")

    def boom(**kwargs):
        raise openai.RateLimitError("rate limited", response=response, body=None)

    monkeypatch.setattr(provider, "_create_chat_completion", boom)

    with pytest.raises(UpstreamError) as ei:
        provider.complete(MESSAGES)
    assert ei.value.status == 429
    assert ei.value.body == "rate limited"
    assert ei.value.retryable is True
    assert ei.value.http_status == 502


def test_connection_failure_becomes_upstream_error(monkeypatch):
    provider = _provider()
    request = httpx.Request("POST", "http://localhost:9999/chat/completions")

    def boom(**kwargs):
        raise openai.APIConnectionError(request=request)

    monkeypatch.setattr(provider, "_create_chat_completion", boom)

    with pytest.raises(UpstreamError) as ei:
        provider.complete(MESSAGES)
    assert ei.value.status is None


def test_sdk_retries_are_disabled():
    provider = _provider(base_url="http://localhost:9999", timeout=3)
    assert provider.client.max_retries == 0
    assert provider.client.timeout == 3
