"""Tests for the generation client: provider dispatch, error mapping, usage tracking."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from radscribe.config import RadscribeSettings
from radscribe.errors import GenerationTransportError
from radscribe.llm.client import GenerationClient, GenerationResult, LLMUsageTracker


def _settings(**kwargs: object) -> RadscribeSettings:
    kwargs.setdefault("anthropic_api_key", "test-key")
    return RadscribeSettings(_env_file=None, **kwargs)  # type: ignore[call-arg, arg-type]


def _anthropic_response(text: str, input_tokens: int = 120, output_tokens: int = 80) -> object:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _openai_response(text: str) -> object:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        usage=SimpleNamespace(prompt_tokens=30, completion_tokens=20),
    )


def _with_anthropic(client: GenerationClient, create: AsyncMock) -> None:
    mock = MagicMock()
    mock.messages.create = create
    client._anthropic_client = mock


def _with_openai(client: GenerationClient, create: AsyncMock) -> None:
    mock = MagicMock()
    mock.chat.completions.create = create
    if client.provider == "local":
        client._local_client = mock
    else:
        client._openai_client = mock


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_configured(self) -> None:
        assert GenerationClient(_settings()).configuration_problem() is None

    def test_missing_key(self) -> None:
        problem = GenerationClient(_settings(anthropic_api_key="")).configuration_problem()
        assert problem is not None
        assert "RADSCRIBE_ANTHROPIC_API_KEY" in problem

    def test_unknown_provider(self) -> None:
        problem = GenerationClient(_settings(llm_provider="gemini")).configuration_problem()
        assert problem == "Unsupported LLM provider: gemini"

    @pytest.mark.asyncio
    async def test_unconfigured_call_is_not_retryable(self) -> None:
        client = GenerationClient(_settings(anthropic_api_key=""))
        with pytest.raises(GenerationTransportError) as info:
            await client.generate("system", "user")
        assert info.value.retryable is False
        assert info.value.code == "GENERATION_UNAVAILABLE"


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class TestAnthropic:
    @pytest.mark.asyncio
    async def test_generate(self) -> None:
        client = GenerationClient(_settings())
        create = AsyncMock(return_value=_anthropic_response("Findings:\nNormal."))
        _with_anthropic(client, create)

        result = await client.generate("system", "user", temperature=0.0)

        assert result == GenerationResult("Findings:\nNormal.", 120, 80)
        kwargs = create.call_args.kwargs
        assert kwargs["system"] == "system"
        assert kwargs["messages"] == [{"role": "user", "content": "user"}]
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 2000
        assert client.tracker.total_tokens == 200


class TestOpenAICompatible:
    @pytest.mark.asyncio
    async def test_json_mode_requests_json_object(self) -> None:
        client = GenerationClient(_settings(llm_provider="openai", openai_api_key="sk-test"))
        create = AsyncMock(return_value=_openai_response('{"a": 1}'))
        _with_openai(client, create)

        result = await client.generate("system", "user", json_mode=True)

        assert result.content == '{"a": 1}'
        assert result.input_tokens == 30
        assert create.call_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_plain_mode_has_no_response_format(self) -> None:
        client = GenerationClient(_settings(llm_provider="openai", openai_api_key="sk-test"))
        create = AsyncMock(return_value=_openai_response("text"))
        _with_openai(client, create)

        await client.generate("system", "user")

        assert "response_format" not in create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_local_uses_local_model(self) -> None:
        client = GenerationClient(_settings(llm_provider="local", local_model="llama3.2:3b"))
        create = AsyncMock(return_value=_openai_response("text"))
        _with_openai(client, create)

        await client.generate("system", "user")

        assert create.call_args.kwargs["model"] == "llama3.2:3b"


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (httpx.ConnectError("refused"), True),
            (_StatusError(503), True),
            (_StatusError(429), True),
            (_StatusError(400), False),
            (ValueError("bad request"), False),
        ],
    )
    async def test_failures_are_wrapped(self, error: Exception, retryable: bool) -> None:
        client = GenerationClient(_settings())
        _with_anthropic(client, AsyncMock(side_effect=error))

        with pytest.raises(GenerationTransportError) as info:
            await client.generate("system", "user")

        assert info.value.retryable is retryable
        assert info.value.__cause__ is error
        assert client.tracker.calls == 0

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self) -> None:
        async def slow(**kwargs: object) -> object:
            await asyncio.sleep(1)
            return _anthropic_response("late")

        client = GenerationClient(_settings(generation_timeout_seconds=0.01))
        _with_anthropic(client, AsyncMock(side_effect=slow))

        with pytest.raises(GenerationTransportError) as info:
            await client.generate("system", "user")
        assert info.value.retryable is True


# ---------------------------------------------------------------------------
# LLMUsageTracker
# ---------------------------------------------------------------------------


class TestLLMUsageTracker:
    def test_starts_at_zero(self) -> None:
        t = LLMUsageTracker()
        assert (t.input_tokens, t.output_tokens, t.calls, t.total_tokens) == (0, 0, 0, 0)

    def test_record_accumulates(self) -> None:
        t = LLMUsageTracker()
        t.record(100, 50)
        t.record(200, 75)
        assert t.input_tokens == 300
        assert t.output_tokens == 125
        assert t.calls == 2
        assert t.total_tokens == 425
