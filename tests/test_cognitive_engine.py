from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import pytest

from spirit.api.claude import CognitiveEngine, CognitiveEngineInitError
from spirit.config import ModelConfig

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _config(**overrides) -> ModelConfig:
    values = {
        "ANTHROPIC_API_KEY": "test-key",
        "SPIRIT_MODEL": "test-model",
        "SPIRIT_MAX_TOKENS": 256,
        "SPIRIT_TEMPERATURE": 0.5,
        "SPIRIT_RETRY_MAX_RETRIES": 2,
        "SPIRIT_RETRY_JITTER_RANGE": 0,
    }
    values.update(overrides)
    return ModelConfig(**values)


def _response(*blocks, input_tokens: int = 10, output_tokens: int = 5):
    return SimpleNamespace(
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
        content=list(blocks),
        stop_reason="end_turn",
    )


def _text(text: str):
    return SimpleNamespace(type="text", text=text)


def _engine(create: AsyncMock, **overrides) -> CognitiveEngine:
    client = SimpleNamespace(messages=SimpleNamespace(create=create))
    return CognitiveEngine(_config(**overrides), client=client)


@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    async def _sleep(_: float) -> None:
        return None

    monkeypatch.setattr("spirit.harness.retry.asyncio.sleep", _sleep)


def test_missing_api_key_raises_init_error(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    with pytest.raises(CognitiveEngineInitError, match="ANTHROPIC_API_KEY"):
        CognitiveEngine(_config(ANTHROPIC_API_KEY=None))


def test_builds_sdk_client_from_config():
    engine = CognitiveEngine(_config(SPIRIT_MODEL_BASE_URL="https://proxy.example.com"))
    assert isinstance(engine._async_client, anthropic.AsyncAnthropic)
    assert engine.model == "test-model"


@pytest.mark.asyncio
async def test_create_sends_configured_request():
    create = AsyncMock(return_value=_response(_text("hi")))
    engine = _engine(create)

    await engine.create("sys", [{"role": "user", "content": "hello"}])

    assert create.await_args.kwargs == {
        "model": "test-model",
        "max_tokens": 256,
        "temperature": 0.5,
        "system": "sys",
        "messages": [{"role": "user", "content": "hello"}],
    }


@pytest.mark.asyncio
async def test_per_call_overrides():
    create = AsyncMock(return_value=_response())
    await _engine(create).create("sys", [], max_tokens=64, temperature=0.0)
    assert create.await_args.kwargs["max_tokens"] == 64
    assert create.await_args.kwargs["temperature"] == 0.0


@pytest.mark.asyncio
async def test_complete_joins_text_blocks_only():
    create = AsyncMock(return_value=_response(
        _text("first"),
        SimpleNamespace(type="tool_use", name="x", input={}),
        _text("second"),
    ))
    assert await _engine(create).complete("sys", []) == "first\nsecond"


@pytest.mark.asyncio
async def test_transient_errors_are_retried():
    response = _response(_text("ok"))
    create = AsyncMock(side_effect=[ConnectionError("network blip"), response])
    engine = _engine(create)

    result = await engine.create("sys", [{"role": "user", "content": "hi"}])

    assert result is response
    assert create.await_count == 2


@pytest.mark.asyncio
async def test_connection_error_exhaustion_propagates():
    error = anthropic.APIConnectionError(message="Connection error.", request=_REQUEST)
    create = AsyncMock(side_effect=error)
    with pytest.raises(anthropic.APIConnectionError):
        await _engine(create).create("sys", [])
    assert create.await_count == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    response = httpx.Response(400, request=_REQUEST)
    error = anthropic.BadRequestError(message="bad", response=response, body={})
    create = AsyncMock(side_effect=error)
    with pytest.raises(anthropic.BadRequestError):
        await _engine(create).create("sys", [])
    assert create.await_count == 1


@pytest.mark.asyncio
async def test_telemetry_accumulates_usage():
    create = AsyncMock(side_effect=[
        _response(input_tokens=10, output_tokens=5),
        _response(input_tokens=3, output_tokens=2),
    ])
    engine = _engine(create)
    await engine.create("sys", [])
    await engine.create("sys", [])

    telemetry = engine.telemetry
    assert telemetry["total_calls"] == 2
    assert telemetry["total_input_tokens"] == 13
    assert telemetry["total_output_tokens"] == 7
    assert telemetry["total_tokens"] == 20


@pytest.mark.asyncio
async def test_missing_usage_counts_as_zero():
    create = AsyncMock(return_value=SimpleNamespace(content=[], stop_reason=None))
    engine = _engine(create)
    await engine.create("sys", [])
    assert engine.telemetry["total_tokens"] == 0
