"""
Claude API Client — the agent's connection to its language model.

Every thought the consciousness loop has, and every tool-using chat reply,
is one call through this client. The engine keeps no conversational state:
it receives a system prompt and messages, returns text, and counts tokens.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import anthropic
import structlog

from spirit.config import ModelConfig
from spirit.harness.retry import RetryConfig, with_retries

logger = structlog.get_logger(__name__)


class CognitiveEngineInitError(RuntimeError):
    """Raised when the cognitive engine cannot be initialized safely."""


class CognitiveEngine:
    """
    Wraps the Anthropic Messages API.

    ``create()`` returns the raw SDK message; ``complete()`` returns just its
    text. Both go through the same retry and timeout path.
    """

    def __init__(
        self,
        config: ModelConfig,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        try:
            if client is not None:
                self._async_client = client
            else:
                if not config.api_key:
                    raise CognitiveEngineInitError(
                        "ANTHROPIC_API_KEY is not set; cannot reach the model"
                    )
                client_kwargs: dict[str, Any] = {"api_key": config.api_key}
                if config.base_url:
                    client_kwargs["base_url"] = config.base_url
                self._async_client = anthropic.AsyncAnthropic(**client_kwargs)
            self._model = config.model
            self._max_tokens = int(config.max_tokens)
            self._temperature = float(config.temperature)
            self._request_timeout_seconds = float(config.request_timeout_seconds)
            self._retry_config = RetryConfig.from_model_config(config)

            self._total_input_tokens = 0
            self._total_output_tokens = 0
            self._total_calls = 0
            self._last_call_time: Optional[float] = None

            logger.info(
                "cognitive_engine.initialized",
                model=self._model,
                base_url=config.base_url,
            )
        except CognitiveEngineInitError:
            raise
        except Exception as exc:
            raise CognitiveEngineInitError(
                f"Failed to initialize cognitive engine: {exc}"
            ) from exc

    @property
    def model(self) -> str:
        return self._model

    async def create(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> anthropic.types.Message:
        """Send one Messages API request with retries and a hard timeout."""
        start_time = time.monotonic()
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
            "system": system_prompt,
            "messages": messages,
        }

        async def _create() -> anthropic.types.Message:
            return await asyncio.wait_for(
                self._async_client.messages.create(**kwargs),
                timeout=self._request_timeout_seconds,
            )

        try:
            response = await with_retries(_create, config=self._retry_config)
        except anthropic.APIConnectionError as e:
            logger.error("cognitive_engine.connection_error", error=str(e))
            raise
        except anthropic.RateLimitError as e:
            logger.warning("cognitive_engine.rate_limited", error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error(
                "cognitive_engine.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise

        elapsed = time.monotonic() - start_time
        usage = getattr(response, "usage", None)
        input_tokens = int(getattr(usage, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage, "output_tokens", 0) or 0)
        self._total_input_tokens += input_tokens
        self._total_output_tokens += output_tokens
        self._total_calls += 1
        self._last_call_time = elapsed

        logger.debug(
            "cognitive_engine.call_complete",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            elapsed_seconds=round(elapsed, 2),
            stop_reason=getattr(response, "stop_reason", None),
        )
        return response

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        response = await self.create(system_prompt, messages, max_tokens, temperature)
        return self.extract_text(response)

    def extract_text(self, response: anthropic.types.Message) -> str:
        """Extract all text content from a response, ignoring other blocks."""
        parts = []
        for block in response.content:
            if getattr(block, "type", None) == "text":
                parts.append(block.text)
        return "\n".join(parts)

    @property
    def telemetry(self) -> dict[str, Any]:
        """Return current telemetry snapshot."""
        return {
            "total_calls": self._total_calls,
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
            "total_tokens": self._total_input_tokens + self._total_output_tokens,
            "last_call_seconds": self._last_call_time if self._last_call_time is not None else 0.0,
        }
