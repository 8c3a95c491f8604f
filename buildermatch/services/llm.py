# =============================================================================
# Multi-Provider LLM Abstraction - Structured Output for the Agents
# =============================================================================
#
# The planner and evaluator each need one schema-constrained generation per
# call. This module provides:
#
#   LLMProvider (Protocol)
#   ├── AnthropicProvider        - Claude via native Anthropic SDK
#   │   └── complete()           - system prompt as top-level kwarg
#   ├── OpenAICompatibleProvider - any OpenAI-compatible API (OpenRouter, ...)
#   │   └── complete()           - system prompt as message role
#   ├── CallCountingProvider     - wraps a provider, counts issued calls
#   ├── get_llm_provider()       - factory, reads from config
#   └── generate_structured()    - complete() + JSON extraction + pydantic
#                                  validation at the boundary
#
# Model output is never trusted: it is parsed and validated against the
# requested pydantic schema immediately, and anything that does not conform
# raises StructuredOutputError. Callers turn that into their deterministic
# fallback.
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from buildermatch.config import settings
from buildermatch.exceptions import ProviderUnavailableError, StructuredOutputError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Provider-neutral completion result."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
                Roles: "user", "assistant" (no "system"; use the system param).
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI-compatible APIs as a leading {"role": "system"} message.
            temperature: Override sampling temperature (default from config).
            max_tokens: Override max output tokens (default from config).
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """Anthropic Claude provider using the native async SDK."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        resolved_key = api_key or settings.llm_api_key or settings.anthropic_api_key
        if not resolved_key:
            raise ProviderUnavailableError(
                "No Anthropic API key configured. Set LLM_API_KEY or "
                "ANTHROPIC_API_KEY in .env"
            )

        self._client = AsyncAnthropic(api_key=resolved_key)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info("Initialized AnthropicProvider (model=%s)", self._model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": self._temperature if temperature is None else temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (OpenRouter, DeepSeek, Qwen, ...)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions spec.

    Switching providers is a config change:
        LLM_PROVIDER=openai_compatible
        LLM_BASE_URL=https://openrouter.ai/api/v1
        LLM_API_KEY=your-key
        LLM_MODEL=x-ai/grok-code-fast-1
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        resolved_key = api_key or settings.llm_api_key or settings.openai_api_key
        if not resolved_key:
            raise ProviderUnavailableError(
                "No API key configured for OpenAI-compatible provider. "
                "Set LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        resolved_base_url = base_url or settings.llm_base_url
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self._model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=all_messages,
            max_tokens=max_tokens or self._max_tokens,
            temperature=self._temperature if temperature is None else temperature,
        )

        content = response.choices[0].message.content or ""
        usage = response.usage

        return LLMResponse(
            content=content,
            model=response.model or self._model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Call Counting
# ---------------------------------------------------------------------------


class CallCountingProvider:
    """
    Wraps a provider and counts every complete() call issued through it.

    One instance per orchestration run; the count feeds
    OrchestrationResult.metadata.model_call_count. Failed calls count too.
    """

    def __init__(self, inner: LLMProvider) -> None:
        self._inner = inner
        self.call_count = 0

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        self.call_count += 1
        return await self._inner.complete(
            messages=messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_provider: AnthropicProvider | OpenAICompatibleProvider | None = None


def get_llm_provider() -> AnthropicProvider | OpenAICompatibleProvider | None:
    """
    Return the configured LLM provider, or None when LLM_PROVIDER=none.

    Lazy singleton: SDK clients manage their own connection pools.

    Raises:
        ProviderUnavailableError: provider selected but no API key set.
    """
    global _provider
    if settings.llm_provider == "none":
        return None
    if _provider is None:
        if settings.llm_provider == "openai_compatible":
            _provider = OpenAICompatibleProvider()
        else:
            _provider = AnthropicProvider()
    return _provider


# ---------------------------------------------------------------------------
# Structured Generation
# ---------------------------------------------------------------------------

_STRUCTURED_INSTRUCTIONS = """Respond with ONLY a single valid JSON object \
(no markdown, no commentary) that conforms to this JSON Schema:

{schema}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


async def generate_structured(
    llm: LLMProvider,
    prompt: str,
    schema: type[SchemaT],
    system: str | None = None,
    timeout: float | None = None,
    max_tokens: int | None = None,
) -> SchemaT:
    """
    Issue one schema-constrained generation and validate the result.

    Args:
        llm: Provider to call.
        prompt: User-turn content.
        schema: Pydantic model the response must validate against.
        system: Optional role prompt; the JSON-schema instructions are
            appended to it.
        timeout: Seconds before the call is abandoned (default from config).

    Returns:
        A validated instance of `schema`.

    Raises:
        StructuredOutputError: response is not JSON or fails validation.
        asyncio.TimeoutError / provider SDK errors: transport failures.
    """
    schema_json = json.dumps(schema.model_json_schema(by_alias=True), indent=2)
    instructions = _STRUCTURED_INSTRUCTIONS.format(schema=schema_json)
    full_system = f"{system}\n\n{instructions}" if system else instructions

    response = await asyncio.wait_for(
        llm.complete(
            messages=[{"role": "user", "content": prompt}],
            system=full_system,
            temperature=0.0,
            max_tokens=max_tokens,
        ),
        timeout=timeout if timeout is not None else settings.llm_timeout_seconds,
    )

    payload = _extract_json(response.content)
    try:
        return schema.model_validate_json(payload)
    except ValidationError as e:
        raise StructuredOutputError(
            f"Model output does not match {schema.__name__}: {e.error_count()} error(s)",
            raw=response.content,
        ) from e


def _extract_json(content: str) -> str:
    """
    Pull the JSON object out of a model response.

    Handles ```json fences and leading/trailing prose around the object.
    """
    text = _FENCE_RE.sub("", content.strip())
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise StructuredOutputError("Model output contains no JSON object", raw=content)
    return text[start : end + 1]
