"""LLM provider abstraction with Anthropic and OpenAI-compatible backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from talon.ai.conversation import (
    anthropic_tools,
    build_anthropic_messages,
    build_openai_messages,
    openai_tools,
    split_system,
)
from talon.ai.tools.base import ToolSpec
from talon.config import ProviderConfig
from talon.core.models import Message, ToolCall, Usage
from talon.errors import to_provider_error
from talon.log import get_logger

logger = get_logger(__name__)


@dataclass
class Completion:
    """Unified response from any provider."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_reason: Optional[str] = None
    raw: Any = None  # Backend-specific raw response


class Provider(ABC):
    """One LLM backend. Raises ``ProviderError`` subclasses on failure."""

    def __init__(self, provider_id: str):
        self.provider_id = provider_id

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        *,
        model: str,
        system: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> Completion:
        """Send a conversation and return the model's completion."""
        ...


class AnthropicProvider(Provider):
    """Anthropic Messages API backend using the official SDK."""

    def __init__(self, config: ProviderConfig):
        import anthropic

        super().__init__(config.id)
        # Retries belong to the provider router
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
            timeout=config.timeout,
        )

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        *,
        model: str,
        system: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> Completion:
        import anthropic

        system_text, rest = split_system(messages, system)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": build_anthropic_messages(rest),
            "temperature": temperature,
        }
        if system_text:
            kwargs["system"] = system_text
        if tools:
            kwargs["tools"] = anthropic_tools(tools)

        logger.debug("api_request", provider=self.provider_id, model=model, message_count=len(rest))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise to_provider_error(e, self.provider_id) from e

        logger.debug(
            "api_response",
            provider=self.provider_id,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return parse_anthropic_response(response)


class OpenAICompatibleProvider(Provider):
    """Chat-completions backend for OpenAI and compatible APIs (DeepSeek, OpenRouter, local servers)."""

    def __init__(self, config: ProviderConfig):
        import openai

        super().__init__(config.id)
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=0,
            timeout=config.timeout,
        )

    async def chat(
        self,
        messages: list[Message],
        tools: list[ToolSpec] | None = None,
        *,
        model: str,
        system: str = "",
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> Completion:
        import openai

        system_text, rest = split_system(messages, system)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": build_openai_messages(rest, system_text),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            kwargs["tools"] = openai_tools(tools)
            kwargs["tool_choice"] = "auto"

        logger.debug("api_request", provider=self.provider_id, model=model, message_count=len(rest))
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as e:
            raise to_provider_error(e, self.provider_id) from e

        completion = parse_openai_response(response)
        logger.debug(
            "api_response",
            provider=self.provider_id,
            model=model,
            input_tokens=completion.usage.input_tokens,
            output_tokens=completion.usage.output_tokens,
            stop_reason=completion.stop_reason,
        )
        return completion


def parse_anthropic_response(response: Any) -> Completion:
    texts: list[str] = []
    calls: list[ToolCall] = []
    for block in response.content:
        if block.type == "text":
            texts.append(block.text)
        elif block.type == "tool_use":
            args = block.input if isinstance(block.input, dict) else {}
            error = None if isinstance(block.input, dict) else "tool input is not an object"
            calls.append(ToolCall(id=block.id, name=block.name, arguments=args, parse_error=error))
    return Completion(
        content="\n".join(texts),
        tool_calls=calls,
        usage=Usage(response.usage.input_tokens, response.usage.output_tokens),
        stop_reason=response.stop_reason,
        raw=response,
    )


def parse_openai_response(response: Any) -> Completion:
    choice = response.choices[0] if response.choices else None
    message = choice.message if choice else None
    calls: list[ToolCall] = []
    for tc in (message.tool_calls or []) if message else []:
        if getattr(tc, "type", "function") != "function":
            continue
        args, error = _parse_arguments(tc.function.arguments)
        calls.append(ToolCall(id=tc.id, name=tc.function.name, arguments=args, parse_error=error))

    usage = Usage()
    if response.usage is not None:
        usage = Usage(response.usage.prompt_tokens or 0, response.usage.completion_tokens or 0)
    return Completion(
        content=(message.content or "") if message else "",
        tool_calls=calls,
        usage=usage,
        stop_reason=choice.finish_reason if choice else None,
        raw=response,
    )


def _parse_arguments(raw: str | None) -> tuple[dict[str, Any], str | None]:
    """Decode a JSON argument string; malformed input is reported, not raised."""
    if not raw:
        return {}, None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        return {}, f"invalid JSON ({e.msg})"
    if not isinstance(value, dict):
        return {}, "arguments must be a JSON object"
    return value, None


def create_provider(config: ProviderConfig) -> Provider:
    match config.kind:
        case "anthropic":
            return AnthropicProvider(config)
        case "openai":
            return OpenAICompatibleProvider(config)
        case _:
            raise ValueError(f"Unknown provider kind: {config.kind}")
