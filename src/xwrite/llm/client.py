"""Model-call capability used by the authoring agents.

Agents depend on the :class:`ModelClient` protocol only: a non-streaming
``generate`` call and a streaming tool-calling call that yields typed chunks.
The end of the stream marks the end of the model's turn; a finished batch of
tool calls, when there is one, is the last chunk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

from langchain_core.messages import AIMessageChunk, BaseMessage, HumanMessage, SystemMessage

from .providers import LangChainChatProvider

logger = logging.getLogger(__name__)

__all__ = [
    "GenerateOptions",
    "GenerationResult",
    "ToolCallRequest",
    "TextDelta",
    "ThinkingDelta",
    "ToolArgDelta",
    "ToolCallBatch",
    "StreamChunk",
    "ModelClient",
    "LangChainModelClient",
    "with_temperature",
    "extract_text_content",
]


@dataclass(slots=True, frozen=True)
class GenerateOptions:
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    model: Optional[str] = None


def with_temperature(options: GenerateOptions | None, fallback: float) -> GenerateOptions:
    """Return ``options`` with ``fallback`` applied when no temperature was set."""

    base = options or GenerateOptions()
    if base.temperature is not None:
        return base
    return replace(base, temperature=fallback)


@dataclass(slots=True)
class GenerationResult:
    text: str
    thinking: Optional[str] = None


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str


@dataclass(slots=True, frozen=True)
class ThinkingDelta:
    text: str


@dataclass(slots=True, frozen=True)
class ToolArgDelta:
    index: Optional[int]
    name: Optional[str]
    delta: str


@dataclass(slots=True, frozen=True)
class ToolCallBatch:
    calls: Tuple[ToolCallRequest, ...]


StreamChunk = Union[TextDelta, ThinkingDelta, ToolArgDelta, ToolCallBatch]


@runtime_checkable
class ModelClient(Protocol):
    """Abstraction over the language model used by every agent."""

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> GenerationResult:
        ...

    def stream_with_tools(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Mapping[str, Any]],
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        ...


def extract_text_content(message: Any) -> str:
    content = getattr(message, "content", "")
    if isinstance(content, list):
        pieces = [segment.get("text", "") for segment in content if isinstance(segment, dict)]
        return "".join(pieces)
    return str(content or "")


def _extract_thinking(message: Any) -> str:
    extras = getattr(message, "additional_kwargs", None) or {}
    reasoning = extras.get("reasoning_content") or extras.get("reasoning")
    return reasoning if isinstance(reasoning, str) else ""


class LangChainModelClient:
    """Adapt a :class:`LangChainChatProvider` to :class:`ModelClient`."""

    def __init__(self, provider: LangChainChatProvider) -> None:
        self.provider = provider

    def _provider_for(self, options: GenerateOptions | None) -> LangChainChatProvider:
        if options is None:
            return self.provider
        return self.provider.with_overrides(
            model=options.model,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> GenerationResult:
        provider = self._provider_for(options)
        response = await provider.ainvoke([SystemMessage(content=system_prompt), HumanMessage(content=prompt)])
        thinking = _extract_thinking(response)
        return GenerationResult(text=extract_text_content(response).strip(), thinking=thinking or None)

    async def stream_with_tools(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Mapping[str, Any]],
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        provider = self._provider_for(options).bind_tools(tools)
        aggregate: AIMessageChunk | None = None

        async for chunk in provider.astream([SystemMessage(content=system_prompt), *messages]):
            thinking = _extract_thinking(chunk)
            if thinking:
                yield ThinkingDelta(thinking)
            text = extract_text_content(chunk)
            if text:
                yield TextDelta(text)
            for call_chunk in getattr(chunk, "tool_call_chunks", None) or []:
                yield ToolArgDelta(
                    index=call_chunk.get("index"),
                    name=call_chunk.get("name"),
                    delta=call_chunk.get("args") or "",
                )
            if isinstance(chunk, AIMessageChunk):
                aggregate = chunk if aggregate is None else aggregate + chunk

        if aggregate is None:
            return
        for invalid in getattr(aggregate, "invalid_tool_calls", None) or []:
            logger.warning("Dropping malformed tool call '%s': %s", invalid.get("name"), invalid.get("error"))
        calls = tuple(
            ToolCallRequest(
                id=call.get("id") or f"call_{index}",
                name=call["name"],
                arguments=dict(call.get("args") or {}),
            )
            for index, call in enumerate(aggregate.tool_calls)
        )
        if calls:
            yield ToolCallBatch(calls)
