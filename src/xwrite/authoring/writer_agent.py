"""Writer agent: parallel-safe drafting and the bounded tool-calling loop."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage

from ..llm.client import (
    GenerateOptions,
    ModelClient,
    TextDelta,
    ThinkingDelta,
    ToolCallBatch,
    ToolCallRequest,
)
from .context_builder import build_section_context
from .prompts import build_writer_draft_system_prompt, build_writer_system_prompt
from .tools import ToolCallResult, ToolExecutor, writer_tool_definitions
from .types import ArticleOutline, OutlineSection, SectionWriteResult

logger = logging.getLogger(__name__)

__all__ = ["WriterAgent", "WriteSectionResult", "DEFAULT_MAX_TOOL_ROUNDS"]

DEFAULT_MAX_TOOL_ROUNDS = 15

CancelCheck = Callable[[], bool]
ChunkObserver = Callable[[Any], None]


@dataclass(slots=True)
class WriteSectionResult:
    assistant_content: str
    thinking: Optional[str] = None
    tool_rounds: int = 0
    cancelled: bool = False


def _tool_message(result: ToolCallResult) -> ToolMessage:
    return ToolMessage(
        content=json.dumps(result.to_dict(), ensure_ascii=False, default=str),
        tool_call_id=result.id,
        name=result.name,
    )


def _assistant_message(content: str, calls: Sequence[ToolCallRequest], thinking: str) -> AIMessage:
    extras: Dict[str, Any] = {"reasoning_content": thinking} if thinking else {}
    return AIMessage(
        content=content,
        tool_calls=[{"id": call.id, "name": call.name, "args": dict(call.arguments)} for call in calls],
        additional_kwargs=extras,
    )


class WriterAgent:
    """Writes one section at a time.

    ``draft_section`` is a plain generation call with no tools, so several
    drafts can run at once. ``write_section`` drives the model through up to
    ``max_tool_rounds`` tool-calling turns against the shared document and is
    the only path that edits it directly.
    """

    def __init__(
        self,
        client: ModelClient,
        options: GenerateOptions | None = None,
        *,
        max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    ) -> None:
        if max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        self.client = client
        self.options = options
        self.max_tool_rounds = max_tool_rounds

    async def draft_section(
        self,
        outline: ArticleOutline,
        section: OutlineSection,
        section_index: int,
        previous_sections: Sequence[SectionWriteResult] = (),
        memory_context: Optional[str] = None,
    ) -> str:
        system_prompt = build_writer_draft_system_prompt(outline, section, section_index)
        prompt = build_section_context(outline, section, previous_sections, memory_context=memory_context)
        result = await self.client.generate(prompt, system_prompt, self.options)
        return result.text.strip()

    async def write_section(
        self,
        outline: ArticleOutline,
        section: OutlineSection,
        section_index: int,
        previous_sections: Sequence[SectionWriteResult],
        executor: ToolExecutor,
        written_segments: List[str],
        *,
        is_cancelled: CancelCheck = lambda: False,
        revision_feedback: Optional[str] = None,
        memory_context: Optional[str] = None,
        on_chunk: ChunkObserver | None = None,
    ) -> WriteSectionResult:
        tools = writer_tool_definitions()
        system_prompt = build_writer_system_prompt(outline, section, section_index, revision_feedback)
        user_message = build_section_context(
            outline,
            section,
            previous_sections,
            revision_feedback=revision_feedback,
            memory_context=memory_context,
        )
        conversation: List[BaseMessage] = [HumanMessage(content=user_message)]

        content_parts: List[str] = []
        thinking_parts: List[str] = []
        rounds = 0
        cancelled = False

        for _ in range(self.max_tool_rounds):
            if is_cancelled():
                cancelled = True
                break
            rounds += 1
            round_content = ""
            round_thinking = ""
            round_calls: Sequence[ToolCallRequest] = ()

            async for chunk in self.client.stream_with_tools(conversation, tools, system_prompt, self.options):
                if isinstance(chunk, TextDelta):
                    round_content += chunk.text
                elif isinstance(chunk, ThinkingDelta):
                    round_thinking += chunk.text
                elif isinstance(chunk, ToolCallBatch):
                    round_calls = chunk.calls
                if on_chunk is not None:
                    on_chunk(chunk)

            content_parts.append(round_content)
            thinking_parts.append(round_thinking)
            conversation.append(_assistant_message(round_content, round_calls, round_thinking))
            if not round_calls:
                break
            if is_cancelled():
                cancelled = True
                break

            logger.debug(
                "Section '%s' round %s requested tools: %s",
                section.id,
                rounds,
                ", ".join(call.name for call in round_calls),
            )
            results = await executor.execute(round_calls, written_segments)
            if is_cancelled():
                cancelled = True
                break
            conversation.extend(_tool_message(result) for result in results)
        else:
            logger.warning("Section '%s' hit the tool round limit (%s)", section.id, self.max_tool_rounds)

        thinking = "".join(thinking_parts).strip()
        return WriteSectionResult(
            assistant_content="".join(content_parts).strip(),
            thinking=thinking or None,
            tool_rounds=rounds,
            cancelled=cancelled,
        )
