"""Shared fixtures for the test suite."""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Sequence

import pytest

from xwrite.authoring.types import ArticleOutline, OutlineSection
from xwrite.llm.client import GenerateOptions, GenerationResult, StreamChunk

ENV_VARS = {
    "XWRITE_MODEL",
    "OPENAI_MODEL",
    "XWRITE_API_KEY",
    "OPENAI_API_KEY",
    "XWRITE_BASE_URL",
    "OPENAI_BASE_URL",
    "XWRITE_TEMPERATURE",
    "XWRITE_MAX_TOKENS",
    "XWRITE_TIMEOUT",
    "XWRITE_MAX_TOOL_ROUNDS",
    "XWRITE_DRAFT_CONCURRENCY",
    "XWRITE_MAX_REVIEW_CYCLES",
    "XWRITE_ENABLE_VERIFICATION",
    "XWRITE_API_KEY_ENV",
}


@pytest.fixture(autouse=True)
def _clear_llm_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure LLM-related environment variables do not leak between tests."""

    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def dummy_chat_model(monkeypatch: pytest.MonkeyPatch):
    """Patch the LangChain chat client used by the provider abstraction."""

    from xwrite.llm import providers

    class DummyChatModel:
        def __init__(self, **kwargs: Any) -> None:
            self.kwargs = kwargs
            self.bound_tools: list[Any] = []
            self.invocations: list[tuple[str, tuple[Iterable[Any], dict[str, Any]]]] = []

        def bind_tools(self, tools: list[Any]) -> "DummyChatModel":
            self.bound_tools = list(tools)
            return self

        def invoke(self, messages: Iterable[Any], **kwargs: Any) -> dict[str, Any]:
            record = ("invoke", (tuple(messages), dict(kwargs)))
            self.invocations.append(record)
            return {"messages": list(messages), **kwargs}

        def stream(self, messages: Iterable[Any], **kwargs: Any):
            record = ("stream", (tuple(messages), dict(kwargs)))
            self.invocations.append(record)
            for message in messages:
                yield message

        async def ainvoke(self, messages: Iterable[Any], **kwargs: Any) -> Any:
            from langchain_core.messages import AIMessage

            self.invocations.append(("ainvoke", (tuple(messages), dict(kwargs))))
            return AIMessage(content=f"echo:{self.kwargs.get('temperature')}")

        async def astream(self, messages: Iterable[Any], **kwargs: Any):
            from langchain_core.messages import AIMessageChunk

            self.invocations.append(("astream", (tuple(messages), dict(kwargs))))
            yield AIMessageChunk(content="", additional_kwargs={"reasoning_content": "想一想"})
            yield AIMessageChunk(content="写入中")
            yield AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {"name": "append_text", "args": '{"text": "正文\\n"}', "id": "call_1", "index": 0}
                ],
            )

    monkeypatch.setattr(providers, "ChatOpenAI", DummyChatModel)
    return DummyChatModel


class ScriptedModelClient:
    """Model client replaying canned replies in order.

    ``replies`` feeds :meth:`generate`; ``streams`` holds one list of chunks per
    ``stream_with_tools`` turn. Every call is recorded for assertions.
    """

    def __init__(
        self,
        replies: Sequence[str | Exception] = (),
        streams: Sequence[Sequence[StreamChunk]] = (),
    ) -> None:
        self.replies = list(replies)
        self.streams = [list(turn) for turn in streams]
        self.generate_calls: List[dict[str, Any]] = []
        self.stream_calls: List[dict[str, Any]] = []

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> GenerationResult:
        self.generate_calls.append({"prompt": prompt, "system_prompt": system_prompt, "options": options})
        if not self.replies:
            raise AssertionError("Unexpected generate call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return GenerationResult(text=reply)

    async def stream_with_tools(
        self,
        messages: Sequence[Any],
        tools: Sequence[Mapping[str, Any]],
        system_prompt: str,
        options: GenerateOptions | None = None,
    ):
        self.stream_calls.append(
            {"messages": list(messages), "tools": list(tools), "system_prompt": system_prompt}
        )
        turn = self.streams.pop(0) if self.streams else []
        for chunk in turn:
            yield chunk


@pytest.fixture
def scripted_client():
    return ScriptedModelClient


@pytest.fixture
def sample_outline() -> ArticleOutline:
    return ArticleOutline(
        title="人工智能简史",
        theme="梳理人工智能的发展脉络",
        sections=[
            OutlineSection(id="s1", title="起源", description="早期探索", key_points=["图灵测试"]),
            OutlineSection(id="s2", title="发展", description="技术演进", key_points=["专家系统", "深度学习"]),
            OutlineSection(id="s3", title="展望", description="未来方向", key_points=["通用智能"]),
        ],
        total_estimated_paragraphs=9,
    )
