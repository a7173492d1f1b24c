from __future__ import annotations

import asyncio

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from xwrite.llm.client import (
    GenerateOptions,
    LangChainModelClient,
    TextDelta,
    ThinkingDelta,
    ToolArgDelta,
    ToolCallBatch,
    extract_text_content,
    with_temperature,
)
from xwrite.llm.providers import (
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderSettings,
    build_provider,
)


def test_build_provider_prefers_explicit_over_env(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("XWRITE_MODEL", "env-model")
    monkeypatch.setenv("XWRITE_BASE_URL", "https://env.example")
    monkeypatch.setenv("XWRITE_API_KEY", "env-key")
    monkeypatch.setenv("XWRITE_TEMPERATURE", "0.25")
    monkeypatch.setenv("XWRITE_MAX_TOKENS", "512")

    provider = build_provider(
        model="cli-model",
        temperature=0.9,
        max_tokens=2048,
        timeout=30.0,
    )

    assert isinstance(provider, LangChainChatProvider)
    assert provider.model == "cli-model"
    settings = provider.settings
    assert settings.base_url == "https://env.example"
    assert settings.api_key == "env-key"
    assert settings.temperature == 0.9
    assert settings.max_tokens == 2048
    assert settings.timeout == 30.0

    dummy_instance = provider._client  # type: ignore[attr-defined]
    assert dummy_instance.kwargs["model"] == "cli-model"
    assert dummy_instance.kwargs["temperature"] == 0.9


def test_build_provider_uses_env_fallbacks_when_not_overridden(monkeypatch: pytest.MonkeyPatch, dummy_chat_model) -> None:
    monkeypatch.setenv("OPENAI_MODEL", "fallback-model")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://fallback.example")
    monkeypatch.setenv("OPENAI_API_KEY", "fallback-key")
    monkeypatch.setenv("XWRITE_TEMPERATURE", "0.1")

    provider = build_provider()

    assert provider.model == "fallback-model"
    settings = provider.settings
    assert settings.base_url == "https://fallback.example"
    assert settings.api_key == "fallback-key"
    assert settings.temperature == 0.1
    assert settings.max_tokens is None


def test_build_provider_raises_dependency_error(monkeypatch: pytest.MonkeyPatch) -> None:
    from xwrite import llm

    monkeypatch.setattr(llm.providers, "ChatOpenAI", None)
    with pytest.raises(ProviderDependencyError):
        build_provider()


def test_provider_settings_as_kwargs_filters_none() -> None:
    settings = ProviderSettings(model="demo", temperature=0.5, max_tokens=None, timeout=None)
    assert settings.as_kwargs() == {"model": "demo", "temperature": 0.5}


def test_with_overrides_ignores_none_and_rebuilds_client(dummy_chat_model) -> None:
    provider = build_provider(model="demo-model", temperature=0.2)

    assert provider.with_overrides(temperature=None) is provider
    hotter = provider.with_overrides(temperature=0.8, model=None)
    assert hotter is not provider
    assert hotter.settings.temperature == 0.8
    assert hotter.model == "demo-model"
    assert provider.settings.temperature == 0.2


def test_bind_tools_passes_definitions_to_chat_model(dummy_chat_model) -> None:
    tools = [{"type": "function", "function": {"name": "append_text"}}]
    bound = build_provider(model="demo-model").bind_tools(tools)

    assert bound.tools == tools
    assert bound._client.bound_tools == tools  # type: ignore[attr-defined]


def test_langchain_chat_provider_propagates_invocation(dummy_chat_model) -> None:
    provider = build_provider(model="demo-model")
    response = provider.invoke([{"role": "user", "content": "hi"}], test=True)

    assert response["messages"][0]["content"] == "hi"
    dummy_instance = provider._client  # type: ignore[attr-defined]
    assert dummy_instance.invocations[0][0] == "invoke"

    assert list(provider.stream([1, 2, 3])) == [1, 2, 3]
    assert dummy_instance.invocations[1][0] == "stream"


# ----------------------------------------------------------------------
# ModelClient adapter
# ----------------------------------------------------------------------
def test_model_client_generate_applies_option_overrides(dummy_chat_model) -> None:
    client = LangChainModelClient(build_provider(model="demo-model", temperature=0.1))

    default = asyncio.run(client.generate("问题", "系统"))
    tuned = asyncio.run(client.generate("问题", "系统", GenerateOptions(temperature=0.3)))

    assert default.text == "echo:0.1"
    assert tuned.text == "echo:0.3"
    messages = client.provider._client.invocations[0][1][0]  # type: ignore[attr-defined]
    assert isinstance(messages[0], SystemMessage) and messages[0].content == "系统"
    assert isinstance(messages[1], HumanMessage) and messages[1].content == "问题"


def test_model_client_stream_yields_typed_chunks(dummy_chat_model) -> None:
    client = LangChainModelClient(build_provider(model="demo-model"))
    tools = [{"type": "function", "function": {"name": "append_text"}}]

    async def collect():
        return [chunk async for chunk in client.stream_with_tools([HumanMessage(content="写")], tools, "系统")]

    chunks = asyncio.run(collect())

    assert chunks[0] == ThinkingDelta("想一想")
    assert chunks[1] == TextDelta("写入中")
    assert isinstance(chunks[2], ToolArgDelta) and chunks[2].name == "append_text"
    batch = chunks[-1]
    assert isinstance(batch, ToolCallBatch)
    assert batch.calls[0].id == "call_1"
    assert batch.calls[0].arguments == {"text": "正文\n"}


def test_with_temperature_only_fills_missing_value() -> None:
    assert with_temperature(None, 0.3).temperature == 0.3
    assert with_temperature(GenerateOptions(temperature=0.9), 0.3).temperature == 0.9


def test_extract_text_content_joins_segments() -> None:
    class Message:
        content = [{"type": "text", "text": "你"}, {"type": "text", "text": "好"}, "ignored"]

    assert extract_text_content(Message()) == "你好"
