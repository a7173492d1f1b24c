"""LLM tooling for the xwrite authoring pipeline."""

from .client import (
    GenerateOptions,
    GenerationResult,
    LangChainModelClient,
    ModelClient,
    StreamChunk,
    TextDelta,
    ThinkingDelta,
    ToolArgDelta,
    ToolCallBatch,
    ToolCallRequest,
    with_temperature,
)
from .mock import MockModelClient
from .providers import (
    LangChainChatProvider,
    ProviderDependencyError,
    ProviderError,
    ProviderSettings,
    build_provider,
)

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
    "MockModelClient",
    "with_temperature",
    "LangChainChatProvider",
    "ProviderError",
    "ProviderDependencyError",
    "ProviderSettings",
    "build_provider",
]
