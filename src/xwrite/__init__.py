"""xwrite: multi-agent document authoring on LangChain and LangGraph."""

from .authoring import (
    ArticleOutline,
    AuthoringOrchestrator,
    PipelineCallbacks,
    PipelineResult,
    ReviewFeedback,
)
from .config import LLMConfig, PipelineConfig, XWriteConfig
from .document import MarkdownDocument
from .io import FileStateStore, InMemoryStateStore, StateStore
from .paths import StatePathConfig, resolve_document_path, resolve_state_path

__all__ = [
    "LLMConfig",
    "PipelineConfig",
    "XWriteConfig",
    "StatePathConfig",
    "resolve_state_path",
    "resolve_document_path",
    "StateStore",
    "FileStateStore",
    "InMemoryStateStore",
    "MarkdownDocument",
    "ArticleOutline",
    "ReviewFeedback",
    "AuthoringOrchestrator",
    "PipelineCallbacks",
    "PipelineResult",
]
