"""Dataclass-driven configuration for the xwrite authoring pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable

from .paths import StatePathConfig, resolve_state_path

__all__ = [
    "LLMConfig",
    "PipelineConfig",
    "XWriteConfig",
    "MAX_DRAFT_CONCURRENCY",
]

MAX_DRAFT_CONCURRENCY = 6


def _env_float(name: str, default: float | None = None) -> float | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:  # pragma: no cover
        return default


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:  # pragma: no cover
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(slots=True)
class LLMConfig:
    """Configuration for LangChain-backed chat providers."""

    model: str = field(default_factory=lambda: os.getenv("XWRITE_MODEL", "gpt-4o-mini"))
    base_url: str | None = field(
        default_factory=lambda: os.getenv("XWRITE_BASE_URL") or os.getenv("OPENAI_BASE_URL")
    )
    temperature: float = field(default_factory=lambda: _env_float("XWRITE_TEMPERATURE", 0.7) or 0.0)
    max_tokens: int | None = field(default_factory=lambda: _env_int("XWRITE_MAX_TOKENS"))
    timeout: float | None = field(default_factory=lambda: _env_float("XWRITE_TIMEOUT"))
    api_key_env: str = field(default_factory=lambda: os.getenv("XWRITE_API_KEY_ENV", "XWRITE_API_KEY"))
    fallback_api_key_envs: tuple[str, ...] = ("OPENAI_API_KEY",)

    def resolve_api_key(self, override: str | None = None) -> str | None:
        if override:
            return override
        env_candidates: Iterable[str | None] = (self.api_key_env, *self.fallback_api_key_envs)
        for name in env_candidates:
            if not name:
                continue
            value = os.getenv(name)
            if value:
                return value
        return None

    def provider_kwargs(
        self,
        *,
        model: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, object | None]:
        return {
            "model": model or self.model,
            "base_url": base_url or self.base_url,
            "api_key": api_key if api_key is not None else self.resolve_api_key(),
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": self.max_tokens if max_tokens is None else max_tokens,
            "timeout": self.timeout,
        }


@dataclass(slots=True)
class PipelineConfig:
    """Knobs for the multi-agent authoring run."""

    max_tool_rounds: int = field(default_factory=lambda: _env_int("XWRITE_MAX_TOOL_ROUNDS", 15) or 15)
    draft_concurrency: int | None = field(default_factory=lambda: _env_int("XWRITE_DRAFT_CONCURRENCY"))
    max_review_cycles: int = field(default_factory=lambda: _env_int("XWRITE_MAX_REVIEW_CYCLES", 3) or 3)
    reviewer_temperature: float | None = None
    critic_temperature: float = 0.3
    arbiter_temperature: float = 0.0
    verifier_temperature: float = 0.0
    planner_temperature: float | None = None
    max_write_tool_retries: int = 2
    retry_base_delay: float = 0.3
    retry_max_delay: float = 1.2
    replan_score_threshold: int = 7
    metrics_history_limit: int = 60
    enable_verification: bool = field(default_factory=lambda: _env_bool("XWRITE_ENABLE_VERIFICATION", True))

    def __post_init__(self) -> None:
        if self.max_tool_rounds < 1:
            raise ValueError("max_tool_rounds must be at least 1")
        if self.max_review_cycles < 1:
            raise ValueError("max_review_cycles must be at least 1")
        if self.draft_concurrency is not None and self.draft_concurrency < 1:
            raise ValueError("draft_concurrency must be positive when provided")

    def resolve_draft_concurrency(self, section_count: int) -> int:
        """Return the worker count for parallel drafting, never above the hard cap."""

        requested = self.draft_concurrency or section_count
        return max(1, min(MAX_DRAFT_CONCURRENCY, requested, max(1, section_count)))

    def retry_delay(self, attempt: int) -> float:
        return min(self.retry_base_delay * attempt, self.retry_max_delay)

    def to_dict(self) -> dict[str, object]:
        return {
            "max_tool_rounds": self.max_tool_rounds,
            "draft_concurrency": self.draft_concurrency,
            "max_review_cycles": self.max_review_cycles,
            "reviewer_temperature": self.reviewer_temperature,
            "critic_temperature": self.critic_temperature,
            "arbiter_temperature": self.arbiter_temperature,
            "verifier_temperature": self.verifier_temperature,
            "planner_temperature": self.planner_temperature,
            "max_write_tool_retries": self.max_write_tool_retries,
            "retry_base_delay": self.retry_base_delay,
            "retry_max_delay": self.retry_max_delay,
            "replan_score_threshold": self.replan_score_threshold,
            "metrics_history_limit": self.metrics_history_limit,
            "enable_verification": self.enable_verification,
        }


@dataclass(slots=True)
class XWriteConfig:
    """Primary configuration entry point for the authoring pipeline."""

    paths: StatePathConfig = field(default_factory=StatePathConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    def with_paths(self, *, state_dir: Path | str | None = None) -> "XWriteConfig":
        new_paths = replace(
            self.paths,
            state_dir=resolve_state_path(state_dir or self.paths.state_dir, create=self.paths.create_state),
        )
        return replace(self, paths=new_paths)

    @property
    def state_dir(self) -> Path:
        return resolve_state_path(self.paths.state_dir, create=self.paths.create_state)

    def ensure_directories(self) -> "XWriteConfig":
        self.paths = self.paths.ensure()
        return self

    def as_provider_kwargs(self, **overrides: object) -> dict[str, object | None]:
        return self.llm.provider_kwargs(**overrides)
