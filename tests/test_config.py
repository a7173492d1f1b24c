from __future__ import annotations

from pathlib import Path

import pytest

from xwrite.config import MAX_DRAFT_CONCURRENCY, LLMConfig, PipelineConfig, XWriteConfig


def test_llm_config_resolve_api_key_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = LLMConfig(api_key_env="CUSTOM", fallback_api_key_envs=("OPENAI_API_KEY",))

    assert cfg.resolve_api_key(override="override-key") == "override-key"

    monkeypatch.setenv("CUSTOM", "primary-key")
    assert cfg.resolve_api_key() == "primary-key"

    monkeypatch.delenv("CUSTOM")
    monkeypatch.setenv("OPENAI_API_KEY", "fallback-key")
    assert cfg.resolve_api_key() == "fallback-key"


def test_llm_config_provider_kwargs_merge() -> None:
    cfg = LLMConfig(
        model="base-model",
        base_url="https://example.com",
        temperature=0.3,
        max_tokens=256,
    )
    kwargs = cfg.provider_kwargs(api_key="inline-key", temperature=0.8)

    assert kwargs["model"] == "base-model"
    assert kwargs["base_url"] == "https://example.com"
    assert kwargs["api_key"] == "inline-key"
    assert kwargs["temperature"] == 0.8
    assert kwargs["max_tokens"] == 256


def test_llm_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XWRITE_MODEL", "env-model")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://fallback.example")
    monkeypatch.setenv("XWRITE_TEMPERATURE", "0.4")
    monkeypatch.setenv("XWRITE_MAX_TOKENS", "1024")

    cfg = LLMConfig()

    assert cfg.model == "env-model"
    assert cfg.base_url == "https://fallback.example"
    assert cfg.temperature == 0.4
    assert cfg.max_tokens == 1024


def test_pipeline_defaults() -> None:
    cfg = PipelineConfig()

    assert cfg.max_tool_rounds == 15
    assert cfg.max_review_cycles == 3
    assert cfg.critic_temperature == 0.3
    assert cfg.arbiter_temperature == 0.0
    assert cfg.max_write_tool_retries == 2
    assert cfg.replan_score_threshold == 7
    assert cfg.metrics_history_limit == 60
    assert cfg.enable_verification is True


def test_pipeline_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("XWRITE_MAX_TOOL_ROUNDS", "4")
    monkeypatch.setenv("XWRITE_DRAFT_CONCURRENCY", "2")
    monkeypatch.setenv("XWRITE_ENABLE_VERIFICATION", "off")

    cfg = PipelineConfig()

    assert cfg.max_tool_rounds == 4
    assert cfg.draft_concurrency == 2
    assert cfg.enable_verification is False


@pytest.mark.parametrize(
    ("requested", "sections", "expected"),
    [(None, 3, 3), (None, 10, MAX_DRAFT_CONCURRENCY), (2, 5, 2), (8, 3, 3), (None, 0, 1)],
)
def test_draft_concurrency_is_clamped(requested, sections: int, expected: int) -> None:
    assert PipelineConfig(draft_concurrency=requested).resolve_draft_concurrency(sections) == expected


def test_retry_delay_is_capped() -> None:
    cfg = PipelineConfig()
    assert [cfg.retry_delay(attempt) for attempt in (1, 2, 3, 10)] == pytest.approx([0.3, 0.6, 0.9, 1.2])


@pytest.mark.parametrize(
    "kwargs",
    [{"max_tool_rounds": 0}, {"max_review_cycles": 0}, {"draft_concurrency": 0}],
)
def test_pipeline_config_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        PipelineConfig(**kwargs)


def test_xwrite_config_path_resolution(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"

    cfg = XWriteConfig().with_paths(state_dir=state_dir)
    assert cfg.paths.state_dir == state_dir
    assert state_dir.exists()

    cfg.ensure_directories()
    assert cfg.state_dir == state_dir
    assert cfg.paths.checkpoint_path == state_dir / "checkpoint.json"
    assert cfg.paths.memory_path == state_dir / "memory.md"
    assert cfg.paths.metrics_path == state_dir / "metrics.json"
