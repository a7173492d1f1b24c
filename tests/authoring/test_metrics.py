from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from xwrite.authoring.metrics import (
    PipelineMetricsSummary,
    PipelineRunMetrics,
    RunMetrics,
    append_pipeline_metrics,
    build_pipeline_metrics_dashboard,
    summarize_pipeline_metrics,
)

SAMPLE_RUNS = [
    PipelineRunMetrics(
        run_id="r1",
        started_at="2026-02-27T10:00:00.000Z",
        finished_at="2026-02-27T10:01:00.000Z",
        duration_ms=60000,
        total_sections=4,
        revised_sections=1,
        review_rounds=2,
        tool_calls=20,
        tool_failures=0,
        duplicate_write_skips=2,
        quality_gate_triggered=True,
        quality_gate_passed=True,
        final_review_score=8,
    ),
    PipelineRunMetrics(
        run_id="r2",
        started_at="2026-02-27T11:00:00.000Z",
        finished_at="2026-02-27T11:02:00.000Z",
        duration_ms=120000,
        total_sections=5,
        revised_sections=2,
        review_rounds=3,
        tool_calls=25,
        tool_failures=1,
        duplicate_write_skips=1,
        quality_gate_triggered=True,
        quality_gate_passed=False,
        final_review_score=7,
    ),
]


def test_summarize_history_averages() -> None:
    summary = summarize_pipeline_metrics(SAMPLE_RUNS)

    assert summary.run_count == 2
    assert summary.pass_rate == 0.5
    assert summary.avg_review_rounds == 2.5
    assert summary.avg_duration_ms == 90000
    assert summary.avg_rework_rate == pytest.approx(0.325)
    assert summary.avg_duplicate_write_rate == pytest.approx(0.07)


def test_summarize_empty_history() -> None:
    assert summarize_pipeline_metrics([]) == PipelineMetricsSummary()


def test_dashboard_markdown() -> None:
    dashboard = build_pipeline_metrics_dashboard(SAMPLE_RUNS[0], SAMPLE_RUNS)

    assert "Agent 指标看板" in dashboard
    assert "| 返工率 | 25.0% | 32.5% |" in dashboard
    assert "| 重复写入率 | 10.0% | 7.0% |" in dashboard
    assert "| 总耗时 | 1m 0s | 1m 30s |" in dashboard
    assert dashboard.endswith("本次质量门控：通过（最终分 8/10）。")


def test_dashboard_without_score_reports_failure() -> None:
    latest = PipelineRunMetrics.from_dict({**SAMPLE_RUNS[1].to_dict(), "finalReviewScore": None})
    dashboard = build_pipeline_metrics_dashboard(latest, [latest])
    assert dashboard.endswith("本次质量门控：未通过。")


def test_history_is_capped_to_newest_entries() -> None:
    history = append_pipeline_metrics(SAMPLE_RUNS, SAMPLE_RUNS[0], limit=2)
    assert [item.run_id for item in history] == ["r2", "r1"]
    assert len(SAMPLE_RUNS) == 2


def test_run_metrics_finalize_and_round_trip() -> None:
    started = datetime(2026, 1, 1, tzinfo=timezone.utc)
    metrics = RunMetrics(run_id="run-1", started_at=started, total_sections=3)
    metrics.mark_revised("s1")
    metrics.mark_revised("s1")
    metrics.mark_revised("s2")

    restored = RunMetrics.from_dict(metrics.to_dict())
    assert restored.started_at == started
    assert restored.revised_sections == {"s1", "s2"}

    record = restored.finalize(started + timedelta(seconds=90))
    assert record.duration_ms == 90000
    assert record.revised_sections == 2
    assert record.finished_at == "2026-01-01T00:01:30.000Z"
    assert record.rework_rate == pytest.approx(2 / 3)
