"""Per-run pipeline counters, rolling history and the Markdown dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .timestamps import parse_iso_timestamp, to_iso, utc_now

__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "RunMetrics",
    "PipelineRunMetrics",
    "PipelineMetricsSummary",
    "append_pipeline_metrics",
    "summarize_pipeline_metrics",
    "build_pipeline_metrics_dashboard",
]

DEFAULT_HISTORY_LIMIT = 60


@dataclass(slots=True, frozen=True)
class PipelineRunMetrics:
    """Immutable record of a finished run, as stored in the history."""

    run_id: str
    started_at: str
    finished_at: str
    duration_ms: float
    total_sections: int
    revised_sections: int
    review_rounds: int
    tool_calls: int
    tool_failures: int
    duplicate_write_skips: int
    quality_gate_triggered: bool
    quality_gate_passed: bool
    final_review_score: Optional[float] = None

    @property
    def rework_rate(self) -> float:
        return self.revised_sections / max(1, self.total_sections)

    @property
    def duplicate_write_rate(self) -> float:
        return self.duplicate_write_skips / max(1, self.tool_calls)

    def to_dict(self) -> Dict[str, object]:
        return {
            "runId": self.run_id,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
            "durationMs": self.duration_ms,
            "totalSections": self.total_sections,
            "revisedSections": self.revised_sections,
            "reviewRounds": self.review_rounds,
            "toolCalls": self.tool_calls,
            "toolFailures": self.tool_failures,
            "duplicateWriteSkips": self.duplicate_write_skips,
            "qualityGateTriggered": self.quality_gate_triggered,
            "qualityGatePassed": self.quality_gate_passed,
            "finalReviewScore": self.final_review_score,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PipelineRunMetrics":
        score = payload.get("finalReviewScore")
        return cls(
            run_id=str(payload.get("runId", "")),
            started_at=str(payload.get("startedAt", "")),
            finished_at=str(payload.get("finishedAt", "")),
            duration_ms=float(payload.get("durationMs") or 0),
            total_sections=int(payload.get("totalSections") or 0),
            revised_sections=int(payload.get("revisedSections") or 0),
            review_rounds=int(payload.get("reviewRounds") or 0),
            tool_calls=int(payload.get("toolCalls") or 0),
            tool_failures=int(payload.get("toolFailures") or 0),
            duplicate_write_skips=int(payload.get("duplicateWriteSkips") or 0),
            quality_gate_triggered=bool(payload.get("qualityGateTriggered")),
            quality_gate_passed=bool(payload.get("qualityGatePassed")),
            final_review_score=float(score) if isinstance(score, (int, float)) else None,
        )


@dataclass(slots=True)
class RunMetrics:
    """Mutable counters collected while a run is in flight."""

    run_id: str
    started_at: datetime = field(default_factory=utc_now)
    total_sections: int = 0
    revised_sections: set[str] = field(default_factory=set)
    review_rounds: int = 0
    tool_calls: int = 0
    tool_failures: int = 0
    duplicate_write_skips: int = 0
    quality_gate_triggered: bool = False
    quality_gate_passed: bool = False
    final_review_score: Optional[float] = None

    def mark_revised(self, section_id: str) -> None:
        self.revised_sections.add(section_id)

    def to_dict(self) -> Dict[str, object]:
        return {
            "runId": self.run_id,
            "startedAt": to_iso(self.started_at),
            "totalSections": self.total_sections,
            "revisedSections": sorted(self.revised_sections),
            "reviewRounds": self.review_rounds,
            "toolCalls": self.tool_calls,
            "toolFailures": self.tool_failures,
            "duplicateWriteSkips": self.duplicate_write_skips,
            "qualityGateTriggered": self.quality_gate_triggered,
            "qualityGatePassed": self.quality_gate_passed,
            "finalReviewScore": self.final_review_score,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RunMetrics":
        started = parse_iso_timestamp(payload.get("startedAt"))
        score = payload.get("finalReviewScore")
        metrics = cls(
            run_id=str(payload.get("runId", "")),
            total_sections=int(payload.get("totalSections") or 0),
            revised_sections={str(item) for item in payload.get("revisedSections") or []},
            review_rounds=int(payload.get("reviewRounds") or 0),
            tool_calls=int(payload.get("toolCalls") or 0),
            tool_failures=int(payload.get("toolFailures") or 0),
            duplicate_write_skips=int(payload.get("duplicateWriteSkips") or 0),
            quality_gate_triggered=bool(payload.get("qualityGateTriggered")),
            quality_gate_passed=bool(payload.get("qualityGatePassed")),
            final_review_score=float(score) if isinstance(score, (int, float)) else None,
        )
        if started:
            metrics.started_at = datetime.fromtimestamp(started, tz=timezone.utc)
        return metrics

    def finalize(self, finished_at: datetime | None = None) -> PipelineRunMetrics:
        finished = finished_at or utc_now()
        duration_ms = max(0.0, (finished - self.started_at).total_seconds() * 1000)
        return PipelineRunMetrics(
            run_id=self.run_id,
            started_at=to_iso(self.started_at),
            finished_at=to_iso(finished),
            duration_ms=duration_ms,
            total_sections=self.total_sections,
            revised_sections=len(self.revised_sections),
            review_rounds=self.review_rounds,
            tool_calls=self.tool_calls,
            tool_failures=self.tool_failures,
            duplicate_write_skips=self.duplicate_write_skips,
            quality_gate_triggered=self.quality_gate_triggered,
            quality_gate_passed=self.quality_gate_passed,
            final_review_score=self.final_review_score,
        )


@dataclass(slots=True, frozen=True)
class PipelineMetricsSummary:
    run_count: int = 0
    pass_rate: float = 0.0
    avg_duration_ms: float = 0.0
    avg_review_rounds: float = 0.0
    avg_rework_rate: float = 0.0
    avg_duplicate_write_rate: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "runCount": self.run_count,
            "passRate": self.pass_rate,
            "avgDurationMs": self.avg_duration_ms,
            "avgReviewRounds": self.avg_review_rounds,
            "avgReworkRate": self.avg_rework_rate,
            "avgDuplicateWriteRate": self.avg_duplicate_write_rate,
        }


def append_pipeline_metrics(
    history: Sequence[PipelineRunMetrics],
    metric: PipelineRunMetrics,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> List[PipelineRunMetrics]:
    """Return a new history with ``metric`` appended, keeping the newest ``limit`` entries."""

    return [*history, metric][-max(1, limit):]


def summarize_pipeline_metrics(history: Sequence[PipelineRunMetrics]) -> PipelineMetricsSummary:
    if not history:
        return PipelineMetricsSummary()

    passed = np.array([1.0 if item.quality_gate_passed else 0.0 for item in history])
    durations = np.array([item.duration_ms for item in history], dtype=float)
    rounds = np.array([item.review_rounds for item in history], dtype=float)
    rework = np.array([item.rework_rate for item in history], dtype=float)
    duplicates = np.array([item.duplicate_write_rate for item in history], dtype=float)
    return PipelineMetricsSummary(
        run_count=len(history),
        pass_rate=float(passed.mean()),
        avg_duration_ms=float(durations.mean()),
        avg_review_rounds=float(rounds.mean()),
        avg_rework_rate=float(rework.mean()),
        avg_duplicate_write_rate=float(duplicates.mean()),
    )


def _format_duration(ms: float) -> str:
    total_seconds = max(0, int(round(ms / 1000)))
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds}s"


def _percent(value: float) -> str:
    return f"{value * 100:.1f}%"


def _format_score(score: float) -> str:
    return f"{score:g}"


def build_pipeline_metrics_dashboard(latest: PipelineRunMetrics, history: Sequence[PipelineRunMetrics]) -> str:
    summary = summarize_pipeline_metrics(history)
    lines = [
        "### Agent 指标看板",
        "| 指标 | 本次 | 历史均值 |",
        "| --- | --- | --- |",
        f"| 通过率 | {'100%' if latest.quality_gate_passed else '0%'} | {_percent(summary.pass_rate)} |",
        f"| 返工率 | {_percent(latest.rework_rate)} | {_percent(summary.avg_rework_rate)} |",
        f"| 重复写入率 | {_percent(latest.duplicate_write_rate)} | {_percent(summary.avg_duplicate_write_rate)} |",
        f"| 平均轮次 | {latest.review_rounds:.1f} | {summary.avg_review_rounds:.1f} |",
        f"| 总耗时 | {_format_duration(latest.duration_ms)} | {_format_duration(summary.avg_duration_ms)} |",
        "",
    ]
    gate = "通过" if latest.quality_gate_passed else "未通过"
    score = (
        f"（最终分 {_format_score(latest.final_review_score)}/10）"
        if latest.final_review_score is not None
        else ""
    )
    lines.append(f"本次质量门控：{gate}{score}。")
    return "\n".join(lines)
