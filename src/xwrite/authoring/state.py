"""Runtime state shared by the pipeline nodes; doubles as the persisted checkpoint."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional

from .long_term_memory import LongTermMemoryState
from .metrics import RunMetrics
from .timestamps import utc_now_iso
from .types import ArticleOutline, ReviewFeedback, SectionWriteResult, VerificationFeedback

__all__ = [
    "PipelineStatus",
    "PipelineRuntimeState",
    "CHECKPOINT_VERSION",
]

PipelineStatus = Literal["running", "completed", "error", "cancelled"]

CHECKPOINT_VERSION = 1


@dataclass(slots=True)
class PipelineRuntimeState:
    """Everything a node reads or writes, plus the traversal cursor.

    ``node_id`` is the node to run next; ``None`` once the graph has finished.
    """

    run_id: str
    request: str
    session_id: Optional[str] = None
    outline: Optional[ArticleOutline] = None
    confirmed: bool = False
    written_sections: List[SectionWriteResult] = field(default_factory=list)
    written_segments: List[str] = field(default_factory=list)
    review_cycles: int = 0
    visit_count: Dict[str, int] = field(default_factory=dict)
    node_id: Optional[str] = None
    status: PipelineStatus = "running"
    memory: Optional[LongTermMemoryState] = None
    metrics: Optional[RunMetrics] = None
    feedback_history: List[ReviewFeedback] = field(default_factory=list)
    verification_failures: Dict[str, VerificationFeedback] = field(default_factory=dict)
    replan_requested: bool = False
    error: Optional[str] = None
    updated_at: str = field(default_factory=utc_now_iso)

    @property
    def resume_key(self) -> str:
        return self.session_id or self.request

    @property
    def last_feedback(self) -> Optional[ReviewFeedback]:
        return self.feedback_history[-1] if self.feedback_history else None

    def upsert_section(self, result: SectionWriteResult) -> None:
        for index, existing in enumerate(self.written_sections):
            if existing.section_id == result.section_id:
                self.written_sections[index] = result
                return
        self.written_sections.append(result)

    def section_result(self, section_id: str) -> Optional[SectionWriteResult]:
        for result in self.written_sections:
            if result.section_id == section_id:
                return result
        return None

    def sections_before(self, section_id: str) -> List[SectionWriteResult]:
        if self.outline is None:
            return list(self.written_sections)
        order = {section.id: index for index, section in enumerate(self.outline.sections)}
        limit = order.get(section_id, len(order))
        return sorted(
            (item for item in self.written_sections if order.get(item.section_id, len(order)) < limit),
            key=lambda item: order.get(item.section_id, len(order)),
        )

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, object]:
        return {
            "version": CHECKPOINT_VERSION,
            "runId": self.run_id,
            "request": self.request,
            "sessionId": self.session_id,
            "outline": self.outline.to_dict() if self.outline is not None else None,
            "confirmed": self.confirmed,
            "writtenSections": [item.to_dict() for item in self.written_sections],
            "writtenSegments": list(self.written_segments),
            "reviewCycles": self.review_cycles,
            "visitCount": dict(self.visit_count),
            "nodeId": self.node_id,
            "status": self.status,
            "memory": self.memory.to_dict() if self.memory is not None else None,
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
            "feedbackHistory": [item.to_dict() for item in self.feedback_history],
            "verificationFailures": {key: value.to_dict() for key, value in self.verification_failures.items()},
            "replanRequested": self.replan_requested,
            "error": self.error,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PipelineRuntimeState":
        outline = payload.get("outline")
        memory = payload.get("memory")
        metrics = payload.get("metrics")
        failures = payload.get("verificationFailures") or {}
        status = payload.get("status")
        return cls(
            run_id=str(payload.get("runId", "")),
            request=str(payload.get("request", "")),
            session_id=payload.get("sessionId") or None,
            outline=ArticleOutline.model_validate(outline) if isinstance(outline, Mapping) else None,
            confirmed=bool(payload.get("confirmed")),
            written_sections=[
                SectionWriteResult.from_dict(item)
                for item in payload.get("writtenSections") or []
                if isinstance(item, Mapping)
            ],
            written_segments=[str(item) for item in payload.get("writtenSegments") or []],
            review_cycles=int(payload.get("reviewCycles") or 0),
            visit_count={str(key): int(value) for key, value in (payload.get("visitCount") or {}).items()},
            node_id=payload.get("nodeId") or None,
            status=status if status in ("running", "completed", "error", "cancelled") else "error",
            memory=LongTermMemoryState.from_dict(memory) if isinstance(memory, Mapping) else None,
            metrics=RunMetrics.from_dict(metrics) if isinstance(metrics, Mapping) else None,
            feedback_history=[
                ReviewFeedback.model_validate(item)
                for item in payload.get("feedbackHistory") or []
                if isinstance(item, Mapping)
            ],
            verification_failures={
                str(key): VerificationFeedback.model_validate(value)
                for key, value in failures.items()
                if isinstance(value, Mapping)
            },
            replan_requested=bool(payload.get("replanRequested")),
            error=payload.get("error") or None,
            updated_at=str(payload.get("updatedAt") or utc_now_iso()),
        )
