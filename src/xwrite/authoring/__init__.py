"""Planner, writer, reviewer and verifier agents plus the pipeline that drives them."""

from .consensus import ConsensusReviewer, ConsensusReviewResult
from .metrics import PipelineRunMetrics, RunMetrics, build_pipeline_metrics_dashboard
from .orchestrator import AuthoringOrchestrator, PipelineCallbacks, PipelineNode, PipelineResult
from .planner_agent import PlannerAgent
from .review_agent import ReviewerAgent
from .state import PipelineRuntimeState
from .task_graph import TaskGraph, TaskGraphError, TaskGraphLoopError, TaskGraphNode
from .tool_policy import GuardedToolExecutor
from .types import (
    ArticleOutline,
    OutlineSection,
    ReviewFeedback,
    SectionFeedback,
    SectionWriteResult,
    VerificationFeedback,
)
from .verifier_agent import VerifierAgent
from .writer_agent import WriterAgent

__all__ = [
    "ArticleOutline",
    "OutlineSection",
    "ReviewFeedback",
    "SectionFeedback",
    "SectionWriteResult",
    "VerificationFeedback",
    "PlannerAgent",
    "WriterAgent",
    "ReviewerAgent",
    "VerifierAgent",
    "ConsensusReviewer",
    "ConsensusReviewResult",
    "GuardedToolExecutor",
    "TaskGraph",
    "TaskGraphNode",
    "TaskGraphError",
    "TaskGraphLoopError",
    "PipelineRuntimeState",
    "PipelineRunMetrics",
    "RunMetrics",
    "build_pipeline_metrics_dashboard",
    "AuthoringOrchestrator",
    "PipelineCallbacks",
    "PipelineNode",
    "PipelineResult",
]
