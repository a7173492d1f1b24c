"""End-to-end authoring pipeline wired onto the task graph.

planning → awaiting_confirmation → init_memory → writing_sections →
review_cycle (self-loop while a replan is warranted) → finalize.

The runtime state is checkpointed after every node. A later run with the same
resume key (the session id when given, otherwise the exact request text)
picks up from the checkpointed node while the checkpoint is still
``running``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import XWriteConfig
from ..io import InMemoryStateStore, StateStore
from ..llm.client import GenerateOptions, ModelClient, ToolCallRequest
from .consensus import ConsensusReviewer, ConsensusReviewResult
from .context_builder import build_revision_feedback
from .long_term_memory import (
    LongTermMemoryState,
    build_memory_context_for_section,
    create_long_term_memory,
    merge_long_term_memory,
    parse_long_term_memory_markdown,
    render_long_term_memory_markdown,
    update_long_term_memory_with_section,
)
from .metrics import (
    PipelineRunMetrics,
    RunMetrics,
    append_pipeline_metrics,
    build_pipeline_metrics_dashboard,
)
from .parsing import VerificationParseError
from .planner_agent import PlannerAgent
from .section_memory import resolve_section_content
from .state import PipelineRuntimeState
from .task_graph import TaskGraph, TaskGraphNode
from .timestamps import utc_now_iso
from .tool_policy import GuardedToolExecutor, ToolExecutionStats
from .tools import ToolCallResult, ToolExecutor
from .types import ArticleOutline, OutlineSection, ReviewFeedback, SectionWriteResult, VerificationFeedback
from .verifier_agent import VerifierAgent
from .write_guard import StageGuardContext, ensure_trailing_newline, extract_plan_stage_titles, render_outline_plan
from .writer_agent import WriterAgent

logger = logging.getLogger(__name__)

__all__ = [
    "PipelineNode",
    "PIPELINE_TRANSITIONS",
    "PipelineCallbacks",
    "PipelineResult",
    "AuthoringOrchestrator",
]

ConfirmResult = Union[bool, Awaitable[bool]]


class PipelineNode(str, Enum):
    PLANNING = "planning"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    INIT_MEMORY = "init_memory"
    WRITING_SECTIONS = "writing_sections"
    REVIEW_CYCLE = "review_cycle"
    FINALIZE = "finalize"


PIPELINE_TRANSITIONS: Dict[PipelineNode, tuple[PipelineNode, ...]] = {
    PipelineNode.PLANNING: (PipelineNode.AWAITING_CONFIRMATION,),
    PipelineNode.AWAITING_CONFIRMATION: (PipelineNode.INIT_MEMORY,),
    PipelineNode.INIT_MEMORY: (PipelineNode.WRITING_SECTIONS,),
    PipelineNode.WRITING_SECTIONS: (PipelineNode.REVIEW_CYCLE,),
    PipelineNode.REVIEW_CYCLE: (PipelineNode.REVIEW_CYCLE, PipelineNode.FINALIZE),
    PipelineNode.FINALIZE: (),
}

REVISION_FALLBACK = "请根据审阅意见完善本章节内容，保持与大纲一致。"


@dataclass(slots=True)
class PipelineCallbacks:
    """Observer hooks for a host UI.

    Only ``on_outline_ready`` influences the run (returning ``False`` stops
    it; when unset the outline is accepted). The rest are informational and an
    exception raised inside one is logged and ignored.
    """

    on_outline_ready: Optional[Callable[[ArticleOutline, str], ConfirmResult]] = None
    on_phase_change: Optional[Callable[[str, str], Any]] = None
    on_section_start: Optional[Callable[[int, int, str], Any]] = None
    on_section_done: Optional[Callable[[int, int, str], Any]] = None
    on_review_result: Optional[Callable[[ReviewFeedback], Any]] = None
    on_chat_message: Optional[Callable[[str], Any]] = None
    on_document_snapshot: Optional[Callable[[str, str], Any]] = None
    on_chunk: Optional[Callable[[Any], Any]] = None


@dataclass(slots=True)
class PipelineResult:
    run_id: str
    status: str
    outline: Optional[ArticleOutline] = None
    written_sections: List[SectionWriteResult] = field(default_factory=list)
    final_feedback: Optional[ReviewFeedback] = None
    metrics: Optional[PipelineRunMetrics] = None
    dashboard: Optional[str] = None
    resumed: bool = False

    @property
    def quality_gate_passed(self) -> bool:
        return bool(self.metrics and self.metrics.quality_gate_passed)

    def to_dict(self) -> Dict[str, object]:
        return {
            "runId": self.run_id,
            "status": self.status,
            "outline": self.outline.to_dict() if self.outline is not None else None,
            "writtenSections": [item.to_dict() for item in self.written_sections],
            "finalFeedback": self.final_feedback.to_dict() if self.final_feedback is not None else None,
            "metrics": self.metrics.to_dict() if self.metrics is not None else None,
            "resumed": self.resumed,
        }


def _options(temperature: Optional[float]) -> Optional[GenerateOptions]:
    return GenerateOptions(temperature=temperature) if temperature is not None else None


class AuthoringOrchestrator:
    """Coordinates planner, writer, consensus review and verifier over one document."""

    def __init__(
        self,
        client: ModelClient,
        executor: ToolExecutor,
        *,
        config: XWriteConfig | None = None,
        store: StateStore | None = None,
        callbacks: PipelineCallbacks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or XWriteConfig()
        self.client = client
        self.executor = executor
        self.store: StateStore = store or InMemoryStateStore()
        self.callbacks = callbacks or PipelineCallbacks()

        pipeline = self.config.pipeline
        self.stage_context = StageGuardContext()
        self.guarded_executor = GuardedToolExecutor(executor, pipeline, stage_context=self.stage_context, sleep=sleep)
        self.planner = PlannerAgent(client, _options(pipeline.planner_temperature))
        self.writer = WriterAgent(client, max_tool_rounds=pipeline.max_tool_rounds)
        reviewer_options = _options(pipeline.reviewer_temperature)
        self.consensus = ConsensusReviewer(
            client,
            reviewer_options=reviewer_options,
            critic_options=GenerateOptions(temperature=pipeline.critic_temperature),
            arbiter_options=GenerateOptions(temperature=pipeline.arbiter_temperature),
        )
        self.verifier = VerifierAgent(client, _options(pipeline.verifier_temperature))

        self._active_run_id = 0
        self._stop_requested = False
        self._synced_stats = ToolExecutionStats()
        self._last_record: Optional[PipelineRunMetrics] = None
        self._last_dashboard: Optional[str] = None

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def cancel(self) -> None:
        """Stop the active run at its next suspension point."""

        self._stop_requested = True

    def _cancel_check(self, token: int) -> Callable[[], bool]:
        return lambda: self._stop_requested or token != self._active_run_id

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def run(self, request: str, *, session_id: Optional[str] = None) -> PipelineResult:
        if not request or not request.strip():
            raise ValueError("写作需求不能为空")

        self._active_run_id += 1
        self._stop_requested = False
        token = self._active_run_id
        is_cancelled = self._cancel_check(token)
        self.guarded_executor.is_cancelled = is_cancelled

        state, resumed = self._load_or_create_state(request, session_id)
        if state.metrics is None:
            state.metrics = RunMetrics(run_id=state.run_id)
        if state.outline is not None:
            state.metrics.total_sections = len(state.outline.sections)
            self._update_stage_context(state.outline)
        self._synced_stats = replace(self.guarded_executor.stats)
        self._last_record = None
        self._last_dashboard = None

        start_node = state.node_id or PipelineNode.PLANNING.value
        state.node_id = start_node
        state.status = "running"
        graph = TaskGraph(self._build_nodes(is_cancelled))

        async def on_transition(node_id: str, next_id: Optional[str], visits: Dict[str, int]) -> None:
            state.visit_count = dict(visits)
            state.node_id = next_id
            if next_id is None and state.status in ("completed", "cancelled"):
                return
            self._save_checkpoint(state)

        try:
            context = await graph.run(
                start_node,
                state,
                is_cancelled=is_cancelled,
                on_transition=on_transition,
                visit_count=state.visit_count,
            )
        except Exception as exc:
            state.status = "error"
            state.error = str(exc)
            self._save_checkpoint(state)
            self._notify("on_phase_change", "error", f"运行失败：{exc}")
            raise

        if context.cancelled:
            state.status = "cancelled"
            self._save_checkpoint(state)
            logger.info("Run %s cancelled before node '%s'", state.run_id, context.current_node_id)
        elif state.status == "cancelled":
            self.store.clear_checkpoint()

        return PipelineResult(
            run_id=state.run_id,
            status=state.status,
            outline=state.outline,
            written_sections=list(state.written_sections),
            final_feedback=state.last_feedback,
            metrics=self._last_record if state.status == "completed" else None,
            dashboard=self._last_dashboard if state.status == "completed" else None,
            resumed=resumed,
        )

    def _load_or_create_state(self, request: str, session_id: Optional[str]) -> tuple[PipelineRuntimeState, bool]:
        checkpoint = self.store.load_checkpoint()
        resume_key = session_id or request
        if (
            checkpoint is not None
            and checkpoint.status == "running"
            and checkpoint.node_id
            and checkpoint.resume_key == resume_key
        ):
            logger.info("Resuming run %s from node '%s'", checkpoint.run_id, checkpoint.node_id)
            self._notify("on_phase_change", "resuming", f"从检查点恢复：{checkpoint.node_id}")
            return checkpoint, True
        if checkpoint is not None:
            logger.info("Discarding checkpoint for run %s (status %s)", checkpoint.run_id, checkpoint.status)
        state = PipelineRuntimeState(run_id=uuid.uuid4().hex, request=request, session_id=session_id)
        return state, False

    # ------------------------------------------------------------------
    # Graph wiring
    # ------------------------------------------------------------------
    def _build_nodes(self, is_cancelled: Callable[[], bool]) -> List[TaskGraphNode[PipelineRuntimeState]]:
        review_cap = self.config.pipeline.max_review_cycles

        def targets(node: PipelineNode) -> List[str]:
            return [target.value for target in PIPELINE_TRANSITIONS[node]]

        return [
            TaskGraphNode(
                id=PipelineNode.PLANNING.value,
                run=self._run_planning,
                next=lambda state: PipelineNode.AWAITING_CONFIRMATION.value,
                targets=targets(PipelineNode.PLANNING),
            ),
            TaskGraphNode(
                id=PipelineNode.AWAITING_CONFIRMATION.value,
                run=self._run_confirmation,
                next=lambda state: PipelineNode.INIT_MEMORY.value if state.confirmed else None,
                targets=targets(PipelineNode.AWAITING_CONFIRMATION),
            ),
            TaskGraphNode(
                id=PipelineNode.INIT_MEMORY.value,
                run=self._run_init_memory,
                next=lambda state: PipelineNode.WRITING_SECTIONS.value,
                targets=targets(PipelineNode.INIT_MEMORY),
            ),
            TaskGraphNode(
                id=PipelineNode.WRITING_SECTIONS.value,
                run=lambda state: self._run_writing(state, is_cancelled),
                next=lambda state: PipelineNode.REVIEW_CYCLE.value,
                targets=targets(PipelineNode.WRITING_SECTIONS),
            ),
            TaskGraphNode(
                id=PipelineNode.REVIEW_CYCLE.value,
                run=lambda state: self._run_review_cycle(state, is_cancelled),
                next=self._after_review,
                max_visits=review_cap,
                targets=targets(PipelineNode.REVIEW_CYCLE),
            ),
            TaskGraphNode(
                id=PipelineNode.FINALIZE.value,
                run=self._run_finalize,
                next=lambda state: None,
                targets=targets(PipelineNode.FINALIZE),
            ),
        ]

    def _after_review(self, state: PipelineRuntimeState) -> str:
        if state.replan_requested and state.review_cycles < self.config.pipeline.max_review_cycles:
            return PipelineNode.REVIEW_CYCLE.value
        return PipelineNode.FINALIZE.value

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------
    async def _run_planning(self, state: PipelineRuntimeState) -> None:
        self._notify("on_phase_change", "planning", "正在分析需求并生成文章大纲...")
        document_text = await self._read_document()
        outline = await self.planner.generate_outline(state.request, document_text)
        state.outline = outline
        state.confirmed = False
        self._metrics(state).total_sections = len(outline.sections)
        self._update_stage_context(outline)

    async def _run_confirmation(self, state: PipelineRuntimeState) -> None:
        if state.confirmed:
            return
        outline = self._outline(state)
        self._notify("on_phase_change", "awaiting_confirmation", "请确认文章大纲")
        plan_markdown = render_outline_plan(outline)
        confirmed = True
        hook = self.callbacks.on_outline_ready
        if hook is not None:
            decision = hook(outline, plan_markdown)
            if inspect.isawaitable(decision):
                decision = await decision
            confirmed = bool(decision)
        if confirmed:
            state.confirmed = True
            return
        state.status = "cancelled"
        self._notify("on_phase_change", "idle", "已取消")
        logger.info("Outline declined for run %s", state.run_id)

    async def _run_init_memory(self, state: PipelineRuntimeState) -> None:
        outline = self._outline(state)
        self._notify("on_phase_change", "init_memory", "正在初始化长期记忆...")
        document_text = await self._read_document()
        memory = create_long_term_memory(outline, state.request, document_text)

        persisted = self.store.load_memory()
        if persisted:
            snapshot = parse_long_term_memory_markdown(persisted)
            if snapshot is not None:
                merge_long_term_memory(memory, snapshot)
            else:
                logger.warning("Persisted memory could not be parsed, starting fresh")
        if state.memory is not None:
            merge_long_term_memory(memory, state.memory)

        state.memory = memory
        self._persist_memory(memory)

    async def _run_writing(self, state: PipelineRuntimeState, is_cancelled: Callable[[], bool]) -> None:
        outline = self._outline(state)
        self._notify("on_phase_change", "writing", "开始撰写文章...")
        if len(outline.sections) > 1:
            await self._write_parallel(state, is_cancelled)
        else:
            await self._write_sequential(state, is_cancelled)

    async def _run_review_cycle(self, state: PipelineRuntimeState, is_cancelled: Callable[[], bool]) -> None:
        outline = self._outline(state)
        metrics = self._metrics(state)
        pipeline = self.config.pipeline
        state.review_cycles += 1
        state.replan_requested = False
        metrics.quality_gate_triggered = True
        cycle = state.review_cycles

        self._notify("on_phase_change", "reviewing", f"正在审阅文档（第 {cycle} 轮）...")
        first = await self._consensus_round(state)
        if is_cancelled():
            return

        if pipeline.enable_verification:
            for section in outline.sections:
                if is_cancelled():
                    return
                result = state.section_result(section.id)
                if result is not None:
                    await self._verify_section(state, section, result.content)

        targets = self._revision_targets(state, first.final)
        final = first
        if targets:
            self._notify("on_phase_change", "revising", f"正在修改 {len(targets)} 个章节...")
            self._chat(
                f"审阅完成（评分 {first.final.overall_score:g}/10），需要修改 {len(targets)} 个章节。"
            )
            for section in targets:
                if is_cancelled():
                    return
                await self._revise_section(
                    state,
                    section,
                    first.final.feedback_for(section.id),
                    first.final,
                    state.verification_failures.get(section.id),
                    is_cancelled,
                )
            if is_cancelled():
                return
            final = await self._consensus_round(state)
            if pipeline.enable_verification:
                for section in targets:
                    if is_cancelled():
                        return
                    result = state.section_result(section.id)
                    if result is not None:
                        await self._verify_section(state, section, result.content)

        verdict = final.final
        passed = (
            not verdict.sections_needing_revision()
            and not verdict.coherence_issues
            and not state.verification_failures
        )
        metrics.quality_gate_passed = passed
        metrics.final_review_score = verdict.overall_score

        conflict_limit = max(1, len(outline.sections) // 3)
        replan = not passed and (
            verdict.overall_score <= pipeline.replan_score_threshold
            or final.conflict_count > conflict_limit
            or bool(state.verification_failures)
        )
        state.replan_requested = replan

        if passed:
            self._chat(f"质量门控通过（评分 {verdict.overall_score:g}/10）。")
        elif replan and cycle < pipeline.max_review_cycles:
            self._chat(
                f"质量门控未通过（评分 {verdict.overall_score:g}/10，冲突 {final.conflict_count}，"
                f"核验未通过 {len(state.verification_failures)}），进入第 {cycle + 1} 轮修订。"
            )
        else:
            self._chat(f"审阅完成（评分 {verdict.overall_score:g}/10），质量门控未通过，已达到处理上限。")

    async def _run_finalize(self, state: PipelineRuntimeState) -> None:
        self._notify("on_phase_change", "finalizing", "正在汇总运行指标...")
        self._sync_tool_stats(state)
        record = self._metrics(state).finalize()
        history = append_pipeline_metrics(
            self.store.load_metrics_history(),
            record,
            self.config.pipeline.metrics_history_limit,
        )
        self.store.save_metrics_history(history)
        dashboard = build_pipeline_metrics_dashboard(record, history)
        self._last_record = record
        self._last_dashboard = dashboard
        self._chat(dashboard)

        if state.memory is not None:
            self._persist_memory(state.memory)
        self._notify("on_document_snapshot", await self._read_document(), "最终文档")
        state.status = "completed"
        self.store.clear_checkpoint()
        self._notify("on_phase_change", "completed", "文章撰写完成")

    # ------------------------------------------------------------------
    # Writing flows
    # ------------------------------------------------------------------
    async def _write_parallel(self, state: PipelineRuntimeState, is_cancelled: Callable[[], bool]) -> None:
        outline = self._outline(state)
        total = len(outline.sections)
        pending = [index for index, section in enumerate(outline.sections) if state.section_result(section.id) is None]
        if not pending:
            return

        drafts: Dict[int, str] = {}
        cursor = iter(pending)
        workers = self.config.pipeline.resolve_draft_concurrency(len(pending))
        logger.info("Drafting %s sections with %s workers", len(pending), workers)

        async def worker() -> None:
            while not is_cancelled():
                index = next(cursor, None)
                if index is None:
                    return
                section = outline.sections[index]
                self._notify("on_section_start", index, total, section.title)
                drafts[index] = await self.writer.draft_section(
                    outline,
                    section,
                    index,
                    memory_context=self._memory_context(state, section),
                )

        tasks = [asyncio.create_task(worker()) for _ in range(workers)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # A failed draft stops its siblings before the error propagates.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # Appends mutate the shared document and must stay sequential.
        for index in sorted(drafts):
            if is_cancelled():
                return
            section = outline.sections[index]
            self.stage_context.current_stage = index + 1
            draft = drafts[index]
            before = await self._read_document()
            call = ToolCallRequest(
                id=f"draft_{section.id}",
                name="append_text",
                arguments={"text": ensure_trailing_newline(draft)},
            )
            results = await self.guarded_executor.execute([call], state.written_segments)
            if not results:
                return
            result = results[0]
            if not result.success:
                logger.warning("Appending draft for '%s' failed: %s", section.id, result.error)
                self._chat(f"章节「{section.title}」写入失败：{result.error}")
                self._store_section(state, section, draft)
            else:
                after = await self._read_document()
                self._record_section(state, section, index, before, after, fallback=draft)
            self._notify("on_section_done", index, total, section.title)
            self._sync_tool_stats(state)

    async def _write_sequential(self, state: PipelineRuntimeState, is_cancelled: Callable[[], bool]) -> None:
        outline = self._outline(state)
        total = len(outline.sections)
        for index, section in enumerate(outline.sections):
            if is_cancelled():
                return
            if state.section_result(section.id) is not None:
                continue
            self._notify("on_section_start", index, total, section.title)
            self._notify("on_phase_change", "writing", f"正在撰写 {index + 1}/{total}：{section.title}")
            await self._write_section(state, section, index, is_cancelled)
            if is_cancelled():
                return

            focus = await self._consensus_round(state, focus_section_id=section.id)
            verification: Optional[VerificationFeedback] = None
            result = state.section_result(section.id)
            if self.config.pipeline.enable_verification and result is not None:
                verification = await self._verify_section(state, section, result.content)

            section_feedback = focus.final.feedback_for(section.id)
            needs_revision = bool(section_feedback and section_feedback.needs_revision)
            if needs_revision or (verification is not None and not verification.passed):
                await self._revise_section(state, section, section_feedback, focus.final, verification, is_cancelled)
            self._notify("on_section_done", index, total, section.title)

    async def _write_section(
        self,
        state: PipelineRuntimeState,
        section: OutlineSection,
        index: int,
        is_cancelled: Callable[[], bool],
        revision_feedback: Optional[str] = None,
    ) -> None:
        outline = self._outline(state)
        self.stage_context.current_stage = index + 1
        before = await self._read_document()
        result = await self.writer.write_section(
            outline,
            section,
            index,
            state.sections_before(section.id),
            self.guarded_executor,
            state.written_segments,
            is_cancelled=is_cancelled,
            revision_feedback=revision_feedback,
            memory_context=self._memory_context(state, section),
            on_chunk=self._forward_chunk if self.callbacks.on_chunk is not None else None,
        )
        self._sync_tool_stats(state)
        if result.cancelled:
            return
        after = await self._read_document()
        self._record_section(state, section, index, before, after, fallback=result.assistant_content)

    async def _revise_section(
        self,
        state: PipelineRuntimeState,
        section: OutlineSection,
        section_feedback,
        review: Optional[ReviewFeedback],
        verification: Optional[VerificationFeedback],
        is_cancelled: Callable[[], bool],
    ) -> None:
        outline = self._outline(state)
        index = outline.index_of(section.id)
        revision_feedback = build_revision_feedback(section_feedback, review, verification) or REVISION_FALLBACK
        self._notify("on_phase_change", "revising", f"正在修改：{section.title}")
        await self._write_section(state, section, index, is_cancelled, revision_feedback=revision_feedback)
        self._metrics(state).mark_revised(section.id)

    def _revision_targets(self, state: PipelineRuntimeState, feedback: ReviewFeedback) -> List[OutlineSection]:
        outline = self._outline(state)
        flagged = {item.section_id for item in feedback.sections_needing_revision()}
        flagged.update(state.verification_failures)
        return [section for section in outline.sections if section.id in flagged]

    # ------------------------------------------------------------------
    # Review and verification
    # ------------------------------------------------------------------
    async def _consensus_round(
        self,
        state: PipelineRuntimeState,
        focus_section_id: Optional[str] = None,
    ) -> ConsensusReviewResult:
        outline = self._outline(state)
        document_text = await self._read_document()
        round_number = len(state.feedback_history) + 1
        result = await self.consensus.run(
            outline,
            document_text,
            round_number,
            previous_feedback=state.last_feedback,
            focus_section_id=focus_section_id,
        )
        state.feedback_history.append(result.final)
        self._metrics(state).review_rounds += 1
        self._notify("on_review_result", result.final)
        logger.info(
            "Review round %s: score %s, conflicts %s, agreement %.2f",
            round_number,
            result.final.overall_score,
            result.conflict_count,
            result.agreement_rate,
        )
        return result

    async def _verify_section(
        self,
        state: PipelineRuntimeState,
        section: OutlineSection,
        content: str,
    ) -> VerificationFeedback:
        try:
            feedback = await self.verifier.verify_section_facts(section, content)
        except VerificationParseError as exc:
            logger.warning("Verification for '%s' could not be parsed: %s", section.id, exc)
            feedback = VerificationFeedback(verdict="fail")
        if feedback.passed:
            state.verification_failures.pop(section.id, None)
        else:
            state.verification_failures[section.id] = feedback
            logger.warning(
                "Verification failed for '%s' (%s failed claims)",
                section.id,
                len(feedback.failed_claims()),
            )
        return feedback

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _read_document(self) -> str:
        call = ToolCallRequest(id="orchestrator_read", name="get_document_text", arguments={})
        results: List[ToolCallResult] = await self.executor.execute([call], [])
        if not results or not results[0].success:
            logger.warning("Could not read document text: %s", results[0].error if results else "no result")
            return ""
        payload = results[0].result
        return payload if isinstance(payload, str) else str(payload or "")

    def _record_section(
        self,
        state: PipelineRuntimeState,
        section: OutlineSection,
        index: int,
        before: str,
        after: str,
        *,
        fallback: str = "",
    ) -> None:
        outline = self._outline(state)
        resolved = resolve_section_content(before, after, section.title, outline.next_section_titles(index))
        logger.debug("Resolved section '%s' via %s", section.id, resolved.strategy)
        self._store_section(state, section, resolved.content or fallback)
        self._notify("on_document_snapshot", after, section.title)

    def _store_section(self, state: PipelineRuntimeState, section: OutlineSection, content: str) -> None:
        previous = state.section_result(section.id)
        anchors = list(previous.source_anchors) if previous is not None else []
        state.upsert_section(
            SectionWriteResult(
                section_id=section.id,
                section_title=section.title,
                content=content,
                source_anchors=anchors,
            )
        )
        if state.memory is not None:
            update_long_term_memory_with_section(state.memory, section, content)
            self._persist_memory(state.memory)

    def _memory_context(self, state: PipelineRuntimeState, section: OutlineSection) -> Optional[str]:
        if state.memory is None:
            return None
        return build_memory_context_for_section(state.memory, section) or None

    def _persist_memory(self, memory: LongTermMemoryState) -> None:
        self.store.save_memory(render_long_term_memory_markdown(memory))

    def _save_checkpoint(self, state: PipelineRuntimeState) -> None:
        self._sync_tool_stats(state)
        state.updated_at = utc_now_iso()
        self.store.save_checkpoint(state)

    def _sync_tool_stats(self, state: PipelineRuntimeState) -> None:
        metrics = self._metrics(state)
        current = self.guarded_executor.stats
        metrics.tool_calls += current.tool_calls - self._synced_stats.tool_calls
        metrics.tool_failures += current.tool_failures - self._synced_stats.tool_failures
        metrics.duplicate_write_skips += current.duplicate_write_skips - self._synced_stats.duplicate_write_skips
        self._synced_stats = replace(current)

    def _update_stage_context(self, outline: ArticleOutline) -> None:
        self.stage_context.total_stages = len(outline.sections)
        self.stage_context.plan_stage_titles = extract_plan_stage_titles(render_outline_plan(outline))
        self.stage_context.current_stage = 0

    @staticmethod
    def _outline(state: PipelineRuntimeState) -> ArticleOutline:
        if state.outline is None:
            raise RuntimeError("流程状态缺少文章大纲")
        return state.outline

    @staticmethod
    def _metrics(state: PipelineRuntimeState) -> RunMetrics:
        if state.metrics is None:
            state.metrics = RunMetrics(run_id=state.run_id)
        return state.metrics

    def _forward_chunk(self, chunk: Any) -> None:
        self._notify("on_chunk", chunk)

    def _chat(self, message: str) -> None:
        self._notify("on_chat_message", message)

    def _notify(self, name: str, *args: Any) -> None:
        hook = getattr(self.callbacks, name)
        if hook is None:
            return
        try:
            hook(*args)
        except Exception:  # noqa: BLE001
            logger.exception("Pipeline callback %s failed", name)

