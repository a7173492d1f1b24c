from __future__ import annotations

import asyncio
from typing import List

import pytest

from xwrite.authoring.orchestrator import AuthoringOrchestrator, PipelineCallbacks
from xwrite.authoring.state import PipelineRuntimeState
from xwrite.config import PipelineConfig, XWriteConfig
from xwrite.document import MarkdownDocument
from xwrite.io import InMemoryStateStore
from xwrite.llm.client import ToolCallBatch
from xwrite.llm.mock import MockModelClient


class UnverifiableClient(MockModelClient):
    """Verifier replies are never parseable, so every section fails verification."""

    def _verification(self, prompt: str) -> str:
        return "无法核验"


async def _no_sleep(delay: float) -> None:
    return None


def _config(**pipeline) -> XWriteConfig:
    return XWriteConfig(pipeline=PipelineConfig(**pipeline))


def _orchestrator(client, document, store, callbacks=None, **pipeline) -> AuthoringOrchestrator:
    return AuthoringOrchestrator(
        client,
        document,
        config=_config(**pipeline),
        store=store,
        callbacks=callbacks,
        sleep=_no_sleep,
    )


def test_full_run_writes_every_section_and_records_metrics() -> None:
    client = MockModelClient()
    document = MarkdownDocument()
    store = InMemoryStateStore()
    phases: List[str] = []
    chat: List[str] = []
    callbacks = PipelineCallbacks(
        on_phase_change=lambda phase, message: phases.append(phase),
        on_chat_message=chat.append,
    )

    result = asyncio.run(_orchestrator(client, document, store, callbacks).run("介绍人工智能"))

    assert result.status == "completed"
    assert result.resumed is False
    assert [item.section_id for item in result.written_sections] == ["s1", "s2", "s3"]
    assert result.written_sections[1].content.startswith("## 核心内容")
    assert document.text.startswith("# 介绍人工智能\n\n## 背景与目标")
    assert "## 总结与展望" in document.text

    assert result.quality_gate_passed is True
    assert result.metrics is not None
    assert result.metrics.total_sections == 3
    assert result.metrics.review_rounds == 1
    assert result.metrics.tool_calls == 3
    assert result.metrics.final_review_score == 8
    assert result.dashboard is not None and result.dashboard in chat

    assert store.checkpoint is None
    assert len(store.metrics_history) == 1
    assert store.memory is not None and store.memory.startswith("# XWrite Memory")
    assert phases[0] == "planning"
    assert phases[-1] == "completed"
    assert client.calls.count("planner") == 1
    assert client.calls.count("draft") == 3
    assert client.calls.count("verifier") == 3


def test_single_section_outline_uses_tool_writer() -> None:
    client = MockModelClient(section_titles=["唯一章节"])
    document = MarkdownDocument()

    result = asyncio.run(_orchestrator(client, document, InMemoryStateStore()).run("短文"))

    assert result.status == "completed"
    assert "draft" not in client.calls
    assert client.calls.count("writer") == 2
    assert "## 唯一章节" in document.text


def test_declined_outline_stops_and_clears_checkpoint() -> None:
    client = MockModelClient()
    store = InMemoryStateStore()
    seen_plans: List[str] = []

    def decline(outline, plan_markdown: str) -> bool:
        seen_plans.append(plan_markdown)
        return False

    result = asyncio.run(
        _orchestrator(client, MarkdownDocument(), store, PipelineCallbacks(on_outline_ready=decline)).run("需求")
    )

    assert result.status == "cancelled"
    assert result.outline is not None
    assert result.metrics is None
    assert "## 阶段计划" in seen_plans[0]
    assert client.calls == ["planner"]
    assert store.checkpoint is None


def test_async_confirmation_hook_is_awaited() -> None:
    async def accept(outline, plan_markdown: str) -> bool:
        return True

    result = asyncio.run(
        _orchestrator(
            MockModelClient(), MarkdownDocument(), InMemoryStateStore(), PipelineCallbacks(on_outline_ready=accept)
        ).run("需求")
    )
    assert result.status == "completed"


def test_cancel_keeps_a_cancelled_checkpoint() -> None:
    store = InMemoryStateStore()
    callbacks = PipelineCallbacks()
    orchestrator = _orchestrator(MockModelClient(), MarkdownDocument(), store, callbacks)
    callbacks.on_section_done = lambda index, total, title: orchestrator.cancel()

    result = asyncio.run(orchestrator.run("需求"))

    assert result.status == "cancelled"
    assert [item.section_id for item in result.written_sections] == ["s1"]
    assert store.checkpoint is not None
    assert store.checkpoint["status"] == "cancelled"
    assert store.checkpoint["nodeId"] == "review_cycle"


class CancellingWriterClient(MockModelClient):
    """Requests a stop while the writer turn is still streaming."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.on_stream = lambda: None

    async def stream_with_tools(self, messages, tools, system_prompt, options=None):
        async for chunk in super().stream_with_tools(messages, tools, system_prompt, options):
            if isinstance(chunk, ToolCallBatch):
                self.on_stream()
            yield chunk


def test_cancel_during_writer_stream_skips_the_tool_batch() -> None:
    client = CancellingWriterClient(section_titles=["唯一章节"])
    document = MarkdownDocument()
    store = InMemoryStateStore()
    orchestrator = _orchestrator(client, document, store)
    client.on_stream = orchestrator.cancel

    result = asyncio.run(orchestrator.run("短文"))

    assert result.status == "cancelled"
    assert document.paragraphs == []
    assert result.written_sections == []
    assert store.checkpoint is not None and store.checkpoint["status"] == "cancelled"


class DraftTrackingClient(MockModelClient):
    """Holds each draft briefly and records how many run at once."""

    def __init__(self, *, fail_on: str | None = None, delay: float = 0.01, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.delay = delay
        self.started = 0
        self.in_flight = 0
        self.peak_in_flight = 0

    async def generate(self, prompt, system_prompt, options=None):
        if "并行生成" not in system_prompt:
            return await super().generate(prompt, system_prompt, options)
        self.started += 1
        if self.fail_on is not None and f"**{self.fail_on}**" in prompt:
            raise RuntimeError("草稿生成失败")
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return await super().generate(prompt, system_prompt, options)
        finally:
            self.in_flight -= 1


@pytest.mark.parametrize(("concurrency", "sections", "expected_peak"), [(2, 5, 2), (None, 8, 6)])
def test_draft_pool_bounds_in_flight_drafts(concurrency, sections, expected_peak) -> None:
    client = DraftTrackingClient(section_titles=[f"章节{index}" for index in range(1, sections + 1)])

    result = asyncio.run(
        _orchestrator(
            client,
            MarkdownDocument(),
            InMemoryStateStore(),
            draft_concurrency=concurrency,
            enable_verification=False,
        ).run("需求")
    )

    assert result.status == "completed"
    assert client.calls.count("draft") == sections
    assert client.peak_in_flight == expected_peak


def test_failed_draft_stops_sibling_workers() -> None:
    client = DraftTrackingClient(section_titles=["A", "B", "C", "D"], fail_on="A", delay=0.05)
    store = InMemoryStateStore()
    orchestrator = _orchestrator(client, MarkdownDocument(), store, draft_concurrency=2)

    async def scenario() -> tuple[int, int]:
        with pytest.raises(RuntimeError, match="草稿生成失败"):
            await orchestrator.run("需求")
        at_failure = client.started
        await asyncio.sleep(0.2)
        return at_failure, client.started

    at_failure, later = asyncio.run(scenario())

    assert at_failure == 2
    assert later == at_failure
    assert client.in_flight == 0
    assert store.checkpoint is not None and store.checkpoint["status"] == "error"


def test_resume_continues_from_checkpointed_node(sample_outline) -> None:
    store = InMemoryStateStore()
    store.save_checkpoint(
        PipelineRuntimeState(
            run_id="run-1",
            request="写一篇人工智能简史",
            outline=sample_outline,
            confirmed=True,
            node_id="writing_sections",
            visit_count={"planning": 1, "awaiting_confirmation": 1, "init_memory": 1},
        )
    )
    client = MockModelClient()

    result = asyncio.run(_orchestrator(client, MarkdownDocument(), store).run("写一篇人工智能简史"))

    assert result.resumed is True
    assert result.run_id == "run-1"
    assert result.status == "completed"
    assert "planner" not in client.calls
    assert [item.section_title for item in result.written_sections] == ["起源", "发展", "展望"]
    assert result.metrics is not None and result.metrics.total_sections == 3


def test_checkpoint_for_another_request_is_discarded(sample_outline) -> None:
    store = InMemoryStateStore()
    store.save_checkpoint(
        PipelineRuntimeState(run_id="old", request="旧需求", outline=sample_outline, node_id="writing_sections")
    )
    client = MockModelClient()

    result = asyncio.run(_orchestrator(client, MarkdownDocument(), store).run("新需求"))

    assert result.resumed is False
    assert result.run_id != "old"
    assert client.calls[0] == "planner"


def test_session_id_is_the_resume_key(sample_outline) -> None:
    store = InMemoryStateStore()
    store.save_checkpoint(
        PipelineRuntimeState(
            run_id="run-s",
            request="最初的需求",
            session_id="session-1",
            outline=sample_outline,
            confirmed=True,
            node_id="writing_sections",
            visit_count={"planning": 1, "awaiting_confirmation": 1, "init_memory": 1},
        )
    )

    result = asyncio.run(
        _orchestrator(MockModelClient(), MarkdownDocument(), store).run("换了措辞的需求", session_id="session-1")
    )

    assert result.resumed is True
    assert result.run_id == "run-s"


def test_failed_verification_drives_revision_until_cycle_limit() -> None:
    client = UnverifiableClient()
    chat: List[str] = []
    result = asyncio.run(
        _orchestrator(
            client,
            MarkdownDocument(),
            InMemoryStateStore(),
            PipelineCallbacks(on_chat_message=chat.append),
            max_review_cycles=2,
        ).run("需求")
    )

    assert result.status == "completed"
    assert result.quality_gate_passed is False
    assert result.metrics is not None
    assert result.metrics.review_rounds == 4
    assert result.metrics.revised_sections == 3
    assert result.metrics.duplicate_write_skips > 0
    assert any("进入第 2 轮修订" in message for message in chat)
    assert any("已达到处理上限" in message for message in chat)


def test_verification_can_be_disabled() -> None:
    client = UnverifiableClient()
    result = asyncio.run(
        _orchestrator(client, MarkdownDocument(), InMemoryStateStore(), enable_verification=False).run("需求")
    )

    assert result.quality_gate_passed is True
    assert "verifier" not in client.calls


def test_errors_are_checkpointed_and_reraised(scripted_client) -> None:
    store = InMemoryStateStore()
    phases: List[str] = []
    client = scripted_client(replies=[RuntimeError("模型不可用")])

    with pytest.raises(RuntimeError, match="模型不可用"):
        asyncio.run(
            _orchestrator(
                client,
                MarkdownDocument(),
                store,
                PipelineCallbacks(on_phase_change=lambda phase, message: phases.append(phase)),
            ).run("需求")
        )

    assert store.checkpoint is not None
    assert store.checkpoint["status"] == "error"
    assert store.checkpoint["error"] == "模型不可用"
    assert phases[-1] == "error"


def test_failing_callbacks_do_not_break_the_run() -> None:
    def explode(*args) -> None:
        raise RuntimeError("observer failure")

    callbacks = PipelineCallbacks(on_phase_change=explode, on_section_done=explode, on_chat_message=explode)
    result = asyncio.run(_orchestrator(MockModelClient(), MarkdownDocument(), InMemoryStateStore(), callbacks).run("需求"))
    assert result.status == "completed"


def test_empty_request_is_rejected() -> None:
    orchestrator = _orchestrator(MockModelClient(), MarkdownDocument(), InMemoryStateStore())
    with pytest.raises(ValueError):
        asyncio.run(orchestrator.run("   "))
