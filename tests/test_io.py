from __future__ import annotations

from pathlib import Path

import pytest

from xwrite.authoring.metrics import PipelineRunMetrics
from xwrite.authoring.state import PipelineRuntimeState
from xwrite.io import FileStateStore, InMemoryStateStore


@pytest.fixture
def store(tmp_path: Path) -> FileStateStore:
    return FileStateStore(tmp_path / "state")


def _record(run_id: str) -> PipelineRunMetrics:
    return PipelineRunMetrics(
        run_id=run_id,
        started_at="2026-02-27T10:00:00.000Z",
        finished_at="2026-02-27T10:01:00.000Z",
        duration_ms=60000,
        total_sections=2,
        revised_sections=0,
        review_rounds=1,
        tool_calls=4,
        tool_failures=0,
        duplicate_write_skips=0,
        quality_gate_triggered=True,
        quality_gate_passed=True,
        final_review_score=8.5,
    )


def test_checkpoint_round_trip(store: FileStateStore, sample_outline) -> None:
    assert store.load_checkpoint() is None

    state = PipelineRuntimeState(
        run_id="run-1",
        request="写一篇文章",
        session_id="session-1",
        outline=sample_outline,
        node_id="review_cycle",
        review_cycles=1,
        visit_count={"planning": 1},
    )
    store.save_checkpoint(state)

    assert store.paths.checkpoint_path.exists()
    restored = store.load_checkpoint()
    assert restored is not None
    assert restored.to_dict() == state.to_dict()
    assert restored.resume_key == "session-1"

    store.clear_checkpoint()
    assert store.load_checkpoint() is None
    store.clear_checkpoint()


def test_corrupt_checkpoint_is_ignored(store: FileStateStore) -> None:
    store.paths.checkpoint_path.parent.mkdir(parents=True)
    store.paths.checkpoint_path.write_text("{not json", encoding="utf-8")
    assert store.load_checkpoint() is None


def test_memory_and_metrics_history(store: FileStateStore) -> None:
    assert store.load_memory() is None
    assert store.load_metrics_history() == []

    store.save_memory("# XWrite Memory\n")
    store.save_metrics_history([_record("r1"), _record("r2")])

    assert store.load_memory() == "# XWrite Memory\n"
    assert [item.run_id for item in store.load_metrics_history()] == ["r1", "r2"]
    assert store.load_metrics_history()[0].final_review_score == 8.5


def test_in_memory_store_isolates_saved_state() -> None:
    store = InMemoryStateStore()
    state = PipelineRuntimeState(run_id="run-1", request="需求")
    store.save_checkpoint(state)
    state.written_segments.append("之后的修改")

    restored = store.load_checkpoint()
    assert restored is not None
    assert restored.written_segments == []
    assert store.checkpoint_saves == 1


def test_unknown_checkpoint_status_loads_as_error() -> None:
    restored = PipelineRuntimeState.from_dict({"runId": "x", "request": "r", "status": "weird"})
    assert restored.status == "error"


def test_interrupted_checkpoint_write_keeps_previous_checkpoint(
    store: FileStateStore, monkeypatch: pytest.MonkeyPatch
) -> None:
    store.save_checkpoint(PipelineRuntimeState(run_id="run-1", request="原始需求", node_id="writing_sections"))

    def fail_replace(src, dst) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("xwrite.io.os.replace", fail_replace)
    with pytest.raises(OSError, match="disk full"):
        store.save_checkpoint(PipelineRuntimeState(run_id="run-2", request="新需求"))

    restored = store.load_checkpoint()
    assert restored is not None
    assert restored.run_id == "run-1"
    assert restored.node_id == "writing_sections"
    assert [path.name for path in store.paths.checkpoint_path.parent.iterdir()] == ["checkpoint.json"]
