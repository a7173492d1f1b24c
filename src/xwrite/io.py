"""Persistence for checkpoints, long-term memory and metrics history."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence, runtime_checkable

from .authoring.metrics import PipelineRunMetrics
from .authoring.state import PipelineRuntimeState
from .paths import StatePathConfig

logger = logging.getLogger(__name__)

__all__ = ["StateStore", "FileStateStore", "InMemoryStateStore"]


@runtime_checkable
class StateStore(Protocol):
    """Load/save hooks the orchestrator persists through."""

    def load_checkpoint(self) -> Optional[PipelineRuntimeState]:
        ...

    def save_checkpoint(self, state: PipelineRuntimeState) -> None:
        ...

    def clear_checkpoint(self) -> None:
        ...

    def load_memory(self) -> Optional[str]:
        ...

    def save_memory(self, markdown: str) -> None:
        ...

    def load_metrics_history(self) -> List[PipelineRunMetrics]:
        ...

    def save_metrics_history(self, history: Sequence[PipelineRunMetrics]) -> None:
        ...


class FileStateStore:
    """Filesystem-backed store rooted at a state directory."""

    def __init__(self, paths: StatePathConfig | Path | str, *, encoding: str = "utf-8") -> None:
        if not isinstance(paths, StatePathConfig):
            paths = StatePathConfig(state_dir=Path(paths))
        self.paths = paths.expanded()
        self.encoding = encoding

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding=self.encoding))
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt state file %s: %s", path, exc)
            return None

    def _write_atomic(self, path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = tempfile.NamedTemporaryFile(
            "w",
            encoding=self.encoding,
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        )
        try:
            with handle:
                handle.write(content)
            os.replace(handle.name, path)
        except BaseException:
            Path(handle.name).unlink(missing_ok=True)
            raise

    def write_json(self, path: Path, payload: Any) -> None:
        self._write_atomic(path, json.dumps(payload, ensure_ascii=False, indent=2))

    def write_markdown(self, path: Path, content: str) -> None:
        self._write_atomic(path, content)

    # ------------------------------------------------------------------
    # StateStore
    # ------------------------------------------------------------------
    def load_checkpoint(self) -> Optional[PipelineRuntimeState]:
        payload = self._read_json(self.paths.checkpoint_path)
        if not isinstance(payload, dict):
            return None
        return PipelineRuntimeState.from_dict(payload)

    def save_checkpoint(self, state: PipelineRuntimeState) -> None:
        self.write_json(self.paths.checkpoint_path, state.to_dict())

    def clear_checkpoint(self) -> None:
        self.paths.checkpoint_path.unlink(missing_ok=True)

    def load_memory(self) -> Optional[str]:
        path = self.paths.memory_path
        if not path.exists():
            return None
        return path.read_text(encoding=self.encoding)

    def save_memory(self, markdown: str) -> None:
        self.write_markdown(self.paths.memory_path, markdown)

    def load_metrics_history(self) -> List[PipelineRunMetrics]:
        payload = self._read_json(self.paths.metrics_path)
        if not isinstance(payload, list):
            return []
        return [PipelineRunMetrics.from_dict(item) for item in payload if isinstance(item, dict)]

    def save_metrics_history(self, history: Sequence[PipelineRunMetrics]) -> None:
        self.write_json(self.paths.metrics_path, [item.to_dict() for item in history])


class InMemoryStateStore:
    """Same contract as :class:`FileStateStore` without touching the filesystem."""

    def __init__(self) -> None:
        self.checkpoint: Optional[dict[str, Any]] = None
        self.memory: Optional[str] = None
        self.metrics_history: List[PipelineRunMetrics] = []
        self.checkpoint_saves = 0

    def load_checkpoint(self) -> Optional[PipelineRuntimeState]:
        if self.checkpoint is None:
            return None
        return PipelineRuntimeState.from_dict(self.checkpoint)

    def save_checkpoint(self, state: PipelineRuntimeState) -> None:
        # Stored as plain JSON data, detached from the live state object.
        self.checkpoint = json.loads(json.dumps(state.to_dict(), ensure_ascii=False))
        self.checkpoint_saves += 1

    def clear_checkpoint(self) -> None:
        self.checkpoint = None

    def load_memory(self) -> Optional[str]:
        return self.memory

    def save_memory(self, markdown: str) -> None:
        self.memory = markdown

    def load_metrics_history(self) -> List[PipelineRunMetrics]:
        return list(self.metrics_history)

    def save_metrics_history(self, history: Sequence[PipelineRunMetrics]) -> None:
        self.metrics_history = list(history)
