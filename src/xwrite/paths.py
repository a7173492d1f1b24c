"""Path helpers for the xwrite authoring pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

__all__ = [
    "DEFAULT_STATE_ROOT",
    "CHECKPOINT_FILENAME",
    "MEMORY_FILENAME",
    "METRICS_FILENAME",
    "StatePathConfig",
    "resolve_state_path",
    "resolve_document_path",
    "ensure_directory",
]

DEFAULT_STATE_ROOT = Path(os.getenv("XWRITE_STATE_ROOT", ".xwrite"))
CHECKPOINT_FILENAME = "checkpoint.json"
MEMORY_FILENAME = "memory.md"
METRICS_FILENAME = "metrics.json"


def _normalise(path: Path | str) -> Path:
    return Path(path).expanduser()


def ensure_directory(path: Path | str) -> Path:
    resolved = _normalise(path)
    resolved.mkdir(parents=True, exist_ok=True)
    return resolved


def resolve_state_path(path: Path | str | None = None, *, create: bool = True) -> Path:
    candidate = _normalise(path or DEFAULT_STATE_ROOT)
    if create:
        candidate.mkdir(parents=True, exist_ok=True)
    return candidate


def resolve_document_path(path: Path | str, *, create_parent: bool = True) -> Path:
    candidate = _normalise(path)
    if create_parent:
        candidate.parent.mkdir(parents=True, exist_ok=True)
    return candidate


@dataclass(slots=True)
class StatePathConfig:
    """Locations of the persisted checkpoint, memory and metrics files."""

    state_dir: Path = DEFAULT_STATE_ROOT
    create_state: bool = True

    def expanded(self) -> "StatePathConfig":
        return replace(self, state_dir=_normalise(self.state_dir))

    def ensure(self) -> "StatePathConfig":
        resolved = self.expanded()
        if self.create_state:
            resolved.state_dir.mkdir(parents=True, exist_ok=True)
        return resolved

    @property
    def checkpoint_path(self) -> Path:
        return _normalise(self.state_dir) / CHECKPOINT_FILENAME

    @property
    def memory_path(self) -> Path:
        return _normalise(self.state_dir) / MEMORY_FILENAME

    @property
    def metrics_path(self) -> Path:
        return _normalise(self.state_dir) / METRICS_FILENAME
