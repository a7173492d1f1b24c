"""Write-tool execution policy: marker stripping, dedup, bounded retries."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config import PipelineConfig
from .tools import WRITE_TOOL_NAMES, ToolCallRequest, ToolCallResult, ToolExecutor
from .write_guard import (
    StageGuardContext,
    ensure_trailing_newline,
    strip_agent_execution_markers,
    strip_source_anchor_markers,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RETRYABLE_WRITE_ERROR_PATTERNS",
    "ToolExecutionStats",
    "GuardedToolExecutor",
    "is_retryable_write_tool_error",
]

RETRYABLE_WRITE_ERROR_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"timeout",
        r"timed out",
        r"network",
        r"fetch",
        r"busy",
        r"throttle",
        r"generalexception",
        r"internal",
        r"temporar",
        r"service unavailable",
        r"connection",
        r"socket",
        r"richapi\.error",
        r"超时",
        r"网络",
        r"繁忙",
        r"稍后",
        r"重试",
        r"暂时",
        r"服务不可用",
    )
)

SKIPPED_MARKER_ONLY = "仅检测到阶段指示内容，已跳过写入"
SKIPPED_DUPLICATE = "该内容已存在于文档中，已跳过重复写入"

Sleep = Callable[[float], Awaitable[None]]
CancelCheck = Callable[[], bool]


def is_retryable_write_tool_error(error_message: Optional[str]) -> bool:
    """Transient host/network failures are retried; argument errors are not.

    A missing error message is treated as transient.
    """

    message = error_message.strip() if isinstance(error_message, str) else ""
    if not message:
        return True
    return any(pattern.search(message) for pattern in RETRYABLE_WRITE_ERROR_PATTERNS)


@dataclass(slots=True)
class ToolExecutionStats:
    tool_calls: int = 0
    tool_failures: int = 0
    duplicate_write_skips: int = 0
    retries: int = 0


class GuardedToolExecutor:
    """Wrap a document :class:`ToolExecutor` with the write policy.

    Calls are executed one at a time in the order the model issued them, since
    they all mutate the same document. Once ``is_cancelled`` reports true the
    remaining calls of a batch are dropped and only the results so far are
    returned.
    """

    def __init__(
        self,
        inner: ToolExecutor,
        config: PipelineConfig | None = None,
        *,
        stage_context: StageGuardContext | None = None,
        sleep: Sleep = asyncio.sleep,
        is_cancelled: CancelCheck | None = None,
    ) -> None:
        self.inner = inner
        self.config = config or PipelineConfig()
        self.stage_context = stage_context or StageGuardContext()
        self.stats = ToolExecutionStats()
        self.is_cancelled: CancelCheck = is_cancelled or (lambda: False)
        self._sleep = sleep

    async def execute(
        self,
        tool_calls: Sequence[ToolCallRequest],
        written_segments: List[str],
    ) -> List[ToolCallResult]:
        results: List[ToolCallResult] = []
        for call in tool_calls:
            if self.is_cancelled():
                logger.info("Cancelled; dropped %s pending tool call(s)", len(tool_calls) - len(results))
                break
            results.append(await self._execute_one(call, written_segments))
        return results

    def _prepare_write(self, call: ToolCallRequest) -> tuple[ToolCallRequest, Optional[str]]:
        text = call.arguments.get("text")
        if not isinstance(text, str) or not text.strip():
            return call, text if isinstance(text, str) else None

        guarded = strip_agent_execution_markers(text, self.stage_context)
        if guarded.removed_marker:
            logger.warning("Removed stage marker before %s write", call.name)
        text = guarded.text
        anchors = strip_source_anchor_markers(text)
        text = anchors.text
        if text.strip():
            text = ensure_trailing_newline(text)
        if text == call.arguments.get("text"):
            return call, text
        return replace(call, arguments={**call.arguments, "text": text}), text

    async def _execute_one(self, call: ToolCallRequest, written_segments: List[str]) -> ToolCallResult:
        self.stats.tool_calls += 1
        if call.name not in WRITE_TOOL_NAMES:
            result = await self._run(call, written_segments)
            if not result.success:
                self.stats.tool_failures += 1
            return result

        call, text = self._prepare_write(call)
        if isinstance(text, str) and not text.strip():
            return ToolCallResult(id=call.id, name=call.name, success=True, result=SKIPPED_MARKER_ONLY)

        if isinstance(text, str):
            trimmed = text.strip()
            if trimmed in written_segments:
                self.stats.duplicate_write_skips += 1
                logger.warning("Skipped duplicate %s (content already written)", call.name)
                return ToolCallResult(
                    id=call.id,
                    name=call.name,
                    success=True,
                    result=SKIPPED_DUPLICATE,
                    duplicate=True,
                )

        attempt = 0
        while True:
            result = await self._run(call, written_segments)
            if result.success:
                break
            can_retry = attempt < self.config.max_write_tool_retries and is_retryable_write_tool_error(result.error)
            if not can_retry or self.is_cancelled():
                break
            attempt += 1
            self.stats.retries += 1
            logger.warning(
                "%s 执行失败，准备重试 %s/%s: %s",
                call.name,
                attempt,
                self.config.max_write_tool_retries,
                result.error,
            )
            await self._sleep(self.config.retry_delay(attempt))

        if not result.success:
            self.stats.tool_failures += 1
            if attempt:
                logger.error("%s failed after %s retries: %s", call.name, attempt, result.error)
        elif isinstance(text, str) and text.strip():
            written_segments.append(text.strip())
        return result

    async def _run(self, call: ToolCallRequest, written_segments: List[str]) -> ToolCallResult:
        results = await self.inner.execute([call], written_segments)
        if not results:
            return ToolCallResult(id=call.id, name=call.name, success=False, error="工具未返回结果")
        return results[0]
