"""In-memory Markdown document that executes the writer's document tools.

Hosts embedding the pipeline normally provide their own :class:`ToolExecutor`
bound to a real editor. This backend keeps the document as a list of
paragraphs (one per non-blank line) so the CLI and the tests can run the
whole pipeline against a plain Markdown file.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .authoring.tools import ToolCallRequest, ToolCallResult

logger = logging.getLogger(__name__)

__all__ = ["MarkdownDocument", "ToolArgumentError"]

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.*)$")
LIST_PATTERN = re.compile(r"^(?:[-*+]|\d+[.)])\s+")


class ToolArgumentError(ValueError):
    """Raised for malformed tool arguments; reported back as a failed result."""


def _split_paragraphs(text: str) -> List[str]:
    return [line.rstrip() for line in text.replace("\r\n", "\n").split("\n") if line.strip()]


class MarkdownDocument:
    """Paragraph-indexed document implementing the ``ToolExecutor`` protocol."""

    def __init__(self, text: str = "", *, path: Path | None = None, encoding: str = "utf-8") -> None:
        self.paragraphs: List[str] = _split_paragraphs(text)
        self.path = path
        self.encoding = encoding
        self.selection: Optional[int] = None
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "get_document_text": self._get_document_text,
            "get_paragraphs": self._get_paragraphs,
            "get_paragraph_by_index": self._get_paragraph_by_index,
            "get_document_structure": self._get_document_structure,
            "search_document": self._search_document,
            "insert_text": self._insert_text,
            "append_text": self._append_text,
            "insert_after_paragraph": self._insert_after_paragraph,
            "select_paragraph": self._select_paragraph,
            "replace_selected_text": self._replace_selected_text,
        }

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------
    @classmethod
    def load(cls, path: Path, *, encoding: str = "utf-8") -> "MarkdownDocument":
        path = Path(path)
        text = path.read_text(encoding=encoding) if path.exists() else ""
        return cls(text, path=path, encoding=encoding)

    def save(self, path: Path | None = None) -> Path:
        target = Path(path or self.path or "document.md")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.text, encoding=self.encoding)
        return target

    @property
    def text(self) -> str:
        if not self.paragraphs:
            return ""
        return "\n\n".join(self.paragraphs) + "\n"

    def get_text(self) -> str:
        return self.text

    # ------------------------------------------------------------------
    # ToolExecutor
    # ------------------------------------------------------------------
    async def execute(
        self,
        tool_calls: Sequence[ToolCallRequest],
        written_segments: List[str],
    ) -> List[ToolCallResult]:
        results: List[ToolCallResult] = []
        for call in tool_calls:
            handler = self._handlers.get(call.name)
            if handler is None:
                results.append(ToolCallResult(id=call.id, name=call.name, success=False, error=f"未知工具: {call.name}"))
                continue
            try:
                payload = handler(call.arguments or {})
            except ToolArgumentError as exc:
                results.append(ToolCallResult(id=call.id, name=call.name, success=False, error=str(exc)))
                continue
            results.append(ToolCallResult(id=call.id, name=call.name, success=True, result=payload))
        return results

    # ------------------------------------------------------------------
    # Argument helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _require_text(arguments: Mapping[str, Any]) -> str:
        if "text" not in arguments:
            raise ToolArgumentError("缺少必要参数: text")
        text = arguments["text"]
        if not isinstance(text, str):
            raise ToolArgumentError("参数 text 应为字符串")
        return text

    def _require_index(self, arguments: Mapping[str, Any]) -> int:
        raw = arguments.get("index")
        if isinstance(raw, bool) or raw is None:
            raise ToolArgumentError("缺少必要参数: index")
        try:
            index = int(raw)
        except (TypeError, ValueError) as exc:
            raise ToolArgumentError("参数 index 应为整数") from exc
        if index < 0 or index >= len(self.paragraphs):
            raise ToolArgumentError(f"段落索引超出范围: {index}（共 {len(self.paragraphs)} 段）")
        return index

    def _insert_at(self, position: int, text: str) -> Dict[str, object]:
        new_paragraphs = _split_paragraphs(text)
        self.paragraphs[position:position] = new_paragraphs
        self.selection = None
        return {"inserted": len(new_paragraphs), "startIndex": position}

    # ------------------------------------------------------------------
    # Read tools
    # ------------------------------------------------------------------
    def _get_document_text(self, arguments: Mapping[str, Any]) -> str:
        return self.text

    def _describe(self, index: int, include_format: bool) -> Dict[str, object]:
        paragraph = self.paragraphs[index]
        entry: Dict[str, object] = {"index": index, "text": paragraph}
        if include_format:
            heading = HEADING_PATTERN.match(paragraph)
            if heading:
                entry["style"] = f"Heading {len(heading.group(1))}"
            elif LIST_PATTERN.match(paragraph):
                entry["style"] = "List Paragraph"
            else:
                entry["style"] = "Normal"
        return entry

    def _get_paragraphs(self, arguments: Mapping[str, Any]) -> List[Dict[str, object]]:
        include_format = bool(arguments.get("includeFormat"))
        return [self._describe(index, include_format) for index in range(len(self.paragraphs))]

    def _get_paragraph_by_index(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        return self._describe(self._require_index(arguments), True)

    def _get_document_structure(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        headings = []
        lists = []
        for index, paragraph in enumerate(self.paragraphs):
            heading = HEADING_PATTERN.match(paragraph)
            if heading:
                headings.append({"index": index, "level": len(heading.group(1)), "text": heading.group(2).strip()})
            elif LIST_PATTERN.match(paragraph):
                lists.append(index)
        return {"paragraphCount": len(self.paragraphs), "headings": headings, "listParagraphs": lists}

    def _search_document(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        query = arguments.get("query")
        if not isinstance(query, str) or not query:
            raise ToolArgumentError("缺少必要参数: query")
        match_case = bool(arguments.get("matchCase"))
        needle = query if match_case else query.lower()
        matches = [
            {"index": index, "text": paragraph}
            for index, paragraph in enumerate(self.paragraphs)
            if needle in (paragraph if match_case else paragraph.lower())
        ]
        return {"query": query, "count": len(matches), "matches": matches}

    # ------------------------------------------------------------------
    # Write tools
    # ------------------------------------------------------------------
    def _append_text(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        return self._insert_at(len(self.paragraphs), self._require_text(arguments))

    def _insert_text(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        text = self._require_text(arguments)
        location = arguments.get("location") or "cursor"
        if location == "start":
            return self._insert_at(0, text)
        if location == "end":
            return self._insert_at(len(self.paragraphs), text)
        if location != "cursor":
            raise ToolArgumentError(f"不支持的插入位置: {location}")
        position = self.selection + 1 if self.selection is not None else len(self.paragraphs)
        return self._insert_at(position, text)

    def _insert_after_paragraph(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        text = self._require_text(arguments)
        index = self._require_index(arguments)
        return self._insert_at(index + 1, text)

    def _select_paragraph(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        index = self._require_index(arguments)
        self.selection = index
        return {"index": index, "text": self.paragraphs[index]}

    def _replace_selected_text(self, arguments: Mapping[str, Any]) -> Dict[str, object]:
        text = self._require_text(arguments)
        if self.selection is None:
            raise ToolArgumentError("当前没有选中的文本，请先调用 select_paragraph")
        index = self.selection
        replacement = _split_paragraphs(text)
        self.paragraphs[index : index + 1] = replacement
        self.selection = None
        return {"replacedIndex": index, "paragraphs": len(replacement)}
