"""Document tool contract shared by the writer agent and tool executors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ..llm.client import ToolCallRequest

__all__ = [
    "ToolCallRequest",
    "ToolCallResult",
    "ToolExecutor",
    "WRITE_TOOL_NAMES",
    "WRITER_TOOL_NAMES",
    "TOOL_DEFINITIONS",
    "writer_tool_definitions",
]

WRITE_TOOL_NAMES = frozenset({"append_text", "insert_text", "insert_after_paragraph", "replace_selected_text"})

WRITER_TOOL_NAMES = (
    "get_document_text",
    "get_paragraphs",
    "get_paragraph_by_index",
    "get_document_structure",
    "search_document",
    "insert_text",
    "append_text",
    "insert_after_paragraph",
    "replace_selected_text",
    "select_paragraph",
)


@dataclass(slots=True)
class ToolCallResult:
    id: str
    name: str
    success: bool
    result: Any = None
    error: Optional[str] = None
    duplicate: bool = False

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"id": self.id, "name": self.name, "success": self.success}
        if self.success:
            payload["result"] = self.result
        else:
            payload["error"] = self.error
        return payload


@runtime_checkable
class ToolExecutor(Protocol):
    """Executes document tool calls against the shared document."""

    async def execute(
        self,
        tool_calls: Sequence[ToolCallRequest],
        written_segments: List[str],
    ) -> List[ToolCallResult]:
        ...


def _function(name: str, description: str, properties: Mapping[str, Any] | None = None, required: Sequence[str] = ()) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": dict(properties or {}),
                "required": list(required),
            },
        },
    }


_TEXT = {"type": "string", "description": "要写入的 Markdown 文本，末尾必须带换行符"}
_INDEX = {"type": "integer", "description": "段落索引（从 0 开始）"}

TOOL_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "get_document_text": _function("get_document_text", "获取整个文档的文本内容"),
    "get_paragraphs": _function(
        "get_paragraphs",
        "获取文档中的段落列表",
        {"includeFormat": {"type": "boolean", "description": "是否包含段落格式信息"}},
    ),
    "get_paragraph_by_index": _function("get_paragraph_by_index", "获取指定索引的段落内容", {"index": _INDEX}, ["index"]),
    "get_document_structure": _function("get_document_structure", "获取文档结构信息（标题、列表等）及段落索引"),
    "search_document": _function(
        "search_document",
        "在文档中搜索指定内容",
        {
            "query": {"type": "string", "description": "要搜索的文本"},
            "matchCase": {"type": "boolean", "description": "是否区分大小写"},
        },
        ["query"],
    ),
    "insert_text": _function(
        "insert_text",
        "在指定位置插入文本",
        {
            "text": _TEXT,
            "location": {
                "type": "string",
                "enum": ["cursor", "start", "end"],
                "description": "插入位置：cursor（光标），start（文档开头），end（文档末尾）",
            },
        },
        ["text"],
    ),
    "append_text": _function("append_text", "在文档末尾追加文本", {"text": _TEXT}, ["text"]),
    "insert_after_paragraph": _function(
        "insert_after_paragraph",
        "在指定段落之后插入文本",
        {"index": _INDEX, "text": _TEXT},
        ["index", "text"],
    ),
    "replace_selected_text": _function("replace_selected_text", "替换当前选中的文本", {"text": _TEXT}, ["text"]),
    "select_paragraph": _function("select_paragraph", "选中指定索引的段落", {"index": _INDEX}, ["index"]),
}


def writer_tool_definitions(names: Sequence[str] = WRITER_TOOL_NAMES) -> List[Dict[str, Any]]:
    return [TOOL_DEFINITIONS[name] for name in names if name in TOOL_DEFINITIONS]
