"""Deterministic offline model client for ``--provider mock`` and tests."""

from __future__ import annotations

import json
import re
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

from langchain_core.messages import BaseMessage, HumanMessage, ToolMessage

from .client import (
    GenerateOptions,
    GenerationResult,
    StreamChunk,
    TextDelta,
    ThinkingDelta,
    ToolCallBatch,
    ToolCallRequest,
)

__all__ = ["MockModelClient"]

_SECTION_TASK = re.compile(r"请撰写章节：\*\*(.+?)\*\*")
_DOCUMENT_TITLE = re.compile(r'先 "# (.+?)"')
_SECTION_IDS = re.compile(r'"id":\s*"([^"]+)"')
_KEY_POINT = re.compile(r"^- (.+)$", re.MULTILINE)
_REQUIREMENT = re.compile(r"## 用户需求\n(.+?)\n", re.DOTALL)


class MockModelClient:
    """Answers each agent role with canned but well-formed output.

    The role is recognised from the system prompt. The writer receives a
    single ``append_text`` round followed by a status-only reply.
    """

    def __init__(self, *, review_score: int = 8, section_titles: Sequence[str] | None = None) -> None:
        self.review_score = review_score
        self.section_titles = list(section_titles or ("背景与目标", "核心内容", "总结与展望"))
        self.calls: List[str] = []

    async def generate(
        self,
        prompt: str,
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> GenerationResult:
        if "文章规划专家" in system_prompt:
            self.calls.append("planner")
            return GenerationResult(text=self._outline(prompt))
        if "审阅仲裁者" in system_prompt:
            self.calls.append("arbiter")
            return GenerationResult(text=self._review(prompt))
        if "文章审阅专家" in system_prompt:
            self.calls.append("critic" if "Critic 视角" in system_prompt else "reviewer")
            return GenerationResult(text=self._review(prompt))
        if "事实核验专家" in system_prompt:
            self.calls.append("verifier")
            return GenerationResult(text=self._verification(prompt))
        if "并行生成" in system_prompt:
            self.calls.append("draft")
            return GenerationResult(text=self._section_body(prompt, system_prompt))
        self.calls.append("generate")
        return GenerationResult(text="")

    async def stream_with_tools(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[Mapping[str, Any]],
        system_prompt: str,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.calls.append("writer")
        last = messages[-1] if messages else None
        if isinstance(last, ToolMessage):
            yield TextDelta("[[STATUS]]\n章节写入完成\n\n[[CONTENT]]\n（留空，内容已通过工具写入文档）")
            return

        prompt = last.content if isinstance(last, HumanMessage) and isinstance(last.content, str) else ""
        yield ThinkingDelta("规划章节结构。")
        yield TextDelta("正在写入章节。")
        body = self._section_body(prompt, system_prompt)
        turn = sum(1 for message in messages if isinstance(message, HumanMessage))
        yield ToolCallBatch((ToolCallRequest(id=f"mock_call_{turn}", name="append_text", arguments={"text": body + "\n"}),))

    # ------------------------------------------------------------------
    # Canned payloads
    # ------------------------------------------------------------------
    def _outline(self, prompt: str) -> str:
        match = _REQUIREMENT.search(prompt + "\n")
        requirement = match.group(1).strip() if match else "示例文档"
        title = requirement.splitlines()[0][:30] or "示例文档"
        sections = [
            {
                "id": f"s{index}",
                "title": section_title,
                "level": 1,
                "description": f"围绕“{title}”阐述{section_title}。",
                "keyPoints": [f"{section_title}的要点"],
                "estimatedParagraphs": 2,
            }
            for index, section_title in enumerate(self.section_titles, start=1)
        ]
        payload = {
            "title": title,
            "theme": requirement[:60],
            "targetAudience": "通用读者",
            "style": "专业",
            "sections": sections,
            "totalEstimatedParagraphs": 2 * len(sections),
        }
        return f"```json\n{json.dumps(payload, ensure_ascii=False, indent=2)}\n```"

    def _section_body(self, prompt: str, system_prompt: str) -> str:
        match = _SECTION_TASK.search(prompt)
        section_title = match.group(1) if match else "章节"
        lines: List[str] = []
        title = _DOCUMENT_TITLE.search(system_prompt)
        if title:
            lines.extend([f"# {title.group(1)}", ""])
        lines.extend(
            [
                f"## {section_title}",
                "",
                f"本节说明{section_title}的核心内容，并与全文主题保持一致。",
                "",
                f"{section_title}的第二段补充了背景细节与具体示例。",
            ]
        )
        return "\n".join(lines)

    def _review(self, prompt: str) -> str:
        section_ids: List[str] = []
        for section_id in _SECTION_IDS.findall(prompt):
            if section_id not in section_ids:
                section_ids.append(section_id)
        round_match = re.search(r"第 (\d+) 轮审阅", prompt)
        payload: Dict[str, Any] = {
            "round": int(round_match.group(1)) if round_match else 1,
            "overallScore": self.review_score,
            "sectionFeedback": [
                {"sectionId": section_id, "issues": [], "suggestions": [], "needsRevision": False}
                for section_id in section_ids
            ],
            "coherenceIssues": [],
            "globalSuggestions": [],
        }
        return json.dumps(payload, ensure_ascii=False)

    def _verification(self, prompt: str) -> str:
        _, _, points_block = prompt.partition("## 关键声明点")
        points = _KEY_POINT.findall(points_block) or ["章节主旨"]
        claims = []
        evidence = []
        for index, point in enumerate(points, start=1):
            claims.append(
                {
                    "claim": point,
                    "verdict": "pass",
                    "evidenceIds": [f"e{index}"],
                    "sourceAnchors": [f"p{index}"],
                }
            )
            evidence.append({"id": f"e{index}", "quote": point, "anchor": f"p{index}"})
        return json.dumps({"verdict": "pass", "claims": claims, "evidence": evidence}, ensure_ascii=False)
