"""User-message builders for the authoring agents."""

from __future__ import annotations

from typing import List, Optional, Sequence

from .types import (
    ArticleOutline,
    OutlineSection,
    ReviewFeedback,
    SectionFeedback,
    SectionWriteResult,
    VerificationFeedback,
)

__all__ = [
    "build_planner_context",
    "build_section_context",
    "build_review_context",
    "build_arbiter_context",
    "build_verifier_context",
    "build_revision_feedback",
]

RECENT_SECTION_WINDOW = 2
SUMMARY_PREVIEW_CHARS = 300
EMPTY_DOCUMENT = "（空文档）"


def build_planner_context(requirement: str, document_text: str) -> str:
    document_block = document_text if document_text.strip() else EMPTY_DOCUMENT
    return "\n".join(["## 用户需求", requirement, "", f"## 当前文档内容\n{document_block}"])


def build_section_context(
    outline: ArticleOutline,
    current_section: OutlineSection,
    previous_sections: Sequence[SectionWriteResult],
    revision_feedback: Optional[str] = None,
    memory_context: Optional[str] = None,
) -> str:
    """Outline overview, a bounded window of written sections, then the task itself.

    The two most recent sections are quoted in full; older ones are cut to a
    short preview so the prompt stays roughly constant in size.
    """

    parts: List[str] = []
    current_index = outline.index_of(current_section.id)
    next_section = (
        outline.sections[current_index + 1]
        if 0 <= current_index < len(outline.sections) - 1
        else None
    )

    parts.append("## 文章完整大纲")
    parts.append(f"标题：{outline.title}")
    parts.append(f"主题：{outline.theme}")
    parts.append(f"目标读者：{outline.target_audience}")
    parts.append(f"风格：{outline.style}")
    parts.append("")
    parts.append("### 章节结构")
    for section in outline.sections:
        marker = " <-- 【当前章节】" if section.id == current_section.id else ""
        indent = "  " if section.level > 1 else ""
        parts.append(f"{indent}{section.id}. {section.title}{marker}")
    parts.append("")

    if previous_sections:
        parts.append("## 已完成章节内容")
        cutoff = len(previous_sections) - RECENT_SECTION_WINDOW
        for index, previous in enumerate(previous_sections):
            if index >= cutoff:
                parts.append(f"### {previous.section_title}")
                parts.append(previous.content)
            else:
                parts.append(f"### {previous.section_title}（摘要）")
                content = previous.content
                if len(content) > SUMMARY_PREVIEW_CHARS:
                    content = content[:SUMMARY_PREVIEW_CHARS] + "..."
                parts.append(content)
            parts.append("")

    parts.append("## 当前写作任务")
    parts.append(f"请撰写章节：**{current_section.title}**")
    parts.append(f"描述：{current_section.description}")
    if current_section.key_points:
        parts.append("需要覆盖的要点：")
        parts.extend(f"- {point}" for point in current_section.key_points)
    parts.append(f"预估段落数：{current_section.estimated_paragraphs}")

    if revision_feedback:
        parts.append("")
        parts.append("## 章节边界定位")
        parts.append(f"当前章节标题锚点：{current_section.title}")
        if next_section is not None:
            parts.append(f"下一章节标题锚点：{next_section.title}")
        parts.append("先调用 get_document_structure，定位当前章节标题对应的段落索引。")
        if next_section is not None:
            parts.append("若已存在下一章节标题，只能修改两者之间的段落范围。")
        else:
            parts.append("若不存在下一章节标题，只能修改从当前章节标题到文末的内容。")
        parts.append("")
        parts.append("## 修改要求（来自审阅反馈）")
        parts.append(revision_feedback)
        parts.append("")
        parts.append("请用 select_paragraph + replace_selected_text 精确修改命中的段落，避免重写整篇文档。")
    else:
        parts.append("")
        parts.append("## 写入约束")
        if current_index == 0:
            parts.append(
                f"若文档中尚无文章主标题，请先写 # {outline.title}；然后写本章节标题 ## {current_section.title}。"
            )
        else:
            parts.append(f"请以章节标题 ## {current_section.title} 开头，标题文本必须与章节名完全一致。")
        parts.append(
            "请先用 get_document_structure 了解文档当前结构，然后使用 insert_after_paragraph "
            "在合适位置插入本章节内容。如果文档为空，可使用 append_text。"
        )

    if memory_context and memory_context.strip():
        parts.append("")
        parts.append("## 长期记忆检索")
        parts.append(memory_context.strip())
        parts.append("")
        parts.append("写作时优先保持与以上记忆的一致性（术语、角色设定、已写章节事实）。")
        parts.append("")

    return "\n".join(parts)


def build_review_context(
    outline: ArticleOutline,
    document_text: str,
    round_number: int,
    previous_feedback: Optional[ReviewFeedback] = None,
    focus_section_id: Optional[str] = None,
    reviewer_lens: Optional[str] = None,
) -> str:
    parts: List[str] = ["## 文章大纲", outline.to_json(), "", "## 当前文档全文", document_text or EMPTY_DOCUMENT, ""]

    if round_number > 1 and previous_feedback is not None:
        parts.append("## 上一轮审阅反馈")
        parts.append(previous_feedback.to_json())
        parts.append("")
        parts.append("请重点检查上一轮指出的问题是否已修正。")
        parts.append("")

    parts.append("## 审阅要求")
    if focus_section_id:
        section = outline.find_section(focus_section_id)
        section_title = section.title if section is not None else focus_section_id
        parts.append(f'请重点审阅章节 "{section_title}"（id: {focus_section_id}），同时检查它与前后内容的连贯性。')
        parts.append(f"sectionFeedback 数组中只需包含 {focus_section_id} 这一个章节的反馈。")
    else:
        parts.append(f"这是第 {round_number} 轮审阅。请严格按照 JSON 格式输出审阅结果。")
    if reviewer_lens and reviewer_lens.strip():
        parts.append(f"额外审阅视角：{reviewer_lens.strip()}")

    return "\n".join(parts)


def build_arbiter_context(
    outline: ArticleOutline,
    document_text: str,
    round_number: int,
    primary: ReviewFeedback,
    critic: ReviewFeedback,
    focus_section_id: Optional[str] = None,
) -> str:
    parts: List[str] = ["## 审阅轮次", str(round_number)]
    if focus_section_id:
        parts.append(f"聚焦章节：{focus_section_id}")
    parts.extend(
        [
            "",
            "## 文章大纲",
            outline.to_json(),
            "",
            "## 文档全文",
            document_text or EMPTY_DOCUMENT,
            "",
            "## Reviewer A 反馈",
            primary.to_json(),
            "",
            "## Reviewer B / Critic 反馈",
            critic.to_json(),
        ]
    )
    return "\n".join(parts)


def build_verifier_context(
    section: OutlineSection,
    section_text: str,
    declaration_points: Sequence[str] = (),
) -> str:
    combined: List[str] = []
    for point in [*section.key_points, *declaration_points]:
        if point.strip() and point not in combined:
            combined.append(point)

    parts: List[str] = [
        "## 章节信息",
        f"sectionId: {section.id}",
        f"title: {section.title}",
        f"description: {section.description or '（无）'}",
        "",
        "## 章节正文",
        section_text.strip() or "（空章节）",
        "",
        "## 关键声明点",
    ]
    if combined:
        parts.extend(f"- {point}" for point in combined)
    else:
        parts.append("（未提供明确声明点，请你从章节正文提取关键结论进行核验）")
    parts.append("")
    parts.append("请基于章节正文做核验，不要编造外部来源。anchor 优先用段落索引形式（如 p1、p2）。")
    return "\n".join(parts)


def build_revision_feedback(
    section_feedback: Optional[SectionFeedback],
    review: Optional[ReviewFeedback] = None,
    verification: Optional[VerificationFeedback] = None,
) -> str:
    """Collapse review and verification findings into the writer's revision brief."""

    parts: List[str] = []
    if section_feedback is not None and section_feedback.issues:
        parts.append("## 审阅问题")
        parts.extend(f"- {issue}" for issue in section_feedback.issues)
    if section_feedback is not None and section_feedback.suggestions:
        parts.append("## 修改建议")
        parts.extend(f"- {suggestion}" for suggestion in section_feedback.suggestions)
    if review is not None and review.coherence_issues:
        parts.append("## 连贯性问题")
        parts.extend(f"- {issue}" for issue in review.coherence_issues)
    if verification is not None:
        failed = verification.failed_claims()
        if failed:
            parts.append("## 事实核验未通过")
            for claim in failed:
                reason = f"（{claim.reason}）" if claim.reason else ""
                parts.append(f"- {claim.claim}{reason}")
            parts.append("请为以上结论补充可在本章节内定位的依据，或删改无法支撑的表述。")
    return "\n".join(parts)
