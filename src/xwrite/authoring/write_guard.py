"""Keep agent bookkeeping out of the document.

Writers occasionally echo their control footer (``[[STATUS]]``/``[[CONTENT]]``),
plan state, or a "第二阶段：…" directive into the ``text`` argument of a write
tool. The helpers here strip that scaffolding before the text reaches the
document and leave ordinary prose untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .types import ArticleOutline

__all__ = [
    "StageGuardContext",
    "GuardResult",
    "ensure_trailing_newline",
    "strip_source_anchor_markers",
    "extract_plan_stage_titles",
    "strip_agent_execution_markers",
    "render_outline_plan",
    "parse_stage_number",
]

SOURCE_ANCHOR_PATTERN = re.compile(
    r"(?:\[\s*来源锚点\s*[:：][^\]\n]+?\]"
    r"|\(\s*来源锚点\s*[:：][^) \n]+?\)"
    r"|（\s*来源锚点\s*[:：][^）\n]+?）"
    r"|【\s*来源锚点\s*[:：][^】\n]+?】)"
)
PLAN_STATE_BLOCK = re.compile(r"\[\[PLAN_STATE\]\]\s*(?:```(?:json)?\s*)?\{.*?\}(?:\s*```)?\s*", re.DOTALL | re.IGNORECASE)
STATUS_BLOCK = re.compile(r"\[\[STATUS\]\][^\[]*?(?=\[\[|\Z)", re.IGNORECASE)
CONTENT_TAG = re.compile(r"\[\[CONTENT\]\][ \t]*\n?", re.IGNORECASE)
CONTENT_PLACEHOLDER = re.compile(r"^[（(]\s*留空[^\n]*[）)]\s*$", re.MULTILINE)
CONTROL_TAG_LINE = re.compile(r"\[\[(PLAN_STATE|STATUS|CONTENT)\]\]", re.IGNORECASE)
EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

NUMBERED_PLAN_LINE = re.compile(r"^(\d+)\.\s*(?:\[[ xX]\]\s*)?(.+)$")
CHECKLIST_PLAN_LINE = re.compile(r"^[-*]\s*\[[ xX]\]\s+(.+)$")

CURRENT_STAGE_LINE = re.compile(r"当前阶段(?:\s*[:：\-—]\s*(.*))?")
STAGE_LINE = re.compile(
    r"(?:第\s*([0-9一二两三四五六七八九十百千〇零]+)\s*阶段|阶段\s*([0-9一二两三四五六七八九十百千〇零]+))"
    r"(?:(?:\s*[:：\-—]\s*|\s+)(.*))?"
)
STAGE_COMPLETION_START = re.compile(r"^第\s*[0-9一二两三四五六七八九十]+\s*阶段\s*(?:已)?完成\s*[：:]")
NUMBERED_SUMMARY_LINE = re.compile(r"^\d+[.、)\t]\s*.+[：:]")
PLAN_REFERENCE_PATTERNS = (
    re.compile(r"plan\.md", re.IGNORECASE),
    re.compile(r"根据.*(?:要求|计划)"),
    re.compile(r"按照.*(?:要求|计划)"),
    re.compile(r"已经完成了"),
    re.compile(r"当前文档已经"),
    re.compile(r"为后续阶段"),
    re.compile(r"奠定了.*基础"),
    re.compile(r"已完成.*阶段"),
    re.compile(r"阶段.*已完成"),
)
COMPARABLE_NOISE = re.compile(r"[`*_~#>\-\s:：、，。,.!！?？;；\"'“”‘’（）()【】\[\]<>]")

CHINESE_DIGITS = {
    "零": 0,
    "〇": 0,
    "一": 1,
    "二": 2,
    "两": 2,
    "三": 3,
    "四": 4,
    "五": 5,
    "六": 6,
    "七": 7,
    "八": 8,
    "九": 9,
}
CHINESE_UNITS = {"十": 10, "百": 100, "千": 1000}
REPORT_LENGTH_LIMIT = 2000


@dataclass(slots=True)
class StageGuardContext:
    current_stage: int = 0
    total_stages: int = 0
    plan_stage_titles: List[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class GuardResult:
    text: str
    removed_marker: bool


def ensure_trailing_newline(text: str) -> str:
    if not text:
        return text
    if text.endswith("\n"):
        return text
    return f"{text}\n"


def strip_source_anchor_markers(text: str) -> GuardResult:
    """Drop inline ``[来源锚点: p3]`` style markers the verifier flow may leave in drafts."""

    if not text or not text.strip():
        return GuardResult(text=text, removed_marker=False)
    stripped = EXCESS_BLANK_LINES.sub("\n\n", SOURCE_ANCHOR_PATTERN.sub("", text))
    return GuardResult(text=stripped, removed_marker=stripped != text)


# ----------------------------------------------------------------------
# Stage numbering
# ----------------------------------------------------------------------
def _parse_chinese_numeral(token: str) -> Optional[int]:
    token = token.strip()
    if not token:
        return None
    if all(char in CHINESE_DIGITS for char in token):
        return int("".join(str(CHINESE_DIGITS[char]) for char in token))

    value = 0
    pending = 0
    for char in token:
        if char in CHINESE_UNITS:
            value += (pending or 1) * CHINESE_UNITS[char]
            pending = 0
            continue
        if char not in CHINESE_DIGITS:
            return None
        pending = CHINESE_DIGITS[char]
    value += pending
    return value if value > 0 else None


def parse_stage_number(token: str) -> Optional[int]:
    """Parse ``"2"``, ``"二"`` or ``"十二"`` into a positive stage number."""

    trimmed = token.strip()
    if not trimmed:
        return None
    if trimmed.isascii() and trimmed.isdigit():
        number = int(trimmed)
        return number if number > 0 else None
    return _parse_chinese_numeral(trimmed)


def _comparable(text: str) -> str:
    return COMPARABLE_NOISE.sub("", text.strip().lower())


def _parse_stage_directive(raw_line: str) -> Optional[tuple[Optional[int], str]]:
    line = raw_line.strip()
    line = re.sub(r"^[-*+]\s+", "", line)
    line = re.sub(r"^\d+[.)、]\s+", "", line)
    line = re.sub(r"^#{1,6}\s*", "", line)
    line = re.sub(r"^\*\*(.+)\*\*$", r"\1", line).strip()

    if "阶段" not in line:
        return None

    current = CURRENT_STAGE_LINE.fullmatch(line)
    if current is not None:
        return None, (current.group(1) or "").strip()

    stage = STAGE_LINE.fullmatch(line)
    if stage is None:
        return None
    token = (stage.group(1) or stage.group(2) or "").strip()
    return parse_stage_number(token), (stage.group(3) or "").strip()


def _is_plan_stage_title(title: str, plan_stage_titles: Sequence[str]) -> bool:
    candidate = _comparable(title)
    if len(candidate) < 4:
        return False
    for plan_title in plan_stage_titles:
        normalised = _comparable(plan_title)
        if len(normalised) < 4:
            continue
        if normalised in candidate or candidate in normalised:
            return True
    return False


def _should_strip_directive(stage_number: Optional[int], title: str, context: StageGuardContext) -> bool:
    if stage_number is not None and stage_number == context.current_stage:
        return True
    if stage_number is not None and 1 <= stage_number <= context.total_stages:
        if not title or _is_plan_stage_title(title, context.plan_stage_titles):
            return True
    return bool(title) and _is_plan_stage_title(title, context.plan_stage_titles)


# ----------------------------------------------------------------------
# Control blocks
# ----------------------------------------------------------------------
def _strip_control_blocks(source: str) -> tuple[str, bool]:
    result = source
    removed = False
    for pattern, replacement in (
        (PLAN_STATE_BLOCK, "\n"),
        (STATUS_BLOCK, "\n"),
        (CONTENT_TAG, ""),
    ):
        updated = pattern.sub(replacement, result)
        if updated != result:
            removed = True
            result = updated
    if removed:
        result = CONTENT_PLACEHOLDER.sub("", result)
    return EXCESS_BLANK_LINES.sub("\n\n", result).strip(), removed


def _is_stage_completion_report(text: str) -> bool:
    trimmed = text.strip()
    if not trimmed:
        return True
    if len(trimmed) > REPORT_LENGTH_LIMIT:
        return False

    lines = [line.strip() for line in trimmed.splitlines() if line.strip()]
    if not lines:
        return True
    if not STAGE_COMPLETION_START.match(lines[0]):
        return False

    plan_references = sum(1 for line in lines if any(pattern.search(line) for pattern in PLAN_REFERENCE_PATTERNS))
    numbered_summaries = sum(1 for line in lines if NUMBERED_SUMMARY_LINE.match(line))
    return plan_references >= 1 or numbered_summaries >= max(2, len(lines) * 0.4)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------
def extract_plan_stage_titles(plan_markdown: str) -> List[str]:
    titles: List[str] = []
    for raw_line in (plan_markdown or "").splitlines():
        line = raw_line.strip()
        if not line:
            continue
        numbered = NUMBERED_PLAN_LINE.match(line)
        checklist = CHECKLIST_PLAN_LINE.match(line)
        title = ((numbered.group(2) if numbered else None) or (checklist.group(1) if checklist else None) or "").strip()
        if title and title not in titles:
            titles.append(title)
    return titles


def strip_agent_execution_markers(text: str, context: StageGuardContext | None = None) -> GuardResult:
    """Remove control blocks and leading stage directives from write-tool text.

    Text without any marker is returned unchanged, so applying the guard twice
    is the same as applying it once.
    """

    if not text or not text.strip():
        return GuardResult(text=text, removed_marker=False)
    context = context or StageGuardContext()

    after_control, control_removed = _strip_control_blocks(text)
    if control_removed and _is_stage_completion_report(after_control):
        return GuardResult(text="", removed_marker=True)

    lines = after_control.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    cursor = 0
    removed = control_removed
    while cursor < len(lines):
        line = lines[cursor].strip()
        if not line:
            cursor += 1
            continue
        if CONTROL_TAG_LINE.fullmatch(line):
            removed = True
            cursor += 1
            continue
        directive = _parse_stage_directive(line)
        if directive is not None and _should_strip_directive(directive[0], directive[1], context):
            removed = True
            cursor += 1
            continue
        break

    if not removed:
        return GuardResult(text=text, removed_marker=False)

    stripped = "\n".join(lines[cursor:]).lstrip()
    if _is_stage_completion_report(stripped):
        return GuardResult(text="", removed_marker=True)
    return GuardResult(text=stripped, removed_marker=True)


def render_outline_plan(outline: ArticleOutline) -> str:
    """Render the outline as a stage checklist shown to the user before writing."""

    lines = [f"# {outline.title}", "", "## 阶段计划"]
    for index, section in enumerate(outline.sections, start=1):
        lines.append(f"{index}. [ ] {section.title}")
    lines.append("")
    for section in outline.sections:
        lines.append(f"### {section.title}")
        if section.description:
            lines.append(section.description)
        lines.extend(f"- {point}" for point in section.key_points)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
