"""Cross-section long-term memory: personas, glossary and section summaries.

Everything here is lexical and deterministic; no model calls are made. The
memory is persisted as a human-readable Markdown document whose final fenced
``xwrite-memory`` block holds an exact JSON snapshot for round-tripping.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional

from .timestamps import parse_iso_timestamp, utc_now_iso
from .types import ArticleOutline, OutlineSection

logger = logging.getLogger(__name__)

__all__ = [
    "GlossaryItem",
    "SectionSummary",
    "LongTermMemoryState",
    "STOP_WORDS",
    "extract_keywords",
    "extract_candidate_terms",
    "create_long_term_memory",
    "merge_long_term_memory",
    "update_long_term_memory_with_section",
    "build_memory_context_for_section",
    "render_long_term_memory_markdown",
    "parse_long_term_memory_markdown",
]

STOP_WORDS = frozenset(
    {
        "以及",
        "然后",
        "因此",
        "所以",
        "这个",
        "那个",
        "我们",
        "你们",
        "他们",
        "进行",
        "可以",
        "需要",
        "文章",
        "章节",
        "内容",
        "current",
        "section",
        "with",
        "from",
        "that",
        "this",
        "into",
        "about",
    }
)

MAX_PERSONAS = 12
MAX_GLOSSARY = 120
MAX_SUMMARIES = 120
MAX_SUMMARY_KEYWORDS = 16
MAX_CANDIDATE_TERMS = 10
SUMMARY_CHARS = 220
STORED_SUMMARY_CHARS = 240
NEW_NOTE_CHARS = 80
STORED_NOTE_CHARS = 120
RENDER_LIMIT = 80
SNAPSHOT_FENCE = "xwrite-memory"
SEED_NOTE = "来自用户需求或已有文档"

KEYWORD_PATTERN = re.compile(r"[\u4e00-\u9fa5]{2,}|[A-Za-z][A-Za-z0-9_-]{2,}")
QUOTED_TERM_PATTERN = re.compile(r"[“\"']([^“”\"'`\n]{2,30})[”\"']")
CAPITALISED_TERM_PATTERN = re.compile(r"\b[A-Z][A-Za-z0-9_-]{1,30}\b", re.ASCII)
BRACKETED_TITLE_PATTERN = re.compile(r"[《【]([^》】\n]{2,30})[》】]")
TERM_QUOTES = re.compile(r"[“”\"'`]")
TERM_EDGES = re.compile(r"^[\W_]+|[\W_]+$")
SNAPSHOT_PATTERN = re.compile(
    r"^```" + SNAPSHOT_FENCE + r"[ \t]*\n(.*?)\n```[ \t]*$", re.DOTALL | re.IGNORECASE | re.MULTILINE
)


@dataclass(slots=True)
class GlossaryItem:
    term: str
    note: str = ""
    frequency: int = 1

    def to_dict(self) -> dict[str, object]:
        return {"term": self.term, "note": self.note, "frequency": self.frequency}


@dataclass(slots=True)
class SectionSummary:
    section_id: str
    section_title: str
    summary: str
    keywords: List[str] = field(default_factory=list)
    updated_at: str = ""

    def to_dict(self) -> dict[str, object]:
        return {
            "sectionId": self.section_id,
            "sectionTitle": self.section_title,
            "summary": self.summary,
            "keywords": list(self.keywords),
            "updatedAt": self.updated_at,
        }


@dataclass(slots=True)
class LongTermMemoryState:
    personas: List[str] = field(default_factory=list)
    glossary: List[GlossaryItem] = field(default_factory=list)
    section_summaries: List[SectionSummary] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "personas": list(self.personas),
            "glossary": [item.to_dict() for item in self.glossary],
            "sectionSummaries": [item.to_dict() for item in self.section_summaries],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LongTermMemoryState":
        return _normalise_state(payload)

    def find_term(self, term: str) -> Optional[GlossaryItem]:
        lowered = term.lower()
        for item in self.glossary:
            if item.term.lower() == lowered:
                return item
        return None


# ----------------------------------------------------------------------
# Lexical helpers
# ----------------------------------------------------------------------
def _compact(text: str, limit: int) -> str:
    trimmed = (text or "").strip()
    if len(trimmed) <= limit:
        return trimmed
    return f"{trimmed[: limit - 1]}..."


def _non_empty_lines(text: str) -> List[str]:
    normalised = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    return [line.strip() for line in normalised.split("\n") if line.strip()]


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))


def extract_keywords(text: str, max_count: int = 12) -> List[str]:
    keywords: List[str] = []
    seen: set[str] = set()
    for match in KEYWORD_PATTERN.finditer(text or ""):
        keyword = match.group(0).strip().lower()
        if not keyword or keyword in STOP_WORDS or keyword in seen:
            continue
        seen.add(keyword)
        keywords.append(keyword)
        if len(keywords) >= max_count:
            break
    return keywords


def _normalise_term(raw: str) -> str:
    return TERM_EDGES.sub("", TERM_QUOTES.sub("", (raw or "").strip()))


def extract_candidate_terms(text: str) -> List[str]:
    """Glossary candidates: quoted phrases, capitalised tokens and bracketed titles."""

    terms: List[str] = []
    for match in QUOTED_TERM_PATTERN.finditer(text or ""):
        term = _normalise_term(match.group(1))
        if term:
            terms.append(term)
    for match in CAPITALISED_TERM_PATTERN.finditer(text or ""):
        term = _normalise_term(match.group(0))
        if len(term) >= 2:
            terms.append(term)
    for match in BRACKETED_TITLE_PATTERN.finditer(text or ""):
        term = _normalise_term(match.group(1))
        if term:
            terms.append(term)
    return _unique(terms)[:MAX_CANDIDATE_TERMS]


def _pick_section_summary(section: OutlineSection, content: str) -> str:
    lines = [line for line in _non_empty_lines(content) if not line.startswith("#")]
    if not lines:
        return _compact(section.description, SUMMARY_CHARS)
    return _compact(" ".join(lines[:2]), SUMMARY_CHARS)


def _upsert_glossary(glossary: List[GlossaryItem], term: str, note: str) -> None:
    normalised = _normalise_term(term)
    if not normalised:
        return
    lowered = normalised.lower()
    for item in glossary:
        if item.term.lower() == lowered:
            item.frequency += 1
            item.note = item.note or note
            return
    glossary.append(GlossaryItem(term=normalised, note=_compact(note, NEW_NOTE_CHARS), frequency=1))


def _coerce_frequency(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 1
    return max(1, int(value))


def _section_query_text(section: OutlineSection) -> str:
    return "\n".join([section.title, section.description, *section.key_points])


# ----------------------------------------------------------------------
# Normalisation
# ----------------------------------------------------------------------
def _as_state_mapping(value: LongTermMemoryState | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(value, LongTermMemoryState):
        return value.to_dict()
    return value


def _normalise_state(value: LongTermMemoryState | Mapping[str, Any]) -> LongTermMemoryState:
    payload = _as_state_mapping(value)

    raw_personas = payload.get("personas")
    personas = [
        item.strip()
        for item in (raw_personas if isinstance(raw_personas, list) else [])
        if isinstance(item, str) and item.strip()
    ]

    glossary: List[GlossaryItem] = []
    raw_glossary = payload.get("glossary")
    for record in raw_glossary if isinstance(raw_glossary, list) else []:
        if not isinstance(record, Mapping):
            continue
        term = _normalise_term(record.get("term")) if isinstance(record.get("term"), str) else ""
        if not term:
            continue
        note = record.get("note")
        frequency = record.get("frequency")
        glossary.append(
            GlossaryItem(
                term=term,
                note=_compact(note, STORED_NOTE_CHARS) if isinstance(note, str) else "",
                frequency=_coerce_frequency(frequency),
            )
        )

    summaries: List[SectionSummary] = []
    raw_summaries = payload.get("sectionSummaries")
    for record in raw_summaries if isinstance(raw_summaries, list) else []:
        if not isinstance(record, Mapping):
            continue
        section_id = record.get("sectionId").strip() if isinstance(record.get("sectionId"), str) else ""
        section_title = record.get("sectionTitle").strip() if isinstance(record.get("sectionTitle"), str) else ""
        if not section_id or not section_title:
            continue
        summary = record.get("summary")
        raw_keywords = record.get("keywords")
        keywords = _unique(
            keyword.strip().lower()
            for keyword in (raw_keywords if isinstance(raw_keywords, list) else [])
            if isinstance(keyword, str) and keyword.strip()
        )[:MAX_SUMMARY_KEYWORDS]
        updated_at = record.get("updatedAt")
        summaries.append(
            SectionSummary(
                section_id=section_id,
                section_title=section_title,
                summary=_compact(summary, STORED_SUMMARY_CHARS) if isinstance(summary, str) else "",
                keywords=keywords,
                updated_at=updated_at if isinstance(updated_at, str) and updated_at.strip() else utc_now_iso(),
            )
        )

    return LongTermMemoryState(
        personas=_unique(personas)[:MAX_PERSONAS],
        glossary=glossary,
        section_summaries=summaries,
    )


# ----------------------------------------------------------------------
# Lifecycle
# ----------------------------------------------------------------------
def create_long_term_memory(outline: ArticleOutline, user_requirement: str, document_context: str) -> LongTermMemoryState:
    personas = [
        f"目标读者：{outline.target_audience}",
        f"写作风格：{outline.style}",
    ]
    if outline.theme:
        personas.append(f"核心主题：{outline.theme}")

    glossary: List[GlossaryItem] = []
    for term in extract_candidate_terms(f"{user_requirement}\n{document_context}"):
        _upsert_glossary(glossary, term, SEED_NOTE)

    return LongTermMemoryState(personas=personas, glossary=glossary, section_summaries=[])


def merge_long_term_memory(target: LongTermMemoryState, incoming: LongTermMemoryState | Mapping[str, Any]) -> None:
    """Merge ``incoming`` into ``target`` in place.

    Glossary frequencies add up; for section summaries the newer ``updatedAt``
    wins (ties go to ``incoming``) and keyword sets are unioned either way.
    """

    normalised = _normalise_state(incoming)

    target.personas = _unique(
        [item.strip() for item in target.personas if item.strip()] + normalised.personas
    )[:MAX_PERSONAS]

    glossary: dict[str, GlossaryItem] = {}
    for item in target.glossary:
        glossary[item.term.lower()] = GlossaryItem(item.term, item.note, item.frequency)
    for item in normalised.glossary:
        key = item.term.lower()
        existing = glossary.get(key)
        if existing is None:
            glossary[key] = GlossaryItem(item.term, item.note, item.frequency)
            continue
        glossary[key] = GlossaryItem(
            term=existing.term,
            note=existing.note or item.note,
            frequency=max(1, existing.frequency + item.frequency),
        )
    target.glossary = sorted(glossary.values(), key=lambda item: item.frequency, reverse=True)[:MAX_GLOSSARY]

    summaries: dict[str, SectionSummary] = {}
    for item in target.section_summaries:
        summaries[item.section_id] = SectionSummary(
            item.section_id, item.section_title, item.summary, list(item.keywords), item.updated_at
        )
    for item in normalised.section_summaries:
        existing = summaries.get(item.section_id)
        if existing is None:
            summaries[item.section_id] = item
            continue
        keywords = _unique([*existing.keywords, *item.keywords])[:MAX_SUMMARY_KEYWORDS]
        winner = item if parse_iso_timestamp(item.updated_at) >= parse_iso_timestamp(existing.updated_at) else existing
        summaries[item.section_id] = SectionSummary(
            winner.section_id, winner.section_title, winner.summary, keywords, winner.updated_at
        )
    target.section_summaries = sorted(
        summaries.values(), key=lambda item: parse_iso_timestamp(item.updated_at), reverse=True
    )[:MAX_SUMMARIES]


def update_long_term_memory_with_section(
    memory: LongTermMemoryState,
    section: OutlineSection,
    section_content: str,
    *,
    updated_at: str | None = None,
) -> None:
    summary = _pick_section_summary(section, section_content)
    entry = SectionSummary(
        section_id=section.id,
        section_title=section.title,
        summary=summary,
        keywords=extract_keywords(f"{_section_query_text(section)}\n{summary}", 14),
        updated_at=updated_at or utc_now_iso(),
    )

    for index, existing in enumerate(memory.section_summaries):
        if existing.section_id == section.id:
            memory.section_summaries[index] = entry
            break
    else:
        memory.section_summaries.append(entry)

    candidates = extract_candidate_terms("\n".join([section.title, *section.key_points, section_content]))
    for term in candidates:
        _upsert_glossary(memory.glossary, term, f"来自章节：{section.title}")


# ----------------------------------------------------------------------
# Retrieval
# ----------------------------------------------------------------------
def _overlap(summary_keywords: List[str], section_keywords: List[str]) -> int:
    if not summary_keywords or not section_keywords:
        return 0
    available = set(summary_keywords)
    return sum(1 for keyword in section_keywords if keyword in available)


def build_memory_context_for_section(memory: LongTermMemoryState, section: OutlineSection) -> str:
    section_keywords = extract_keywords(_section_query_text(section), 16)

    ranked = sorted(
        memory.section_summaries,
        key=lambda item: (_overlap(item.keywords, section_keywords), parse_iso_timestamp(item.updated_at)),
        reverse=True,
    )[:3]

    glossary = [
        item
        for item in memory.glossary
        if any(keyword in item.term.lower() or item.term.lower() in keyword for keyword in section_keywords)
    ]
    glossary = sorted(glossary, key=lambda item: item.frequency, reverse=True)[:8]
    if not glossary:
        glossary = sorted(memory.glossary, key=lambda item: item.frequency, reverse=True)[:5]

    parts: List[str] = []
    if memory.personas:
        parts.append("### 角色/语气设定")
        parts.extend(f"- {persona}" for persona in memory.personas[:3])
    if glossary:
        parts.append("### 术语表")
        parts.extend(f"- {item.term}：{item.note}" for item in glossary)
    if ranked:
        parts.append("### 相关章节摘要")
        parts.extend(f"- {item.section_title}：{item.summary}" for item in ranked)
    return "\n".join(parts)


# ----------------------------------------------------------------------
# Markdown persistence
# ----------------------------------------------------------------------
def render_long_term_memory_markdown(memory: LongTermMemoryState, updated_at: str | None = None) -> str:
    stamp = updated_at or utc_now_iso()
    normalised = _normalise_state(memory)
    lines: List[str] = [
        "# XWrite Memory",
        "",
        "> 由 XWrite 自动维护。你可以查看该文件，但不建议手工修改 Snapshot 块。",
        "",
        "## Personas",
    ]
    if normalised.personas:
        lines.extend(f"- {persona}" for persona in normalised.personas)
    else:
        lines.append("- (empty)")

    lines.extend(["", "## Glossary"])
    if normalised.glossary:
        for item in normalised.glossary[:RENDER_LIMIT]:
            lines.append(f"- {item.term} | frequency: {item.frequency} | note: {item.note or '-'}")
    else:
        lines.append("- (empty)")

    lines.extend(["", "## Section Summaries"])
    if normalised.section_summaries:
        for item in normalised.section_summaries[:RENDER_LIMIT]:
            lines.append(f"### {item.section_title} [{item.section_id}]")
            lines.append(f"- summary: {item.summary or '-'}")
            lines.append(f"- keywords: {', '.join(item.keywords) or '-'}")
            lines.append(f"- updatedAt: {item.updated_at}")
            lines.append("")
        while lines and lines[-1] == "":
            lines.pop()
    else:
        lines.append("- (empty)")

    snapshot = {"updatedAt": stamp, "memory": normalised.to_dict()}
    # The snapshot body must never contain the closing fence.
    snapshot_json = json.dumps(snapshot, ensure_ascii=False, indent=2).replace("`", "\\u0060")
    lines.extend(
        [
            "",
            "## Updated",
            f"- {stamp}",
            "",
            "## Snapshot",
            f"```{SNAPSHOT_FENCE}",
            snapshot_json,
            "```",
            "",
        ]
    )
    return "\n".join(lines)


def parse_long_term_memory_markdown(markdown: str) -> Optional[LongTermMemoryState]:
    """Return the snapshot embedded in ``markdown`` or ``None`` when absent or corrupt."""

    match = SNAPSHOT_PATTERN.search(markdown or "")
    if match is None:
        return None
    try:
        parsed = json.loads(match.group(1))
    except ValueError:
        logger.warning("Long-term memory snapshot is not valid JSON; ignoring it")
        return None
    if not isinstance(parsed, dict):
        return None
    source = parsed.get("memory") if isinstance(parsed.get("memory"), dict) else parsed
    return _normalise_state(source)
