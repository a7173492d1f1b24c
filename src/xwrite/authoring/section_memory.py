"""Recover the text a writing step contributed to the live document.

The writer edits the shared document through tool calls instead of returning
its output, so after each step the orchestrator compares document snapshots.
Heading-anchored extraction is tried first; a prefix/suffix diff of the two
snapshots is the fallback, and the whole document is the last resort.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, Sequence

__all__ = [
    "ResolvedSectionContent",
    "normalize_line_for_title_match",
    "is_likely_title_match",
    "extract_section_content_by_headings",
    "extract_inserted_delta",
    "resolve_section_content",
]

ResolveStrategy = Literal["heading", "delta", "document"]

MIN_HEADING_CONTENT_CHARS = 20
TITLE_MATCH_SLACK = 8

_HEADING_MARK = re.compile(r"^#{1,6}\s+")
_NUMBER_PREFIX = re.compile(r"^\(?\d+[).、:：\-\s]+")
_CHINESE_ORDINAL_PREFIX = re.compile(r"^第[0-9一二三四五六七八九十百零]+[章节部分篇]\s*")
_TITLE_PUNCTUATION = re.compile(r"[：:。．、,，;；!?！？\"“”'‘’]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class ResolvedSectionContent:
    content: str
    strategy: ResolveStrategy


def normalize_line_for_title_match(text: str) -> str:
    value = text.strip()
    value = _HEADING_MARK.sub("", value, count=1)
    value = _NUMBER_PREFIX.sub("", value, count=1)
    value = _CHINESE_ORDINAL_PREFIX.sub("", value, count=1)
    value = _TITLE_PUNCTUATION.sub("", value)
    value = _WHITESPACE.sub("", value)
    return value.lower()


def is_likely_title_match(line: str, section_title: str) -> bool:
    normalized_line = normalize_line_for_title_match(line)
    normalized_title = normalize_line_for_title_match(section_title)
    if not normalized_line or not normalized_title:
        return False
    if normalized_line == normalized_title:
        return True
    return normalized_title in normalized_line and len(normalized_line) <= len(normalized_title) + TITLE_MATCH_SLACK


def _split_lines(text: str) -> list[str]:
    if not text:
        return []
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def extract_section_content_by_headings(
    document_text: str,
    current_section_title: str,
    next_section_titles: Sequence[str],
) -> str:
    """Slice from the section's heading to just before the next section's heading.

    The last matching line wins, preferring lines written as Markdown headings
    so a table of contents earlier in the document is skipped.
    """

    lines = _split_lines(document_text)
    matches = [index for index, line in enumerate(lines) if is_likely_title_match(line, current_section_title)]
    if not matches:
        return ""

    heading_matches = [index for index in matches if lines[index].strip().startswith("#")]
    start = heading_matches[-1] if heading_matches else matches[-1]

    end = len(lines)
    if next_section_titles:
        for index in range(start + 1, len(lines)):
            if any(is_likely_title_match(lines[index], title) for title in next_section_titles):
                end = index
                break

    return "\n".join(lines[start:end]).strip()


def extract_inserted_delta(previous_text: str, current_text: str) -> str:
    previous = previous_text or ""
    current = current_text or ""

    if not current.strip():
        return ""
    if not previous.strip():
        return current.strip()
    if previous == current:
        return ""

    limit = min(len(previous), len(current))
    prefix = 0
    while prefix < limit and previous[prefix] == current[prefix]:
        prefix += 1

    previous_tail = len(previous) - 1
    current_tail = len(current) - 1
    while previous_tail >= prefix and current_tail >= prefix and previous[previous_tail] == current[current_tail]:
        previous_tail -= 1
        current_tail -= 1

    return current[prefix : current_tail + 1].strip()


def resolve_section_content(
    previous_document_text: str,
    current_document_text: str,
    current_section_title: str,
    next_section_titles: Sequence[str],
) -> ResolvedSectionContent:
    by_heading = extract_section_content_by_headings(
        current_document_text,
        current_section_title,
        next_section_titles,
    )
    by_delta = extract_inserted_delta(previous_document_text, current_document_text)

    if by_heading:
        heading_too_short = len(by_heading) < MIN_HEADING_CONTENT_CHARS
        delta_much_longer = len(by_delta) > len(by_heading) * 2
        if not (heading_too_short and delta_much_longer):
            return ResolvedSectionContent(content=by_heading, strategy="heading")

    if by_delta:
        return ResolvedSectionContent(content=by_delta, strategy="delta")

    return ResolvedSectionContent(content=(current_document_text or "").strip(), strategy="document")
