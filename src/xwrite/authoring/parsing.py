"""Recover structured JSON payloads from noisy model output.

Models routinely wrap JSON in prose or fenced blocks, or emit several objects
in one reply. Every fenced block and the raw text itself become candidates;
each candidate is parsed whole and also scanned for balanced top-level
``{...}`` spans (string and escape aware). Among the objects that parse, one
carrying a recognisable schema key wins over whatever happened to come first.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .types import (
    ArticleOutline,
    OutlineSection,
    ReviewFeedback,
    SectionFeedback,
    VerificationClaim,
    VerificationEvidence,
    VerificationFeedback,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ParseError",
    "OutlineParseError",
    "FeedbackParseError",
    "VerificationParseError",
    "OUTLINE_KEYS",
    "REVIEW_KEYS",
    "VERIFICATION_KEYS",
    "iter_balanced_objects",
    "extract_json_candidates",
    "extract_json_object",
    "parse_outline",
    "parse_review_feedback",
    "parse_verification_feedback",
]

FENCE_PATTERN = re.compile(r"```[\w-]*[ \t]*\n?(.*?)```", re.DOTALL)

OUTLINE_KEYS: tuple[str, ...] = ("sections",)
REVIEW_KEYS: tuple[str, ...] = ("sectionFeedback", "overallScore", "coherenceIssues", "globalSuggestions")
VERIFICATION_KEYS: tuple[str, ...] = ("claims", "evidence", "verdict")
DEFAULT_SCHEMA_KEYS: tuple[str, ...] = OUTLINE_KEYS + REVIEW_KEYS + VERIFICATION_KEYS

MISSING_ANCHOR_REASON = "缺少可定位的来源锚点"


class ParseError(ValueError):
    """Raised when no usable JSON object can be recovered."""


class OutlineParseError(ParseError):
    pass


class FeedbackParseError(ParseError):
    pass


class VerificationParseError(ParseError):
    pass


# ----------------------------------------------------------------------
# Candidate extraction
# ----------------------------------------------------------------------
def iter_balanced_objects(text: str) -> Iterator[str]:
    """Yield every balanced top-level ``{...}`` span in ``text``."""

    depth = 0
    start = -1
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            # Quotes only delimit strings inside an object; prose quotes are ignored.
            if depth > 0:
                in_string = True
            continue
        if char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                yield text[start : index + 1]
                start = -1


def _load_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_candidates(raw: str) -> List[Dict[str, Any]]:
    text = (raw or "").strip()
    if not text:
        return []

    sources = [match.group(1) for match in FENCE_PATTERN.finditer(text)]
    sources.append(text)

    candidates: List[Dict[str, Any]] = []
    for source in sources:
        whole = _load_object(source.strip())
        if whole is not None:
            candidates.append(whole)
        for span in iter_balanced_objects(source):
            parsed = _load_object(span)
            if parsed is not None:
                candidates.append(parsed)
    return candidates


def extract_json_object(raw: str, schema_keys: Sequence[str] = DEFAULT_SCHEMA_KEYS) -> Optional[Dict[str, Any]]:
    candidates = extract_json_candidates(raw)
    if not candidates:
        return None
    for candidate in candidates:
        if any(key in candidate for key in schema_keys):
            return candidate
    return candidates[0]


# ----------------------------------------------------------------------
# Coercion helpers
# ----------------------------------------------------------------------
def _as_str(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _as_number(value: Any, fallback: float) -> float:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def _as_str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _clamp_score(value: float) -> float:
    return min(10.0, max(1.0, value))


# ----------------------------------------------------------------------
# Outline
# ----------------------------------------------------------------------
def _parse_section(raw: Any, index: int) -> Optional[OutlineSection]:
    if not isinstance(raw, dict):
        return None
    return OutlineSection(
        id=_as_str(raw.get("id"), f"s{index + 1}"),
        title=_as_str(raw.get("title"), f"章节 {index + 1}"),
        level=max(1, int(_as_number(raw.get("level"), 1))),
        description=_as_str(raw.get("description"), ""),
        key_points=_as_str_list(raw.get("keyPoints")),
        estimated_paragraphs=max(1, int(_as_number(raw.get("estimatedParagraphs"), 3))),
    )


def _ensure_unique_ids(sections: List[OutlineSection]) -> List[OutlineSection]:
    seen: set[str] = set()
    unique: List[OutlineSection] = []
    for index, section in enumerate(sections):
        section_id = section.id
        if section_id in seen:
            section_id = f"{section.id}-{index + 1}"
            logger.warning("Duplicate outline section id '%s' renamed to '%s'", section.id, section_id)
            section = section.model_copy(update={"id": section_id})
        seen.add(section_id)
        unique.append(section)
    return unique


def parse_outline(raw: str) -> ArticleOutline:
    """Parse planner output into an :class:`ArticleOutline`.

    Raises :class:`OutlineParseError` when no object with a ``sections`` array
    can be recovered or when every section entry is invalid.
    """

    data = extract_json_object(raw, OUTLINE_KEYS)
    if data is None or not isinstance(data.get("sections"), list):
        raise OutlineParseError("无法从 Planner 响应中解析出有效的 JSON 大纲")

    sections = [
        section
        for section in (_parse_section(item, index) for index, item in enumerate(data["sections"]))
        if section is not None
    ]
    if not sections:
        raise OutlineParseError("大纲中没有有效的章节")
    sections = _ensure_unique_ids(sections)

    total = sum(section.estimated_paragraphs for section in sections)
    return ArticleOutline(
        title=_as_str(data.get("title"), "未命名文章"),
        theme=_as_str(data.get("theme"), ""),
        target_audience=_as_str(data.get("targetAudience"), "通用读者"),
        style=_as_str(data.get("style"), "专业"),
        sections=sections,
        total_estimated_paragraphs=int(_as_number(data.get("totalEstimatedParagraphs"), total)),
    )


# ----------------------------------------------------------------------
# Review feedback
# ----------------------------------------------------------------------
def _parse_section_feedback(raw: Any) -> Optional[SectionFeedback]:
    if not isinstance(raw, dict):
        return None
    section_id = _as_str(raw.get("sectionId"), "")
    if not section_id:
        return None
    return SectionFeedback(
        section_id=section_id,
        issues=_as_str_list(raw.get("issues")),
        suggestions=_as_str_list(raw.get("suggestions")),
        needs_revision=bool(raw.get("needsRevision")),
    )


def parse_review_feedback(raw: str, round_number: int) -> ReviewFeedback:
    data = extract_json_object(raw, REVIEW_KEYS)
    if data is None:
        raise FeedbackParseError("无法从 Reviewer 响应中解析出有效的 JSON 审阅反馈")

    raw_feedback = data.get("sectionFeedback")
    items = raw_feedback if isinstance(raw_feedback, list) else []
    section_feedback = [item for item in (_parse_section_feedback(entry) for entry in items) if item is not None]

    return ReviewFeedback(
        round=int(_as_number(data.get("round"), round_number)),
        overall_score=_clamp_score(_as_number(data.get("overallScore"), 5)),
        section_feedback=section_feedback,
        coherence_issues=_as_str_list(data.get("coherenceIssues")),
        global_suggestions=_as_str_list(data.get("globalSuggestions")),
    )


# ----------------------------------------------------------------------
# Verification feedback
# ----------------------------------------------------------------------
def _normalise_verdict(value: Any) -> str:
    if isinstance(value, bool):
        return "pass" if value else "fail"
    if isinstance(value, str) and value.strip().lower() in {"pass", "passed"}:
        return "pass"
    return "fail"


def _parse_claim(raw: Any) -> Optional[VerificationClaim]:
    if not isinstance(raw, dict):
        return None
    text = _as_str(raw.get("claim"), "")
    if not text:
        return None
    anchors = _as_str_list(raw.get("sourceAnchors"))
    verdict = _normalise_verdict(raw.get("verdict"))
    reason = _as_str(raw.get("reason"), "") or None
    if not anchors:
        verdict = "fail"
        reason = reason or MISSING_ANCHOR_REASON
    return VerificationClaim(
        claim=text,
        verdict=verdict,
        evidence_ids=_as_str_list(raw.get("evidenceIds")),
        source_anchors=anchors,
        reason=reason,
    )


def _parse_evidence(raw: Any) -> Optional[VerificationEvidence]:
    if not isinstance(raw, dict):
        return None
    evidence_id = _as_str(raw.get("id"), "")
    if not evidence_id:
        return None
    return VerificationEvidence(
        id=evidence_id,
        quote=_as_str(raw.get("quote"), ""),
        anchor=_as_str(raw.get("anchor"), ""),
    )


def parse_verification_feedback(raw: str) -> VerificationFeedback:
    """Parse verifier output, enforcing the anchor rules.

    A claim without source anchors is always ``fail``; the top-level verdict
    is ``pass`` only when there is at least one claim and every claim passed,
    whatever the model reported.
    """

    data = extract_json_object(raw, VERIFICATION_KEYS)
    if data is None:
        raise VerificationParseError("无法从 Verifier 响应中解析出有效的 JSON 核验结果")

    raw_claims = data.get("claims") if isinstance(data.get("claims"), list) else []
    claims = [claim for claim in (_parse_claim(item) for item in raw_claims) if claim is not None]
    raw_evidence = data.get("evidence") if isinstance(data.get("evidence"), list) else []
    evidence = [item for item in (_parse_evidence(entry) for entry in raw_evidence) if item is not None]

    verdict = "pass" if claims and all(claim.verdict == "pass" for claim in claims) else "fail"
    return VerificationFeedback(verdict=verdict, claims=claims, evidence=evidence)
