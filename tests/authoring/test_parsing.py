from __future__ import annotations

import pytest

from xwrite.authoring.parsing import (
    FeedbackParseError,
    OutlineParseError,
    ParseError,
    VerificationParseError,
    extract_json_object,
    iter_balanced_objects,
    parse_outline,
    parse_review_feedback,
    parse_verification_feedback,
)


def test_balanced_scan_ignores_braces_inside_strings() -> None:
    text = 'prefix {"a": "x}y", "b": {"c": 1}} middle {"d": 2} suffix'
    spans = list(iter_balanced_objects(text))
    assert spans == ['{"a": "x}y", "b": {"c": 1}}', '{"d": 2}']


def test_extract_prefers_object_with_schema_key() -> None:
    raw = 'Here is some context {"note": "ignore me"} and the result {"sections": []}'
    assert extract_json_object(raw, ("sections",)) == {"sections": []}


def test_extract_returns_first_candidate_without_schema_match() -> None:
    assert extract_json_object('{"x": 1} {"y": 2}', ("sections",)) == {"x": 1}


def test_parse_outline_from_fenced_block() -> None:
    raw = """好的，这是大纲：
```json
{"title": "测试", "sections": [
  {"id": "s1", "title": "引言", "keyPoints": ["背景"], "estimatedParagraphs": 2},
  {"title": "正文"}
]}
```
"""
    outline = parse_outline(raw)
    assert outline.title == "测试"
    assert [section.id for section in outline.sections] == ["s1", "s2"]
    assert outline.sections[0].key_points == ["背景"]
    assert outline.sections[1].estimated_paragraphs == 3
    assert outline.total_estimated_paragraphs == 5
    assert outline.target_audience == "通用读者"


def test_parse_outline_renames_duplicate_ids() -> None:
    outline = parse_outline('{"title": "T", "sections": [{"id": "a", "title": "1"}, {"id": "a", "title": "2"}]}')
    assert [section.id for section in outline.sections] == ["a", "a-2"]


@pytest.mark.parametrize("raw", ["", "没有 JSON", '{"title": "x"}', '{"sections": ["bad"]}'])
def test_parse_outline_rejects_unusable_payloads(raw: str) -> None:
    with pytest.raises(OutlineParseError):
        parse_outline(raw)


def test_parse_review_feedback_clamps_and_defaults() -> None:
    raw = '{"overallScore": 14, "sectionFeedback": [{"sectionId": "s1", "needsRevision": true, "issues": ["太短"]}, {"issues": []}]}'
    feedback = parse_review_feedback(raw, 3)
    assert feedback.round == 3
    assert feedback.overall_score == 10
    assert len(feedback.section_feedback) == 1
    assert feedback.section_feedback[0].needs_revision is True
    assert feedback.sections_needing_revision()[0].issues == ["太短"]


def test_parse_review_feedback_raises_without_json() -> None:
    with pytest.raises(FeedbackParseError):
        parse_review_feedback("score: 8", 1)


def test_verification_claim_without_anchor_fails() -> None:
    raw = """{"verdict": "pass", "claims": [
        {"claim": "A", "verdict": "pass", "sourceAnchors": ["p1"]},
        {"claim": "B", "verdict": "pass", "sourceAnchors": []}
    ], "evidence": [{"id": "e1", "quote": "q", "anchor": "p1"}]}"""
    feedback = parse_verification_feedback(raw)
    assert feedback.verdict == "fail"
    assert [claim.claim for claim in feedback.failed_claims()] == ["B"]
    assert feedback.failed_claims()[0].reason == "缺少可定位的来源锚点"
    assert feedback.evidence[0].anchor == "p1"


def test_verification_without_claims_is_failure() -> None:
    assert parse_verification_feedback('{"verdict": "pass", "claims": []}').passed is False


def test_parse_errors_share_value_error_base() -> None:
    with pytest.raises(ParseError):
        parse_verification_feedback("not json")
    assert issubclass(VerificationParseError, ValueError)
