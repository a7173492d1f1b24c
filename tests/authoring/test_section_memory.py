from __future__ import annotations

from xwrite.authoring.section_memory import (
    extract_inserted_delta,
    extract_section_content_by_headings,
    is_likely_title_match,
    normalize_line_for_title_match,
    resolve_section_content,
)


def test_normalize_strips_heading_marks_and_numbering() -> None:
    assert normalize_line_for_title_match("## 1. 研究背景：") == "研究背景"
    assert normalize_line_for_title_match("第二章 方法") == "方法"


def test_title_match_allows_small_suffix_only() -> None:
    assert is_likely_title_match("## 研究背景", "研究背景")
    assert is_likely_title_match("研究背景与意义", "研究背景")
    assert not is_likely_title_match("研究背景在这里被非常详细地展开讨论了很多内容", "研究背景")


def test_heading_extraction_prefers_markdown_heading_over_toc() -> None:
    document = "\n".join(
        [
            "目录",
            "研究背景",
            "研究方法",
            "",
            "## 研究背景",
            "背景正文第一段。",
            "## 研究方法",
            "方法正文。",
        ]
    )
    extracted = extract_section_content_by_headings(document, "研究背景", ["研究方法"])
    assert extracted == "## 研究背景\n背景正文第一段。"


def test_delta_extracts_inserted_middle_text() -> None:
    assert extract_inserted_delta("A\nC", "A\nB\nC") == "B"
    assert extract_inserted_delta("same", "same") == ""
    assert extract_inserted_delta("", "  new text ") == "new text"


def test_resolve_prefers_heading_slice() -> None:
    before = "# 文章\n"
    after = "# 文章\n## 起源\n人工智能起源于二十世纪中叶的一系列探索与实验。\n"
    resolved = resolve_section_content(before, after, "起源", ["发展"])
    assert resolved.strategy == "heading"
    assert resolved.content.startswith("## 起源")


def test_resolve_falls_back_to_delta_when_heading_is_stub() -> None:
    long_body = "这是一段很长的补充内容，" * 5
    before = "前文\n## 发展\n旧内容\n"
    after = f"前文\n## 起源\n## 发展\n{long_body}\n旧内容\n"
    resolved = resolve_section_content(before, after, "起源", ["发展"])
    assert resolved.strategy == "delta"
    assert long_body in resolved.content


def test_resolve_uses_document_when_nothing_changed() -> None:
    resolved = resolve_section_content("全文内容", "全文内容", "不存在的标题", [])
    assert resolved.strategy == "document"
    assert resolved.content == "全文内容"


def test_resolver_keeps_heading_when_delta_is_not_much_longer() -> None:
    resolved = resolve_section_content(
        "## 背景\n原始背景",
        "## 背景\n扩展背景\n## 方法\n方法内容",
        "背景",
        ["方法"],
    )
    assert resolved.strategy == "heading"
    assert resolved.content == "## 背景\n扩展背景"
