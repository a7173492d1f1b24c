from __future__ import annotations

from xwrite.authoring.long_term_memory import (
    GlossaryItem,
    LongTermMemoryState,
    SectionSummary,
    build_memory_context_for_section,
    create_long_term_memory,
    extract_candidate_terms,
    extract_keywords,
    merge_long_term_memory,
    parse_long_term_memory_markdown,
    render_long_term_memory_markdown,
    update_long_term_memory_with_section,
)


def test_extract_keywords_skips_stop_words_and_duplicates() -> None:
    keywords = extract_keywords("我们 讨论 Transformer 模型，Transformer 以及 注意力 机制")
    assert keywords == ["讨论", "transformer", "模型", "注意力", "机制"]


def test_candidate_terms_cover_quotes_capitals_and_titles() -> None:
    terms = extract_candidate_terms('写一篇关于"机器学习"的文章，参考《深度学习》与 OpenAI 的工作')
    assert terms == ["机器学习", "OpenAI", "深度学习"]


def test_create_seeds_personas_and_glossary(sample_outline) -> None:
    memory = create_long_term_memory(sample_outline, '介绍"图灵测试"的意义', "")
    assert memory.personas == ["目标读者：通用读者", "写作风格：专业", "核心主题：梳理人工智能的发展脉络"]
    assert [item.term for item in memory.glossary] == ["图灵测试"]
    assert memory.glossary[0].note == "来自用户需求或已有文档"
    assert memory.section_summaries == []


def test_update_replaces_existing_summary(sample_outline) -> None:
    memory = LongTermMemoryState()
    section = sample_outline.sections[0]
    update_long_term_memory_with_section(memory, section, "## 起源\n\n第一段内容。\n\n第二段内容。\n\n第三段。")
    update_long_term_memory_with_section(memory, section, "## 起源\n\n改写后的内容。")

    assert len(memory.section_summaries) == 1
    summary = memory.section_summaries[0]
    assert summary.section_id == "s1"
    assert summary.summary == "改写后的内容。"
    assert "起源" in summary.keywords


def test_merge_adds_frequencies_and_keeps_newer_summary() -> None:
    target = LongTermMemoryState(
        personas=["目标读者：学生"],
        glossary=[GlossaryItem(term="GPU", note="硬件", frequency=2)],
        section_summaries=[
            SectionSummary("s1", "起源", "旧摘要", ["起源"], "2024-01-01T00:00:00.000Z"),
        ],
    )
    incoming = {
        "personas": ["目标读者：学生", "写作风格：科普"],
        "glossary": [{"term": "gpu", "frequency": 3}, {"term": "TPU", "note": "加速器"}],
        "sectionSummaries": [
            {
                "sectionId": "s1",
                "sectionTitle": "起源",
                "summary": "新摘要",
                "keywords": ["图灵"],
                "updatedAt": "2024-02-01T00:00:00.000Z",
            }
        ],
    }

    merge_long_term_memory(target, incoming)

    assert target.personas == ["目标读者：学生", "写作风格：科普"]
    assert [(item.term, item.frequency, item.note) for item in target.glossary] == [
        ("GPU", 5, "硬件"),
        ("TPU", 1, "加速器"),
    ]
    merged = target.section_summaries[0]
    assert merged.summary == "新摘要"
    assert merged.keywords == ["起源", "图灵"]


def test_context_ranks_summaries_by_keyword_overlap(sample_outline) -> None:
    memory = create_long_term_memory(sample_outline, "", "")
    update_long_term_memory_with_section(
        memory, sample_outline.sections[0], "图灵测试提出了判断机器智能的方法。", updated_at="2024-01-01T00:00:00.000Z"
    )
    update_long_term_memory_with_section(
        memory, sample_outline.sections[2], "未来将走向通用智能。", updated_at="2024-01-02T00:00:00.000Z"
    )

    context = build_memory_context_for_section(memory, sample_outline.sections[2])
    assert context.startswith("### 角色/语气设定")
    summaries = context.split("### 相关章节摘要\n", 1)[1].splitlines()
    assert summaries[0].startswith("- 展望：")


def test_markdown_snapshot_survives_rendering(sample_outline) -> None:
    memory = create_long_term_memory(sample_outline, '"大模型"', "")
    update_long_term_memory_with_section(memory, sample_outline.sections[1], "专家系统时代之后是深度学习。")

    markdown = render_long_term_memory_markdown(memory, updated_at="2024-03-01T00:00:00.000Z")
    assert markdown.startswith("# XWrite Memory")
    assert "## Snapshot" in markdown

    restored = parse_long_term_memory_markdown(markdown)
    assert restored is not None
    assert restored.to_dict() == memory.to_dict()


def test_snapshot_survives_code_fences_in_section_content(sample_outline) -> None:
    memory = create_long_term_memory(sample_outline, "", "")
    content = "## 起源\n```python\nprint('LangChain')\n```\n"
    update_long_term_memory_with_section(memory, sample_outline.sections[0], content)
    assert "```" in memory.section_summaries[0].summary

    markdown = render_long_term_memory_markdown(memory, updated_at="2024-03-01T00:00:00.000Z")
    restored = parse_long_term_memory_markdown(markdown)

    assert restored is not None
    assert restored.to_dict() == memory.to_dict()


def test_parse_returns_none_for_missing_or_corrupt_snapshot() -> None:
    assert parse_long_term_memory_markdown("# XWrite Memory\n没有快照") is None
    assert parse_long_term_memory_markdown("```xwrite-memory\n{broken\n```") is None
