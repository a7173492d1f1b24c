"""Planner agent: user requirement to structured outline."""

from __future__ import annotations

import logging

from ..llm.client import GenerateOptions, ModelClient
from .context_builder import build_planner_context
from .parsing import parse_outline
from .prompts import PLANNER_SYSTEM_PROMPT
from .types import ArticleOutline

logger = logging.getLogger(__name__)

__all__ = ["PlannerAgent"]


class PlannerAgent:
    """Single non-streaming call; an unparseable outline is fatal."""

    def __init__(self, client: ModelClient, options: GenerateOptions | None = None) -> None:
        self.client = client
        self.options = options

    async def generate_outline(self, requirement: str, document_text: str = "") -> ArticleOutline:
        prompt = build_planner_context(requirement, document_text)
        result = await self.client.generate(prompt, PLANNER_SYSTEM_PROMPT, self.options)
        outline = parse_outline(result.text.strip())
        logger.info("Planned outline '%s' with %s sections", outline.title, len(outline.sections))
        return outline
