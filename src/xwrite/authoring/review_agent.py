from __future__ import annotations

import logging
from typing import Optional

from ..llm.client import GenerateOptions, ModelClient
from .context_builder import build_review_context
from .parsing import FeedbackParseError, parse_review_feedback
from .prompts import REVIEWER_SYSTEM_PROMPT
from .types import ArticleOutline, ReviewFeedback

logger = logging.getLogger(__name__)

__all__ = ["ReviewerAgent", "NEUTRAL_REVIEW_SCORE", "neutral_feedback"]

NEUTRAL_REVIEW_SCORE = 6


def neutral_feedback(round_number: int) -> ReviewFeedback:
    """Feedback used when a review response cannot be parsed: passable, nothing to revise."""

    return ReviewFeedback(round=round_number, overall_score=NEUTRAL_REVIEW_SCORE)


class ReviewerAgent:
    def __init__(self, client: ModelClient, options: GenerateOptions | None = None) -> None:
        self.client = client
        self.options = options

    async def review_document(
        self,
        outline: ArticleOutline,
        document_text: str,
        round_number: int,
        *,
        previous_feedback: Optional[ReviewFeedback] = None,
        focus_section_id: Optional[str] = None,
        reviewer_lens: Optional[str] = None,
        system_prompt: str = REVIEWER_SYSTEM_PROMPT,
        options: GenerateOptions | None = None,
    ) -> ReviewFeedback:
        prompt = build_review_context(
            outline,
            document_text,
            round_number,
            previous_feedback=previous_feedback,
            focus_section_id=focus_section_id,
            reviewer_lens=reviewer_lens,
        )
        result = await self.client.generate(prompt, system_prompt, options or self.options)
        try:
            return parse_review_feedback(result.text.strip(), round_number)
        except FeedbackParseError as exc:
            logger.warning("Review round %s returned unparseable feedback, using neutral score: %s", round_number, exc)
            return neutral_feedback(round_number)
