"""Dual-reviewer consensus with an arbiter pass and a deterministic fallback."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from ..llm.client import GenerateOptions, ModelClient, with_temperature
from .context_builder import build_arbiter_context
from .parsing import parse_review_feedback
from .prompts import ARBITER_SYSTEM_PROMPT, BALANCED_REVIEW_LENS, CRITIC_SYSTEM_PROMPT, STRICT_REVIEW_LENS
from .review_agent import ReviewerAgent
from .types import ArticleOutline, ReviewFeedback, SectionFeedback

logger = logging.getLogger(__name__)

__all__ = [
    "ConsensusReviewResult",
    "ConsensusReviewer",
    "calculate_conflict_count",
    "fallback_merge_feedback",
    "DEFAULT_CRITIC_TEMPERATURE",
    "DEFAULT_ARBITER_TEMPERATURE",
]

DEFAULT_CRITIC_TEMPERATURE = 0.3
DEFAULT_ARBITER_TEMPERATURE = 0.0


@dataclass(slots=True)
class ConsensusReviewResult:
    primary: ReviewFeedback
    critic: ReviewFeedback
    final: ReviewFeedback
    conflict_count: int
    agreement_rate: float
    arbitrated: bool = True

    def to_dict(self) -> dict[str, object]:
        return {
            "primaryFeedback": self.primary.to_dict(),
            "criticFeedback": self.critic.to_dict(),
            "finalFeedback": self.final.to_dict(),
            "conflictCount": self.conflict_count,
            "agreementRate": self.agreement_rate,
            "arbitrated": self.arbitrated,
        }


def _unique_strings(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    output: List[str] = []
    for item in values:
        value = item.strip()
        key = value.casefold()
        if not value or key in seen:
            continue
        seen.add(key)
        output.append(value)
    return output


def _merge_section(
    section_id: str,
    primary: Optional[SectionFeedback],
    critic: Optional[SectionFeedback],
) -> SectionFeedback:
    return SectionFeedback(
        section_id=section_id,
        issues=_unique_strings([*(primary.issues if primary else []), *(critic.issues if critic else [])]),
        suggestions=_unique_strings(
            [*(primary.suggestions if primary else []), *(critic.suggestions if critic else [])]
        ),
        needs_revision=bool((primary and primary.needs_revision) or (critic and critic.needs_revision)),
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def fallback_merge_feedback(
    outline: ArticleOutline,
    round_number: int,
    primary: ReviewFeedback,
    critic: ReviewFeedback,
) -> ReviewFeedback:
    """Union both opinions per outline section; ``needs_revision`` is OR-ed."""

    section_feedback = [
        _merge_section(section.id, primary.feedback_for(section.id), critic.feedback_for(section.id))
        for section in outline.sections
    ]
    score = _round_half_up((primary.overall_score + critic.overall_score) / 2)
    return ReviewFeedback(
        round=round_number,
        overall_score=float(min(10, max(1, score))),
        section_feedback=section_feedback,
        coherence_issues=_unique_strings([*primary.coherence_issues, *critic.coherence_issues]),
        global_suggestions=_unique_strings([*primary.global_suggestions, *critic.global_suggestions]),
    )


def calculate_conflict_count(outline: ArticleOutline, primary: ReviewFeedback, critic: ReviewFeedback) -> int:
    conflicts = 0
    for section in outline.sections:
        a = primary.feedback_for(section.id)
        b = critic.feedback_for(section.id)
        if bool(a and a.needs_revision) != bool(b and b.needs_revision):
            conflicts += 1
    return conflicts


class ConsensusReviewer:
    """Run reviewer A, the stricter critic, then the arbiter over both.

    The arbiter never fails the round: when its call or its JSON breaks, the
    two opinions are merged deterministically instead.
    """

    def __init__(
        self,
        client: ModelClient,
        *,
        reviewer_options: GenerateOptions | None = None,
        critic_options: GenerateOptions | None = None,
        arbiter_options: GenerateOptions | None = None,
    ) -> None:
        self.client = client
        self.reviewer = ReviewerAgent(client, reviewer_options)
        self.reviewer_options = reviewer_options
        self.critic_options = with_temperature(critic_options or reviewer_options, DEFAULT_CRITIC_TEMPERATURE)
        self.arbiter_options = with_temperature(arbiter_options or reviewer_options, DEFAULT_ARBITER_TEMPERATURE)

    async def run(
        self,
        outline: ArticleOutline,
        document_text: str,
        round_number: int,
        *,
        previous_feedback: Optional[ReviewFeedback] = None,
        focus_section_id: Optional[str] = None,
    ) -> ConsensusReviewResult:
        primary = await self.reviewer.review_document(
            outline,
            document_text,
            round_number,
            previous_feedback=previous_feedback,
            focus_section_id=focus_section_id,
            reviewer_lens=BALANCED_REVIEW_LENS,
        )
        critic = await self.reviewer.review_document(
            outline,
            document_text,
            round_number,
            previous_feedback=previous_feedback,
            focus_section_id=focus_section_id,
            reviewer_lens=STRICT_REVIEW_LENS,
            system_prompt=CRITIC_SYSTEM_PROMPT,
            options=self.critic_options,
        )

        conflict_count = calculate_conflict_count(outline, primary, critic)
        agreement_rate = 1 - conflict_count / max(1, len(outline.sections))

        arbiter_prompt = build_arbiter_context(
            outline,
            document_text,
            round_number,
            primary,
            critic,
            focus_section_id=focus_section_id,
        )
        arbitrated = True
        try:
            result = await self.client.generate(arbiter_prompt, ARBITER_SYSTEM_PROMPT, self.arbiter_options)
            final = parse_review_feedback(result.text.strip(), round_number)
        except (RuntimeError, ValueError) as exc:
            logger.warning("Arbiter failed for review round %s, merging deterministically: %s", round_number, exc)
            final = fallback_merge_feedback(outline, round_number, primary, critic)
            arbitrated = False

        return ConsensusReviewResult(
            primary=primary,
            critic=critic,
            final=final,
            conflict_count=conflict_count,
            agreement_rate=agreement_rate,
            arbitrated=arbitrated,
        )
