"""Verifier agent: every key claim must cite an anchor inside the section."""

from __future__ import annotations

from typing import Sequence

from ..llm.client import GenerateOptions, ModelClient
from .context_builder import build_verifier_context
from .parsing import parse_verification_feedback
from .prompts import VERIFIER_SYSTEM_PROMPT
from .types import OutlineSection, VerificationFeedback

__all__ = ["VerifierAgent"]


class VerifierAgent:
    def __init__(self, client: ModelClient, options: GenerateOptions | None = None) -> None:
        self.client = client
        self.options = options

    async def verify_section_facts(
        self,
        section: OutlineSection,
        section_text: str,
        declaration_points: Sequence[str] = (),
    ) -> VerificationFeedback:
        """Raises :class:`VerificationParseError` when the response holds no usable JSON."""

        prompt = build_verifier_context(section, section_text, declaration_points)
        result = await self.client.generate(prompt, VERIFIER_SYSTEM_PROMPT, self.options)
        return parse_verification_feedback(result.text.strip())
