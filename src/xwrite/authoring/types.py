"""Structured schema definitions shared by the authoring agents.

Planner, reviewer and verifier payloads travel as camelCase JSON (that is what
the prompts ask the models for), so the pydantic models carry camelCase
aliases while exposing snake_case attributes to Python callers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "FrozenBaseModel",
    "OutlineSection",
    "ArticleOutline",
    "SectionFeedback",
    "ReviewFeedback",
    "VerificationClaim",
    "VerificationEvidence",
    "VerificationFeedback",
    "SectionWriteResult",
    "Verdict",
]

Verdict = Literal["pass", "fail"]


class FrozenBaseModel(BaseModel):
    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


class OutlineSection(FrozenBaseModel):
    """A planned section of the target document."""

    id: str = Field(..., description="Stable section identifier, e.g. ``s1``.")
    title: str = Field(..., description="Heading text of the section.")
    level: int = Field(default=1, description="Heading nesting level (1 = top level).")
    description: str = Field(default="", description="What the section should cover.")
    key_points: List[str] = Field(default_factory=list, description="Ordered key points to address.")
    estimated_paragraphs: int = Field(default=3, description="Planner's paragraph estimate.")


class ArticleOutline(FrozenBaseModel):
    """Planner output; read-only once the run has been confirmed."""

    title: str = Field(..., description="Document title.")
    theme: str = Field(default="", description="Core theme or thesis.")
    target_audience: str = Field(default="通用读者", description="Intended readers.")
    style: str = Field(default="专业", description="Writing style description.")
    sections: List[OutlineSection] = Field(default_factory=list, description="Ordered sections.")
    total_estimated_paragraphs: int = Field(default=0, description="Sum of section estimates.")

    def find_section(self, section_id: str) -> Optional[OutlineSection]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def index_of(self, section_id: str) -> int:
        for index, section in enumerate(self.sections):
            if section.id == section_id:
                return index
        return -1

    def next_section_titles(self, index: int) -> List[str]:
        return [section.title for section in self.sections[index + 1 :]]


class SectionFeedback(FrozenBaseModel):
    """Review verdict for exactly one section."""

    section_id: str
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    needs_revision: bool = False


class ReviewFeedback(FrozenBaseModel):
    """One review pass, or the arbitrated result of two passes."""

    round: int = 1
    overall_score: float = Field(default=5, ge=1, le=10)
    section_feedback: List[SectionFeedback] = Field(default_factory=list)
    coherence_issues: List[str] = Field(default_factory=list)
    global_suggestions: List[str] = Field(default_factory=list)

    def feedback_for(self, section_id: str) -> Optional[SectionFeedback]:
        for item in self.section_feedback:
            if item.section_id == section_id:
                return item
        return None

    def sections_needing_revision(self) -> List[SectionFeedback]:
        return [item for item in self.section_feedback if item.needs_revision]


class VerificationClaim(FrozenBaseModel):
    claim: str
    verdict: Verdict = "fail"
    evidence_ids: List[str] = Field(default_factory=list)
    source_anchors: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class VerificationEvidence(FrozenBaseModel):
    id: str
    quote: str = ""
    anchor: str = ""


class VerificationFeedback(FrozenBaseModel):
    """Verifier output after anchor enforcement."""

    verdict: Verdict = "fail"
    claims: List[VerificationClaim] = Field(default_factory=list)
    evidence: List[VerificationEvidence] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.verdict == "pass"

    def failed_claims(self) -> List[VerificationClaim]:
        return [claim for claim in self.claims if claim.verdict != "pass"]


@dataclass(slots=True)
class SectionWriteResult:
    """Resolved text for one section; upserted as drafts are revised."""

    section_id: str
    section_title: str
    content: str
    source_anchors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "sectionId": self.section_id,
            "sectionTitle": self.section_title,
            "content": self.content,
            "sourceAnchors": list(self.source_anchors),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SectionWriteResult":
        return cls(
            section_id=str(payload.get("sectionId", "")),
            section_title=str(payload.get("sectionTitle", "")),
            content=str(payload.get("content", "")),
            source_anchors=[str(item) for item in payload.get("sourceAnchors") or []],
        )
