"""Evidence-bounded summarizer."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..clients.openai_client import GenerationConstraints
from ..disclaimers import summary_language_instruction
from ..errors import GenerativeServiceError
from ..models import AdverseEventEvidence, LabelEvidence, SummaryEvidence
from .schemas import ParseError, SummaryPayload, decode_payload

logger = logging.getLogger(__name__)

# Prompt order of label sections and their headings
SECTION_HEADINGS = (
    ("indications", "Indications"),
    ("dosage", "Dosage and administration"),
    ("warnings", "Warnings"),
    ("contraindications", "Contraindications"),
    ("adverse_reactions", "Adverse reactions"),
    ("drug_interactions", "Drug interactions"),
)

SUMMARY_SYSTEM_PROMPT = """You are a drug information summarisation assistant. Your only task is to \
summarise the source material supplied by the user.

Core rules:
1. Summarise ONLY the supplied sources. Never add medical facts, doses or advice that are not in them.
2. Do not diagnose and do not recommend treatment.
3. When the sources do not cover a field, say so explicitly (for example "Not mentioned in the sources") \
or return an empty list for that field.
4. Food and drink interactions must come from the sources; otherwise return an empty list.

{language_instruction}

Return a JSON object with exactly these fields:
- overview: a 1-2 sentence description of the drug
- keyPoints: 3-5 key points
- warnings: warnings taken from the sources
- commonSideEffects: common side effects taken from the sources or the report statistics
- foodInteractions: food or drink interactions (empty list if the sources do not mention any)"""


@dataclass(frozen=True)
class SummaryOutcome:
    summary: Optional[SummaryEvidence] = None
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


def has_evidence(label: Optional[LabelEvidence], adverse: Optional[AdverseEventEvidence]) -> bool:
    return bool(label and label.has_sections) or bool(adverse and not adverse.is_empty)


class EvidenceBoundedSummarizer:
    def __init__(
        self,
        service,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 1000,
        section_char_limit: int = 1000,
        reaction_limit: int = 10,
    ):
        self.service = service
        self.section_char_limit = section_char_limit
        self.reaction_limit = reaction_limit
        self.constraints = GenerationConstraints(
            model=model, temperature=temperature, max_tokens=max_tokens, json_mode=True
        )

    def build_system_prompt(self, language: str) -> str:
        return SUMMARY_SYSTEM_PROMPT.format(language_instruction=summary_language_instruction(language))

    def build_user_prompt(
        self,
        drug_name: str,
        canonical_name: Optional[str],
        label: Optional[LabelEvidence],
        adverse: Optional[AdverseEventEvidence],
    ) -> str:
        """Only evidence that is actually present reaches the prompt."""
        heading = f"## Drug name\n{drug_name}"
        if canonical_name and canonical_name != drug_name:
            heading += f" (standard name: {canonical_name})"
        parts: List[str] = [heading, "", "## Sources"]

        if label and label.has_sections:
            parts.append("")
            parts.append("### Source: DailyMed drug label")
            for key, title in SECTION_HEADINGS:
                text = label.sections.get(key)
                if text:
                    parts.append(f"\n**{title}:**\n{text[: self.section_char_limit]}")

        if adverse and not adverse.is_empty:
            parts.append("")
            parts.append("### Source: OpenFDA FAERS adverse-event statistics")
            parts.append(f"- Total reports: {adverse.total_reports}")
            parts.append(f"- Serious report rate: {adverse.serious_rate}%")
            reactions = adverse.top_reactions[: self.reaction_limit]
            if reactions:
                parts.append("- Most frequently reported reactions:")
                for rank, reaction in enumerate(reactions, start=1):
                    parts.append(f"  {rank}. {reaction.term} ({reaction.count} reports)")

        parts.append("")
        parts.append("Summarise the sources above. Do not add anything that is not in them.")
        return "\n".join(parts)

    async def summarize(
        self,
        drug_name: str,
        canonical_name: Optional[str],
        label: Optional[LabelEvidence],
        adverse: Optional[AdverseEventEvidence],
        language: str,
        timeout: Optional[float] = None,
    ) -> SummaryOutcome:
        if not has_evidence(label, adverse):
            raise ValueError("summarize called without evidence")

        system_prompt = self.build_system_prompt(language)
        user_prompt = self.build_user_prompt(drug_name, canonical_name, label, adverse)
        try:
            completion = await asyncio.wait_for(
                self.service.complete(system_prompt, user_prompt, self.constraints), timeout=timeout
            )
        except GenerativeServiceError as exc:
            return SummaryOutcome(error=f"Summary call failed: {exc}")
        except asyncio.TimeoutError:
            return SummaryOutcome(error="Summary call timed out")

        meta: Dict[str, Any] = {"model": completion.model}
        decoded = decode_payload(completion.text, SummaryPayload)
        if isinstance(decoded, ParseError):
            logger.debug("Rejected summary payload: %s", decoded.raw)
            return SummaryOutcome(error=f"Summary payload rejected ({decoded.reason})", meta=meta)

        payload = decoded.value
        summary = SummaryEvidence(
            overview=payload.overview,
            key_points=tuple(payload.key_points),
            warnings=tuple(payload.warnings),
            common_side_effects=tuple(payload.common_side_effects),
            food_interactions=tuple(payload.food_interactions),
        )
        return SummaryOutcome(summary=summary, meta=meta)
