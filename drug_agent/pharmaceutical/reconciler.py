"""Candidate reconciler: pick one registry concept for a translated name."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import aiohttp

from ..clients.openai_client import GenerationConstraints
from ..errors import GenerativeServiceError, RegistryError
from ..models import CandidateConcept
from .schemas import ParseError, ReconciliationPayload, decode_payload

logger = logging.getLogger(__name__)

RECONCILE_SYSTEM_PROMPT = """Select the best RxNorm candidate for the given drug name.
Reply JSON only: {"rxnormName": string|null, "rxcui": string|null}
Rules:
- Choose only from provided candidates. Never invent an rxcui.
- Prefer ingredients (TTY=IN) or clinical drugs (TTY=SCD/SBD) over brand or pack types.
- Respect dosage forms when present (cream/ointment/lotion/tablet).
- Reply {"rxnormName": null, "rxcui": null} when no candidate fits."""


@dataclass(frozen=True)
class CandidateSearch:
    """Approximate-match result for one translated candidate."""

    name: str
    concepts: Tuple[CandidateConcept, ...] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class ReconcileOutcome:
    selected: CandidateConcept
    offered: int
    used_fallback: bool = False
    reason: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


async def search_candidates(registry, names: Sequence[str], max_entries: int = 10) -> List[CandidateSearch]:
    """Approximate-match every translated name, one after another."""
    searches: List[CandidateSearch] = []
    for name in names:
        try:
            concepts = await registry.search_approx(name, max_entries)
        except (RegistryError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            searches.append(CandidateSearch(name=name, error=str(exc) or type(exc).__name__))
            continue
        searches.append(CandidateSearch(name=name, concepts=tuple(concepts)))
    return searches


def candidate_union(searches: Iterable[CandidateSearch]) -> List[CandidateConcept]:
    """De-duplicate by registry id (first wins), then sort by score, scoreless last."""
    seen: Dict[str, CandidateConcept] = {}
    for search in searches:
        for concept in search.concepts:
            seen.setdefault(concept.registry_id, concept)
    return sorted(
        seen.values(),
        key=lambda concept: (concept.match_score is None, -(concept.match_score or 0.0)),
    )


def format_candidate(concept: CandidateConcept) -> str:
    line = f"- {concept.display_name} (tty={concept.term_type}, rxcui={concept.registry_id}"
    if concept.match_score is not None:
        line += f", score={concept.match_score:g}"
    return line + ")"


def match_answer(payload: ReconciliationPayload, offered: Sequence[CandidateConcept]) -> Optional[CandidateConcept]:
    """Map the model's answer onto the offered set; anything else is inconclusive."""
    if payload.rxcui is not None:
        for concept in offered:
            if concept.registry_id == payload.rxcui:
                return concept
        return None
    if payload.rxnorm_name is not None:
        wanted = payload.rxnorm_name.casefold()
        for concept in offered:
            if concept.display_name.casefold() == wanted:
                return concept
    return None


class CandidateReconciler:
    def __init__(self, service, model: str = "gpt-4o-mini", max_tokens: int = 120, candidate_limit: int = 12):
        self.service = service
        self.candidate_limit = candidate_limit
        self.constraints = GenerationConstraints(model=model, temperature=0.0, max_tokens=max_tokens, json_mode=True)

    def build_user_prompt(
        self,
        raw_name: str,
        translations: Sequence[str],
        offered: Sequence[CandidateConcept],
        dosage_form: Optional[str] = None,
    ) -> str:
        lines = [
            f"Original name: {raw_name}",
            f"Translation candidates: {', '.join(translations)}",
        ]
        if dosage_form:
            lines.append(f"Dosage form hint: {dosage_form}")
        lines.append("RxNorm candidates:")
        lines.extend(format_candidate(concept) for concept in offered)
        return "\n".join(lines)

    async def reconcile(
        self,
        raw_name: str,
        translations: Sequence[str],
        union: Sequence[CandidateConcept],
        dosage_form: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ReconcileOutcome:
        """Ask the model to choose; fall back to the first offered candidate."""
        if not union:
            raise ValueError("reconcile needs at least one registry candidate")
        offered = list(union[: self.candidate_limit])
        fallback = offered[0]
        prompt = self.build_user_prompt(raw_name, translations, offered, dosage_form)

        try:
            completion = await asyncio.wait_for(
                self.service.complete(RECONCILE_SYSTEM_PROMPT, prompt, self.constraints), timeout=timeout
            )
        except GenerativeServiceError as exc:
            return ReconcileOutcome(fallback, len(offered), True, f"Reconciliation call failed: {exc}")
        except asyncio.TimeoutError:
            return ReconcileOutcome(fallback, len(offered), True, "Reconciliation call timed out")

        meta = {"model": completion.model}
        decoded = decode_payload(completion.text, ReconciliationPayload)
        if isinstance(decoded, ParseError):
            return ReconcileOutcome(
                fallback, len(offered), True, f"Unparseable reconciliation ({decoded.reason})", meta
            )
        if decoded.value.is_empty:
            return ReconcileOutcome(fallback, len(offered), True, "Model named no candidate", meta)

        chosen = match_answer(decoded.value, offered)
        if chosen is None:
            logger.info(
                "Reconciler answer %r / %r is outside the offered set", decoded.value.rxnorm_name, decoded.value.rxcui
            )
            return ReconcileOutcome(fallback, len(offered), True, "Model answer not among the offered candidates", meta)
        return ReconcileOutcome(chosen, len(offered), False, None, meta)
