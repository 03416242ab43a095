"""RxNorm (RxNav REST) identity registry client."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..errors import RegistryError
from ..models import CandidateConcept
from .http import RegistryHTTPClient

logger = logging.getLogger(__name__)

# Ingredient and clinical-drug concepts rank before branded and pack types.
PREFERRED_TERM_TYPES = ("IN", "SCD", "SBD", "SCDC", "SBDC")


def term_type_rank(term_type: str) -> int:
    try:
        return PREFERRED_TERM_TYPES.index(term_type)
    except ValueError:
        return len(PREFERRED_TERM_TYPES)


def rank_by_term_type(concepts: List[CandidateConcept]) -> List[CandidateConcept]:
    """Stable sort by preferred term type; registry order is kept within a type."""
    return sorted(concepts, key=lambda concept: term_type_rank(concept.term_type))


def _coerce_score(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None


class RxNormClient(RegistryHTTPClient):
    registry_name = "RxNorm"

    async def search_exact(self, name: str) -> Optional[str]:
        """Return the RxCUI for an exact name match, or ``None``."""
        try:
            data = await self._get_json("rxcui.json", {"name": name})
        except RegistryError as exc:
            if exc.status_code is not None:
                logger.debug("RxNorm exact lookup for %r answered HTTP %s", name, exc.status_code)
                return None
            raise
        ids = ((data or {}).get("idGroup") or {}).get("rxnormId") or []
        return str(ids[0]) if ids else None

    async def search_approx(self, name: str, max_entries: int = 10) -> List[CandidateConcept]:
        data = await self._get_json("approximateTerm.json", {"term": name, "maxEntries": max_entries})
        raw_candidates = ((data or {}).get("approximateGroup") or {}).get("candidate") or []
        concepts: List[CandidateConcept] = []
        for raw in raw_candidates:
            if not isinstance(raw, dict):
                continue
            rxcui = raw.get("rxcui")
            display_name = raw.get("name")
            if not rxcui or not display_name:
                continue
            concepts.append(
                CandidateConcept(
                    registry_id=str(rxcui),
                    display_name=str(display_name),
                    term_type=raw.get("tty") or "UNKNOWN",
                    synonym=raw.get("synonym") or None,
                    match_score=_coerce_score(raw.get("score")),
                )
            )
        logger.debug("RxNorm approximate match for %r returned %d candidates", name, len(concepts))
        return concepts

    async def get_properties(self, rxcui: str) -> Optional[Dict[str, str]]:
        try:
            data = await self._get_json(f"rxcui/{rxcui}/properties.json")
        except RegistryError as exc:
            if exc.status_code is not None:
                return None
            raise
        properties = (data or {}).get("properties")
        if not isinstance(properties, dict) or not properties.get("name"):
            return None
        return {"canonical_name": str(properties["name"])}
