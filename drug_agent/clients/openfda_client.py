"""openFDA FAERS adverse-event registry client."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .http import RegistryHTTPClient

logger = logging.getLogger(__name__)

REACTION_COUNT_FIELD = "patient.reaction.reactionmeddrapt.exact"


def product_query(name: str) -> str:
    escaped = name.replace('"', '\\"')
    return f'patient.drug.medicinalproduct:"{escaped}"'


def serious_query(base: str) -> str:
    return f"{base} AND serious:1"


def death_query(base: str) -> str:
    return f"{base} AND seriousnessdeath:1"


def hospitalization_query(base: str) -> str:
    return f"{base} AND seriousnesshospitalization:1"


class OpenFDAClient(RegistryHTTPClient):
    """Adverse-event counts from ``/drug/event.json``.

    openFDA answers 404 when a search matches nothing, which is mapped to a
    zero count or an empty reaction list rather than an error.
    """

    registry_name = "openFDA"

    def __init__(self, base_url: str, api_key: Optional[str] = None, **kwargs):
        default_params = {"api_key": api_key} if api_key else None
        super().__init__(base_url, default_params=default_params, **kwargs)

    async def count_reports(self, query: str) -> int:
        data = await self._get_json("event.json", {"search": query, "limit": 1}, allow_not_found=True)
        if data is None:
            return 0
        total = ((data.get("meta") or {}).get("results") or {}).get("total")
        return int(total) if isinstance(total, (int, float)) and not isinstance(total, bool) else 0

    async def top_reactions(self, query: str, limit: int = 15) -> List[Dict[str, object]]:
        data = await self._get_json(
            "event.json",
            {"search": query, "count": REACTION_COUNT_FIELD, "limit": limit},
            allow_not_found=True,
        )
        if data is None:
            return []
        reactions: List[Dict[str, object]] = []
        for item in data.get("results") or []:
            if not isinstance(item, dict) or not item.get("term"):
                continue
            count = item.get("count")
            if not isinstance(count, int) or isinstance(count, bool):
                continue
            reactions.append({"term": str(item["term"]), "count": count})
        return reactions
