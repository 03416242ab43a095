"""Label aggregator: latest DailyMed label and its key sections, fetched in parallel."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import aiohttp

from ..clients.dailymed_client import select_latest
from ..errors import RegistryError
from ..fanout import gather_collect
from ..models import LABEL_SECTION_CODES, LabelEvidence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelOutcome:
    evidence: Optional[LabelEvidence] = None
    error: Optional[str] = None
    query_mode: str = "rxcui"
    documents_found: int = 0
    # Section key -> reason, for sections that were fetched but not kept
    missing_sections: Dict[str, str] = field(default_factory=dict)


class LabelAggregator:
    def __init__(self, registry, section_codes: Optional[Dict[str, str]] = None):
        self.registry = registry
        self.section_codes = dict(section_codes or LABEL_SECTION_CODES)

    async def aggregate(
        self,
        registry_id: Optional[str],
        name: str,
        per_call_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> LabelOutcome:
        query_mode = "rxcui" if registry_id else "name"
        try:
            if registry_id:
                search = self.registry.search_documents(registry_id=registry_id)
            else:
                search = self.registry.search_documents(name=name)
            documents = await asyncio.wait_for(search, timeout=per_call_timeout)
        except (RegistryError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            return LabelOutcome(error=f"Label search failed: {str(exc) or type(exc).__name__}", query_mode=query_mode)

        latest = select_latest(documents)
        if latest is None:
            target = registry_id or name
            return LabelOutcome(error=f'No label document found for "{target}"', query_mode=query_mode)

        def _fetch(code: str):
            return lambda: self.registry.get_section(latest.document_id, code)

        fanned = await gather_collect(
            {key: _fetch(code) for key, code in self.section_codes.items()},
            per_call_timeout=per_call_timeout,
            deadline=deadline,
        )

        sections: Dict[str, str] = {}
        missing: Dict[str, str] = {}
        for key in self.section_codes:
            if key in fanned.values:
                text = fanned.values[key]
                if text:
                    sections[key] = text
                else:
                    missing[key] = "absent"
            else:
                exc = fanned.errors[key]
                missing[key] = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        if missing:
            logger.debug("Label %s missing sections: %s", latest.document_id, missing)

        evidence = LabelEvidence(
            document_id=latest.document_id,
            published_date=latest.published_date,
            title=latest.title,
            sections=sections,
        )
        return LabelOutcome(
            evidence=evidence,
            query_mode=query_mode,
            documents_found=len(documents),
            missing_sections=missing,
        )
