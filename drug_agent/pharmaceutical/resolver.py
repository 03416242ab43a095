"""Identity resolver: exact then approximate RxNorm lookup."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import aiohttp

from ..clients.rxnorm_client import rank_by_term_type
from ..errors import RegistryError
from ..models import CandidateConcept, ResolutionMethod, ResolvedIdentity

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 4


@dataclass(frozen=True)
class ResolverOutcome:
    identity: ResolvedIdentity
    alternatives: Tuple[CandidateConcept, ...] = ()
    error: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.identity.is_resolved


class IdentityResolver:
    """
    Resolve one name against the identity registry.

    Exact match first; when that misses, the approximate matches are ranked by
    term type and the best one is taken. Registry failures never raise, they
    come back as an unresolved outcome carrying the error text.
    """

    def __init__(self, registry, max_entries: int = 10):
        self.registry = registry
        self.max_entries = max_entries

    async def resolve(self, name: str) -> ResolverOutcome:
        try:
            registry_id = await self.registry.search_exact(name)
            if registry_id:
                properties = await self.registry.get_properties(registry_id)
                canonical = (properties or {}).get("canonical_name") or name
                return ResolverOutcome(
                    identity=ResolvedIdentity(registry_id, canonical, ResolutionMethod.EXACT),
                )

            concepts = await self.registry.search_approx(name, self.max_entries)
        except (RegistryError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.info("Identity lookup for %r failed: %s", name, exc)
            return ResolverOutcome(identity=ResolvedIdentity(), error=str(exc) or type(exc).__name__)

        if not concepts:
            return ResolverOutcome(identity=ResolvedIdentity(), error=f'No registry match for "{name}"')

        ranked = rank_by_term_type(list(concepts))
        best = ranked[0]
        return ResolverOutcome(
            identity=ResolvedIdentity(best.registry_id, best.display_name, ResolutionMethod.FUZZY),
            alternatives=tuple(ranked[1 : 1 + MAX_ALTERNATIVES]),
        )
