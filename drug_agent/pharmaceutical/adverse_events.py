"""Adverse-event aggregator: FAERS report counts and top reactions in one fan-out."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..clients.openfda_client import death_query, hospitalization_query, product_query, serious_query
from ..fanout import gather_collect
from ..models import AdverseEventEvidence, ReactionStat

logger = logging.getLogger(__name__)

COUNT_QUERIES = ("total", "serious", "death", "hospitalization")
REACTIONS_QUERY = "top_reactions"


def _round_half_up_ratio(numerator: int, denominator: int, scale: int) -> int:
    """round(numerator / denominator * scale) with halves rounded up, in integers."""
    return (2 * numerator * scale + denominator) // (2 * denominator)


def serious_rate(serious_count: int, total_reports: int) -> float:
    """Serious share of all reports as a percentage with one decimal place."""
    if total_reports <= 0:
        return 0.0
    return _round_half_up_ratio(serious_count, total_reports, 1000) / 10


def reaction_stats(reactions: Sequence[Mapping[str, object]]) -> Tuple[ReactionStat, ...]:
    """Attach each reaction's count relative to the largest count in the set."""
    counts = [int(item["count"]) for item in reactions]
    max_count = max(counts, default=0)
    stats: List[ReactionStat] = []
    for item, count in zip(reactions, counts):
        percentage = _round_half_up_ratio(count, max_count, 100) if max_count > 0 else 0
        stats.append(ReactionStat(term=str(item["term"]), count=count, percentage_of_max=percentage))
    return tuple(stats)


@dataclass(frozen=True)
class AdverseEventOutcome:
    evidence: Optional[AdverseEventEvidence] = None
    error: Optional[str] = None
    failed_queries: Dict[str, str] = field(default_factory=dict)


class AdverseEventAggregator:
    def __init__(self, registry, top_limit: int = 15):
        self.registry = registry
        self.top_limit = top_limit

    async def aggregate(
        self,
        name: str,
        per_call_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> AdverseEventOutcome:
        base = product_query(name)
        operations = {
            "total": lambda: self.registry.count_reports(base),
            "serious": lambda: self.registry.count_reports(serious_query(base)),
            "death": lambda: self.registry.count_reports(death_query(base)),
            "hospitalization": lambda: self.registry.count_reports(hospitalization_query(base)),
            REACTIONS_QUERY: lambda: self.registry.top_reactions(base, self.top_limit),
        }
        fanned = await gather_collect(operations, per_call_timeout=per_call_timeout, deadline=deadline)
        failed = fanned.describe_errors()

        if fanned.all_failed:
            return AdverseEventOutcome(error="Every adverse-event query failed", failed_queries=failed)

        counts = {key: int(fanned.values.get(key) or 0) for key in COUNT_QUERIES}
        reactions = reaction_stats(fanned.values.get(REACTIONS_QUERY) or [])

        if counts["total"] == 0 and not reactions:
            return AdverseEventOutcome(error=f'No adverse-event reports for "{name}"', failed_queries=failed)

        evidence = AdverseEventEvidence(
            total_reports=counts["total"],
            serious_count=counts["serious"],
            death_count=counts["death"],
            hospitalization_count=counts["hospitalization"],
            top_reactions=reactions,
            serious_rate=serious_rate(counts["serious"], counts["total"]),
        )
        if failed:
            logger.debug("Adverse-event queries failed for %r: %s", name, failed)
        return AdverseEventOutcome(evidence=evidence, failed_queries=failed)
