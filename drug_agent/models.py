"""Data model for drug identity resolution and evidence aggregation.

Every entity here is a frozen dataclass. Collections are stored as tuples so a
finished ``AnalysisResult`` cannot be mutated after it is returned.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

SOURCE_RXNORM = "RxNorm (NIH)"
SOURCE_DAILYMED = "DailyMed (NIH)"
SOURCE_OPENFDA = "OpenFDA FAERS"

# Label sections fetched for every document, keyed by LOINC section code.
LABEL_SECTION_CODES: Dict[str, str] = {
    "indications": "34067-9",
    "dosage": "34068-7",
    "contraindications": "34070-3",
    "warnings": "34071-1",
    "adverse_reactions": "34084-4",
    "drug_interactions": "34073-7",
}

INPUT_SOURCES = ("text", "ocr", "manual")


class ResolutionMethod(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    RECONCILED = "reconciled"
    UNRESOLVED = "unresolved"


class StageStatus(str, Enum):
    START = "start"
    SUCCESS = "success"
    ERROR = "error"
    SKIP = "skip"
    INFO = "info"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.SUCCESS, StageStatus.ERROR, StageStatus.SKIP)


@dataclass(frozen=True)
class InputRequest:
    raw_name: str
    language: str = "zh-CN"
    requester_id: Optional[str] = None
    input_source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw_name": self.raw_name,
            "language": self.language,
            "requester_id": self.requester_id,
            "input_source": self.input_source,
        }


@dataclass(frozen=True)
class CandidateConcept:
    """One registry search hit."""

    registry_id: str
    display_name: str
    term_type: str = "UNKNOWN"
    synonym: Optional[str] = None
    match_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registry_id": self.registry_id,
            "display_name": self.display_name,
            "term_type": self.term_type,
            "synonym": self.synonym,
            "match_score": self.match_score,
        }


@dataclass(frozen=True)
class ResolvedIdentity:
    registry_id: Optional[str] = None
    canonical_name: Optional[str] = None
    resolution_method: ResolutionMethod = ResolutionMethod.UNRESOLVED

    @property
    def is_resolved(self) -> bool:
        return self.registry_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "registry_id": self.registry_id,
            "canonical_name": self.canonical_name,
            "resolution_method": self.resolution_method.value,
        }


@dataclass(frozen=True)
class LabelDocument:
    document_id: str
    title: str = ""
    published_date: str = ""


@dataclass(frozen=True)
class LabelEvidence:
    """The most recent label document and whichever sections could be fetched."""

    document_id: str
    published_date: str
    title: str = ""
    sections: Mapping[str, str] = field(default_factory=dict)

    @property
    def has_sections(self) -> bool:
        return bool(self.sections)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "published_date": self.published_date,
            "title": self.title,
            "sections": dict(self.sections),
        }


@dataclass(frozen=True)
class ReactionStat:
    term: str
    count: int
    percentage_of_max: int

    def to_dict(self) -> Dict[str, Any]:
        return {"term": self.term, "count": self.count, "percentage_of_max": self.percentage_of_max}


@dataclass(frozen=True)
class AdverseEventEvidence:
    total_reports: int = 0
    serious_count: int = 0
    death_count: int = 0
    hospitalization_count: int = 0
    top_reactions: Tuple[ReactionStat, ...] = ()
    serious_rate: float = 0.0
    source: str = SOURCE_OPENFDA
    data_range: str = "2004-present"

    @property
    def is_empty(self) -> bool:
        return self.total_reports == 0 and not self.top_reactions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_reports": self.total_reports,
            "serious_count": self.serious_count,
            "death_count": self.death_count,
            "hospitalization_count": self.hospitalization_count,
            "serious_rate": self.serious_rate,
            "top_reactions": [reaction.to_dict() for reaction in self.top_reactions],
            "source": self.source,
            "data_range": self.data_range,
        }


@dataclass(frozen=True)
class SummaryEvidence:
    overview: str
    key_points: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    common_side_effects: Tuple[str, ...] = ()
    food_interactions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overview": self.overview,
            "key_points": list(self.key_points),
            "warnings": list(self.warnings),
            "common_side_effects": list(self.common_side_effects),
            "food_interactions": list(self.food_interactions),
        }


@dataclass(frozen=True)
class WorkflowLogEntry:
    stage: str
    status: StageStatus
    message: str
    timestamp_utc: str
    meta: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "stage": self.stage,
            "status": self.status.value,
            "message": self.message,
            "timestamp_utc": self.timestamp_utc,
        }
        if self.meta is not None:
            data["meta"] = dict(self.meta)
        return data


@dataclass(frozen=True)
class OverviewRow:
    """Latest status of one stage, derived from the log."""

    stage: str
    status: StageStatus
    message: str
    timestamp_utc: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "status": self.status.value,
            "message": self.message,
            "timestamp_utc": self.timestamp_utc,
        }


@dataclass(frozen=True)
class Disclaimer:
    language: str
    title: str
    lines: Tuple[str, ...]

    @property
    def text(self) -> str:
        return "\n".join((self.title,) + self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {"language": self.language, "title": self.title, "lines": list(self.lines)}


@dataclass(frozen=True)
class AnalysisResult:
    request: InputRequest
    identity: ResolvedIdentity
    translated_name: str
    disclaimer: Disclaimer
    analyzed_at_utc: str
    alternatives: Tuple[CandidateConcept, ...] = ()
    label: Optional[LabelEvidence] = None
    adverse_events: Optional[AdverseEventEvidence] = None
    summary: Optional[SummaryEvidence] = None
    label_summary: Optional[Mapping[str, str]] = None
    sources_cited: Tuple[str, ...] = ()
    logs: Tuple[WorkflowLogEntry, ...] = ()
    overview: Tuple[OverviewRow, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "request": self.request.to_dict(),
            "identity": self.identity.to_dict(),
            "translated_name": self.translated_name,
            "alternatives": [concept.to_dict() for concept in self.alternatives],
            "label": self.label.to_dict() if self.label else None,
            "label_summary": dict(self.label_summary) if self.label_summary else None,
            "adverse_events": self.adverse_events.to_dict() if self.adverse_events else None,
            "summary": self.summary.to_dict() if self.summary else None,
            "sources_cited": list(self.sources_cited),
            "disclaimer": self.disclaimer.to_dict(),
            "analyzed_at_utc": self.analyzed_at_utc,
            "logs": [entry.to_dict() for entry in self.logs],
            "overview": [row.to_dict() for row in self.overview],
        }
