"""
Pipeline orchestrator for drug identity resolution and evidence aggregation.

Stages run strictly in sequence:

    translate -> reconcile -> resolve -> label -> adverse_events -> summary -> persist

Only a malformed request or a failed translation aborts the run. Every other
stage degrades in place: its failure is recorded and its evidence is omitted.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple

from .clients.audit_store import SupabaseAuditStore
from .clients.dailymed_client import DailyMedClient
from .clients.openai_client import OpenAIChatService
from .clients.openfda_client import OpenFDAClient
from .clients.rxnorm_client import RxNormClient
from .config import SUPPORTED_LANGUAGES, AgentConfig
from .disclaimers import abort_reason, get_disclaimer
from .errors import InvalidRequestError, TranslationFailedError
from .fanout import Deadline
from .models import (
    INPUT_SOURCES,
    SOURCE_DAILYMED,
    SOURCE_OPENFDA,
    SOURCE_RXNORM,
    AdverseEventEvidence,
    AnalysisResult,
    CandidateConcept,
    InputRequest,
    LabelEvidence,
    ResolutionMethod,
    ResolvedIdentity,
    SummaryEvidence,
)
from .pharmaceutical.adverse_events import AdverseEventAggregator
from .pharmaceutical.label_aggregator import LabelAggregator
from .pharmaceutical.reconciler import CandidateReconciler, candidate_union, search_candidates
from .pharmaceutical.resolver import IdentityResolver
from .pharmaceutical.summarizer import EvidenceBoundedSummarizer, has_evidence
from .pharmaceutical.translator import CandidateTranslator, TranslationOutcome, needs_translation
from .rate_limiting import RegistryRateLimiter
from .workflow import (
    STAGE_ADVERSE_EVENTS,
    STAGE_LABEL,
    STAGE_RECONCILE,
    STAGE_RESOLVE,
    STAGE_SUMMARY,
    STAGE_TRANSLATE,
    WorkflowRecorder,
)

logger = logging.getLogger(__name__)

LABEL_SUMMARY_SECTIONS = ("indications", "warnings", "contraindications")


def cite_sources(
    identity: ResolvedIdentity,
    label: Optional[LabelEvidence],
    adverse: Optional[AdverseEventEvidence],
) -> Tuple[str, ...]:
    """Registries whose data is present in the result, in pipeline order."""
    cited = []
    if identity.is_resolved:
        cited.append(SOURCE_RXNORM)
    if label is not None and label.has_sections:
        cited.append(SOURCE_DAILYMED)
    if adverse is not None and not adverse.is_empty:
        cited.append(SOURCE_OPENFDA)
    return tuple(cited)


def build_label_summary(label: Optional[LabelEvidence], limit: int) -> Optional[Dict[str, str]]:
    if label is None:
        return None
    preview = {key: label.sections[key][:limit] for key in LABEL_SUMMARY_SECTIONS if label.sections.get(key)}
    return preview or None


def _concept_preview(concept: CandidateConcept) -> Dict[str, object]:
    return {
        "name": concept.display_name,
        "registry_id": concept.registry_id,
        "term_type": concept.term_type,
        "score": concept.match_score,
    }


class DrugAnalysisPipeline:
    """Runs one analysis per call; no state is shared between calls."""

    def __init__(
        self,
        config: AgentConfig,
        generative_service,
        identity_registry,
        label_registry,
        adverse_registry,
        audit_store=None,
        rate_limiter: Optional[RegistryRateLimiter] = None,
    ):
        self.config = config
        self.identity_registry = identity_registry
        self.audit_store = audit_store
        self.rate_limiter = rate_limiter
        self.translator = CandidateTranslator(generative_service, model=config.translation_model)
        self.reconciler = CandidateReconciler(
            generative_service,
            model=config.reconcile_model,
            candidate_limit=config.reconcile_candidate_limit,
        )
        self.resolver = IdentityResolver(identity_registry, max_entries=config.approx_max_entries)
        self.label_aggregator = LabelAggregator(label_registry)
        self.adverse_aggregator = AdverseEventAggregator(adverse_registry, top_limit=config.top_reactions_limit)
        self.summarizer = EvidenceBoundedSummarizer(
            generative_service,
            model=config.summary_model,
            temperature=config.summary_temperature,
            max_tokens=config.summary_max_tokens,
            section_char_limit=config.summary_section_char_limit,
            reaction_limit=config.summary_reaction_limit,
        )

    @classmethod
    def from_config(cls, config: AgentConfig) -> "DrugAnalysisPipeline":
        """Wire the production clients. Raises ``ConfigurationError`` without an OpenAI key."""
        service = OpenAIChatService.from_config(config)
        limiter = RegistryRateLimiter.from_config(config) if config.enable_rate_limiting else None
        http_kwargs = {"timeout_seconds": config.http_timeout_seconds, "rate_limiter": limiter}
        return cls(
            config,
            generative_service=service,
            identity_registry=RxNormClient(config.rxnorm_base_url, **http_kwargs),
            label_registry=DailyMedClient(config.dailymed_base_url, **http_kwargs),
            adverse_registry=OpenFDAClient(config.openfda_base_url, api_key=config.openfda_api_key, **http_kwargs),
            audit_store=SupabaseAuditStore.from_config(config),
            rate_limiter=limiter,
        )

    # ------------------------------------------------------------------
    # Request validation
    # ------------------------------------------------------------------
    def accept_request(self, request: InputRequest) -> InputRequest:
        """Validate and normalise a request, or raise ``InvalidRequestError``."""
        if request.language not in SUPPORTED_LANGUAGES:
            raise InvalidRequestError(
                f"Unsupported language '{request.language}'; expected one of {', '.join(SUPPORTED_LANGUAGES)}",
                stage="request",
            )
        if request.input_source is not None and request.input_source not in INPUT_SOURCES:
            raise InvalidRequestError(
                f"Unsupported input source '{request.input_source}'; expected one of {', '.join(INPUT_SOURCES)}",
                stage="request",
            )
        raw_name = request.raw_name.strip() if isinstance(request.raw_name, str) else ""
        if not raw_name:
            raise InvalidRequestError(abort_reason("empty_name", request.language), stage="request")
        requester_id = (request.requester_id or "").strip() or None
        return replace(request, raw_name=raw_name, requester_id=requester_id)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    async def analyze(self, request: InputRequest) -> AnalysisResult:
        request = self.accept_request(request)
        recorder = WorkflowRecorder(request_label=request.raw_name)
        deadline = Deadline(self.config.request_deadline_seconds)
        started = time.perf_counter()

        translation = await self._translate(request, recorder, deadline)

        working_name = request.raw_name
        reconciled: Optional[CandidateConcept] = None
        if translation is None:
            recorder.skip(STAGE_RECONCILE, "No translation candidates to reconcile")
        else:
            working_name = translation.primary or working_name
            reconciled = await self._reconcile(request, translation, recorder, deadline)
            if reconciled is not None:
                working_name = reconciled.display_name

        identity, alternatives = await self._resolve(working_name, reconciled, recorder)
        label = await self._fetch_label(identity, working_name, recorder, deadline)
        adverse = await self._fetch_adverse_events(identity, working_name, recorder, deadline)
        summary = await self._summarize(request, working_name, identity, label, adverse, recorder, deadline)

        # Blocks for at most audit_timeout_seconds; the stored trail is the returned log minus the persist outcome
        await recorder.persist(
            self.audit_store,
            request,
            identity,
            normalized_name=identity.canonical_name or working_name,
            timeout_seconds=self.config.audit_timeout_seconds,
        )

        logger.info(
            "Analysis of %r finished in %.0fms (method=%s)",
            request.raw_name,
            (time.perf_counter() - started) * 1000,
            identity.resolution_method.value,
        )
        return AnalysisResult(
            request=request,
            identity=identity,
            translated_name=working_name,
            disclaimer=get_disclaimer(request.language),
            analyzed_at_utc=datetime.now(timezone.utc).isoformat(),
            alternatives=alternatives,
            label=label,
            adverse_events=adverse,
            summary=summary,
            label_summary=build_label_summary(label, self.config.label_preview_char_limit),
            sources_cited=cite_sources(identity, label, adverse),
            logs=recorder.entries,
            overview=recorder.overview,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    async def _translate(
        self, request: InputRequest, recorder: WorkflowRecorder, deadline: Deadline
    ) -> Optional[TranslationOutcome]:
        name = request.raw_name
        if not needs_translation(name):
            recorder.skip(STAGE_TRANSLATE, f'Latin-script input, using "{name}" as is')
            return None

        recorder.start(STAGE_TRANSLATE, f'Translating "{name}"')
        stage_started = time.perf_counter()
        try:
            outcome = await asyncio.wait_for(self.translator.translate(name), timeout=deadline.remaining())
        except asyncio.TimeoutError:
            outcome = TranslationOutcome(error="Translation timed out")
        logger.debug("translate took %.0fms", (time.perf_counter() - stage_started) * 1000)

        if not outcome.ok:
            recorder.error(STAGE_TRANSLATE, outcome.error or "Translation failed", outcome.meta or None)
            raise TranslationFailedError(
                abort_reason("translation_failed", request.language),
                stage=STAGE_TRANSLATE,
                logs=recorder.entries,
                overview=recorder.overview,
            )

        meta = {"candidates": list(outcome.candidates), "dosage_form": outcome.dosage_form}
        meta.update(outcome.meta)
        recorder.success(STAGE_TRANSLATE, f"Candidates: {' | '.join(outcome.candidates)}", meta)
        return outcome

    async def _reconcile(
        self,
        request: InputRequest,
        translation: TranslationOutcome,
        recorder: WorkflowRecorder,
        deadline: Deadline,
    ) -> Optional[CandidateConcept]:
        recorder.start(STAGE_RECONCILE, f"Searching the registry for {len(translation.candidates)} candidate(s)")
        searches = await search_candidates(
            self.identity_registry, translation.candidates, self.config.approx_max_entries
        )
        for search in searches:
            if search.error:
                recorder.info(STAGE_RECONCILE, f'Registry search failed for "{search.name}"', {"error": search.error})
            else:
                recorder.info(
                    STAGE_RECONCILE,
                    f'{len(search.concepts)} registry candidate(s) for "{search.name}"',
                    {"preview": [_concept_preview(concept) for concept in search.concepts[:3]]},
                )

        union = candidate_union(searches)
        if not union:
            recorder.skip(STAGE_RECONCILE, "No registry candidates; continuing with the first translation")
            return None

        outcome = await self.reconciler.reconcile(
            request.raw_name,
            translation.candidates,
            union,
            dosage_form=translation.dosage_form,
            timeout=deadline.bound(self.config.llm_timeout_seconds),
        )
        meta = {
            "registry_id": outcome.selected.registry_id,
            "name": outcome.selected.display_name,
            "offered": outcome.offered,
            "fallback": outcome.used_fallback,
        }
        meta.update(outcome.meta)
        if outcome.used_fallback:
            recorder.info(STAGE_RECONCILE, f"{outcome.reason}; using the first candidate", meta)
            recorder.success(STAGE_RECONCILE, f'Fallback candidate "{outcome.selected.display_name}"', meta)
        else:
            recorder.success(STAGE_RECONCILE, f'Reconciled to "{outcome.selected.display_name}"', meta)
        return outcome.selected

    async def _resolve(
        self,
        working_name: str,
        reconciled: Optional[CandidateConcept],
        recorder: WorkflowRecorder,
    ) -> Tuple[ResolvedIdentity, Tuple[CandidateConcept, ...]]:
        recorder.start(STAGE_RESOLVE, f'Resolving "{working_name}"')
        outcome = await self.resolver.resolve(working_name)

        if outcome.resolved:
            identity = outcome.identity
            recorder.success(
                STAGE_RESOLVE,
                f"{identity.resolution_method.value.capitalize()} match: {identity.canonical_name}",
                {
                    "registry_id": identity.registry_id,
                    "canonical_name": identity.canonical_name,
                    "method": identity.resolution_method.value,
                    "alternatives": [_concept_preview(concept) for concept in outcome.alternatives[:3]],
                },
            )
            return identity, outcome.alternatives

        if reconciled is not None:
            identity = ResolvedIdentity(
                registry_id=reconciled.registry_id,
                canonical_name=reconciled.display_name,
                resolution_method=ResolutionMethod.RECONCILED,
            )
            meta = {"registry_id": identity.registry_id, "canonical_name": identity.canonical_name}
            recorder.info(
                STAGE_RESOLVE,
                f"Resolver found no match ({outcome.error}); adopting the reconciled identity",
                meta,
            )
            recorder.success(STAGE_RESOLVE, f"Reconciled identity: {identity.canonical_name}", meta)
            return identity, ()

        recorder.error(STAGE_RESOLVE, outcome.error or "No registry match")
        return ResolvedIdentity(), ()

    async def _fetch_label(
        self,
        identity: ResolvedIdentity,
        working_name: str,
        recorder: WorkflowRecorder,
        deadline: Deadline,
    ) -> Optional[LabelEvidence]:
        if identity.registry_id:
            recorder.start(STAGE_LABEL, f"Searching labels by registry id {identity.registry_id}")
        else:
            recorder.start(STAGE_LABEL, f'Searching labels by name "{working_name}"')

        stage_started = time.perf_counter()
        outcome = await self.label_aggregator.aggregate(
            identity.registry_id,
            working_name,
            per_call_timeout=deadline.bound(self.config.http_timeout_seconds),
            deadline=deadline.bound(self.config.fanout_deadline_seconds),
        )
        logger.debug("label took %.0fms", (time.perf_counter() - stage_started) * 1000)

        if outcome.evidence is None:
            recorder.error(STAGE_LABEL, outcome.error or "No label document", {"query_mode": outcome.query_mode})
            return None

        evidence = outcome.evidence
        recorder.success(
            STAGE_LABEL,
            f"{len(evidence.sections)} of {len(self.label_aggregator.section_codes)} sections retrieved",
            {
                "document_id": evidence.document_id,
                "published_date": evidence.published_date,
                "documents_found": outcome.documents_found,
                "sections": list(evidence.sections),
                "missing": dict(outcome.missing_sections),
            },
        )
        # A document without sections contributes no evidence
        return evidence if evidence.has_sections else None

    async def _fetch_adverse_events(
        self,
        identity: ResolvedIdentity,
        working_name: str,
        recorder: WorkflowRecorder,
        deadline: Deadline,
    ) -> Optional[AdverseEventEvidence]:
        search_name = identity.canonical_name or working_name
        recorder.start(STAGE_ADVERSE_EVENTS, f'Querying adverse-event reports for "{search_name}"')

        stage_started = time.perf_counter()
        outcome = await self.adverse_aggregator.aggregate(
            search_name,
            per_call_timeout=deadline.bound(self.config.http_timeout_seconds),
            deadline=deadline.bound(self.config.fanout_deadline_seconds),
        )
        logger.debug("adverse_events took %.0fms", (time.perf_counter() - stage_started) * 1000)

        if outcome.evidence is None:
            recorder.error(STAGE_ADVERSE_EVENTS, outcome.error or "No adverse-event data", {
                "failed_queries": dict(outcome.failed_queries),
            })
            return None

        evidence = outcome.evidence
        recorder.success(
            STAGE_ADVERSE_EVENTS,
            f"{evidence.total_reports} reports, {evidence.serious_rate}% serious",
            {
                "total_reports": evidence.total_reports,
                "serious_rate": evidence.serious_rate,
                "top_reactions": [reaction.term for reaction in evidence.top_reactions[:3]],
                "failed_queries": dict(outcome.failed_queries),
            },
        )
        return evidence

    async def _summarize(
        self,
        request: InputRequest,
        working_name: str,
        identity: ResolvedIdentity,
        label: Optional[LabelEvidence],
        adverse: Optional[AdverseEventEvidence],
        recorder: WorkflowRecorder,
        deadline: Deadline,
    ) -> Optional[SummaryEvidence]:
        if not has_evidence(label, adverse):
            recorder.skip(STAGE_SUMMARY, "No evidence retrieved; summary skipped")
            return None

        inputs = []
        if label is not None:
            inputs.append(SOURCE_DAILYMED)
        if adverse is not None:
            inputs.append(SOURCE_OPENFDA)
        recorder.start(STAGE_SUMMARY, f"Summarising {' + '.join(inputs)}", {"inputs": inputs})
        stage_started = time.perf_counter()
        outcome = await self.summarizer.summarize(
            request.raw_name,
            identity.canonical_name or working_name,
            label,
            adverse,
            request.language,
            timeout=deadline.bound(self.config.llm_timeout_seconds),
        )
        logger.debug("summary took %.0fms", (time.perf_counter() - stage_started) * 1000)

        if outcome.summary is None:
            recorder.error(STAGE_SUMMARY, outcome.error or "Summary failed", outcome.meta or None)
            return None
        meta: Mapping[str, object] = dict(outcome.meta, overview_preview=outcome.summary.overview[:80])
        recorder.success(STAGE_SUMMARY, "Summary generated", meta)
        return outcome.summary
