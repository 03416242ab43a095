import asyncio
import json

import pytest

from drug_agent.clients.openai_client import Completion
from drug_agent.config import AgentConfig
from drug_agent.errors import GenerativeServiceError
from drug_agent.models import CandidateConcept, LabelDocument, StageStatus
from drug_agent.pharmaceutical.reconciler import RECONCILE_SYSTEM_PROMPT
from drug_agent.pharmaceutical.translator import TRANSLATION_SYSTEM_PROMPT
from drug_agent.pipeline import DrugAnalysisPipeline


@pytest.fixture(autouse=True, scope="session")
def load_dotenv_if_available():
    """Load environment variables from .env so local runs can point at real credentials."""
    from dotenv import find_dotenv, load_dotenv

    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path)


# ----------------------------------------------------------------------
# Fakes for the external services
# ----------------------------------------------------------------------


class FakeGenerativeService:
    """Scripted generative service keyed by which stage is calling.

    A scripted response may be a dict (serialised to JSON), a raw string, or an
    exception instance to raise. ``delay`` sleeps before answering.
    """

    def __init__(self, translation=None, reconciliation=None, summary=None, delay=0.0):
        self.responses = {"translate": translation, "reconcile": reconciliation, "summary": summary}
        self.delay = delay
        self.calls = []

    @staticmethod
    def kind_of(system_prompt):
        if system_prompt == TRANSLATION_SYSTEM_PROMPT:
            return "translate"
        if system_prompt == RECONCILE_SYSTEM_PROMPT:
            return "reconcile"
        return "summary"

    async def complete(self, system_prompt, user_prompt, constraints):
        kind = self.kind_of(system_prompt)
        self.calls.append((kind, system_prompt, user_prompt, constraints))
        if self.delay:
            await asyncio.sleep(self.delay)
        response = self.responses[kind]
        if isinstance(response, Exception):
            raise response
        if response is None:
            raise GenerativeServiceError(f"no scripted {kind} response")
        if not isinstance(response, str):
            response = json.dumps(response, ensure_ascii=False)
        return Completion(text=response, model=constraints.model, prompt_tokens=12, completion_tokens=8)

    def prompts_for(self, kind):
        return [user for called, _system, user, _constraints in self.calls if called == kind]


class FakeIdentityRegistry:
    def __init__(self, exact=None, approx=None, properties=None, errors=None):
        self.exact = {key.lower(): value for key, value in (exact or {}).items()}
        self.approx = {key.lower(): list(value) for key, value in (approx or {}).items()}
        self.properties = properties or {}
        self.errors = errors or {}
        self.calls = []

    def _maybe_fail(self, method):
        if method in self.errors:
            raise self.errors[method]

    async def search_exact(self, name):
        self.calls.append(("exact", name))
        self._maybe_fail("exact")
        return self.exact.get(name.lower())

    async def search_approx(self, name, max_entries=10):
        self.calls.append(("approx", name))
        self._maybe_fail("approx")
        return list(self.approx.get(name.lower(), []))[:max_entries]

    async def get_properties(self, rxcui):
        self.calls.append(("properties", rxcui))
        self._maybe_fail("properties")
        name = self.properties.get(rxcui)
        return {"canonical_name": name} if name else None


class FakeLabelRegistry:
    def __init__(self, documents=None, sections=None, search_error=None, section_errors=None, section_delays=None):
        self.documents = list(documents or [])
        self.sections = sections or {}
        self.search_error = search_error
        self.section_errors = section_errors or {}
        self.section_delays = section_delays or {}
        self.searches = []
        self.section_calls = []

    async def search_documents(self, registry_id=None, name=None):
        self.searches.append({"registry_id": registry_id, "name": name})
        if self.search_error is not None:
            raise self.search_error
        return list(self.documents)

    async def get_section(self, document_id, section_code):
        self.section_calls.append((document_id, section_code))
        if section_code in self.section_delays:
            await asyncio.sleep(self.section_delays[section_code])
        if section_code in self.section_errors:
            raise self.section_errors[section_code]
        return self.sections.get(section_code)


class FakeAdverseRegistry:
    """Answers count queries by the suffix the aggregator appends."""

    def __init__(self, counts=None, reactions=None, errors=None):
        self.counts = counts or {}
        self.reactions = list(reactions or [])
        self.errors = errors or {}
        self.queries = []

    @staticmethod
    def kind_of(query):
        if query.endswith("AND serious:1"):
            return "serious"
        if query.endswith("AND seriousnessdeath:1"):
            return "death"
        if query.endswith("AND seriousnesshospitalization:1"):
            return "hospitalization"
        return "total"

    async def count_reports(self, query):
        self.queries.append(query)
        kind = self.kind_of(query)
        if kind in self.errors:
            raise self.errors[kind]
        return self.counts.get(kind, 0)

    async def top_reactions(self, query, limit=15):
        self.queries.append(query)
        if "top_reactions" in self.errors:
            raise self.errors["top_reactions"]
        return list(self.reactions)[:limit]


class FakeAuditStore:
    def __init__(self, fail_with=None, delay=0.0):
        self.fail_with = fail_with
        self.delay = delay
        self.requests = []
        self.logs = {}

    async def insert_request(self, record):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append(dict(record))
        return f"req-{len(self.requests)}"

    async def insert_logs(self, record_id, entries):
        self.logs[record_id] = list(entries)


# ----------------------------------------------------------------------
# Ibuprofen fixtures
# ----------------------------------------------------------------------

IBUPROFEN_RXCUI = "5640"

IBUPROFEN_SECTIONS = {
    "34067-9": "For the temporary relief of minor aches and pains and the reduction of fever.",
    "34068-7": "Adults: take 1 tablet every 4 to 6 hours while symptoms persist.",
    "34071-1": "NSAIDs may cause severe stomach bleeding.",
    "34084-4": "Nausea, heartburn and headache have been reported.",
}

IBUPROFEN_SUMMARY = {
    "overview": "布洛芬是一种非甾体抗炎药，用于缓解轻度疼痛和退烧。",
    "keyPoints": ["用于暂时缓解轻微疼痛", "可用于退烧"],
    "warnings": ["可能导致严重胃出血"],
    "commonSideEffects": ["恶心", "头痛"],
    "foodInteractions": [],
}


@pytest.fixture
def agent_config():
    return AgentConfig(
        openai_api_key="test-key",
        enable_rate_limiting=False,
        http_timeout_seconds=2.0,
        fanout_deadline_seconds=2.0,
        request_deadline_seconds=10.0,
        llm_timeout_seconds=2.0,
        audit_timeout_seconds=1.0,
    )


@pytest.fixture
def ibuprofen_concepts():
    return [
        CandidateConcept(IBUPROFEN_RXCUI, "ibuprofen", "IN", match_score=100.0),
        CandidateConcept("310965", "ibuprofen 200 MG Oral Tablet", "SCD", match_score=80.0),
    ]


@pytest.fixture
def identity_registry(ibuprofen_concepts):
    return FakeIdentityRegistry(
        exact={"ibuprofen": IBUPROFEN_RXCUI},
        approx={"ibuprofen": ibuprofen_concepts},
        properties={IBUPROFEN_RXCUI: "ibuprofen"},
    )


@pytest.fixture
def label_registry():
    return FakeLabelRegistry(
        documents=[
            LabelDocument("set-2020", "IBUPROFEN tablet", "Jan 05, 2020"),
            LabelDocument("set-2024", "IBUPROFEN tablet, film coated", "Mar 10, 2024"),
        ],
        sections=dict(IBUPROFEN_SECTIONS),
    )


@pytest.fixture
def adverse_registry():
    return FakeAdverseRegistry(
        counts={"total": 200, "serious": 30, "death": 2, "hospitalization": 12},
        reactions=[{"term": "NAUSEA", "count": 100}, {"term": "HEADACHE", "count": 50}],
    )


@pytest.fixture
def generative_service():
    return FakeGenerativeService(
        translation={"candidates": ["ibuprofen"], "dosageForm": None},
        reconciliation={"rxnormName": "ibuprofen", "rxcui": IBUPROFEN_RXCUI},
        summary=IBUPROFEN_SUMMARY,
    )


@pytest.fixture
def build_pipeline(agent_config, generative_service, identity_registry, label_registry, adverse_registry):
    """Factory so a test can swap any single collaborator."""

    def _build(**overrides):
        parts = {
            "config": agent_config,
            "generative_service": generative_service,
            "identity_registry": identity_registry,
            "label_registry": label_registry,
            "adverse_registry": adverse_registry,
            "audit_store": None,
        }
        parts.update(overrides)
        config = parts.pop("config")
        return DrugAnalysisPipeline(config, **parts)

    return _build


def stage_statuses(rows):
    return {row.stage: row.status.value for row in rows}


def terminal_entries(logs, stage):
    return [entry for entry in logs if entry.stage == stage and entry.status.is_terminal]


def assert_single_terminal_per_stage(logs):
    """Every stage that appears closes on exactly one terminal entry, and nothing follows it."""
    stages = []
    for entry in logs:
        if entry.stage not in stages:
            stages.append(entry.stage)
    for stage in stages:
        stage_entries = [entry for entry in logs if entry.stage == stage]
        assert len(terminal_entries(logs, stage)) == 1, stage
        assert stage_entries[-1].status in (StageStatus.SUCCESS, StageStatus.ERROR, StageStatus.SKIP), stage
