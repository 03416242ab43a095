import pytest

from drug_agent.errors import GenerativeServiceError, RegistryError
from drug_agent.models import CandidateConcept
from drug_agent.pharmaceutical.reconciler import (
    CandidateReconciler,
    CandidateSearch,
    candidate_union,
    format_candidate,
    match_answer,
    search_candidates,
)
from drug_agent.pharmaceutical.schemas import ReconciliationPayload

from conftest import FakeGenerativeService, FakeIdentityRegistry

DESONIDE_CREAM = CandidateConcept("1234", "desonide 0.5 MG/ML Topical Cream", "SCD", match_score=9.5)
DESONIDE = CandidateConcept("3247", "desonide", "IN", match_score=8.0)
DINOPROSTONE = CandidateConcept("3325", "dinoprostone", "IN", match_score=None)


class TestCandidateUnion:
    def test_deduplicates_by_registry_id_first_wins(self):
        duplicate = CandidateConcept("3247", "Desonide (dup)", "IN", match_score=99.0)
        union = candidate_union(
            [
                CandidateSearch("desonide", (DESONIDE, DESONIDE_CREAM)),
                CandidateSearch("desonide cream", (duplicate,)),
            ]
        )

        assert [concept.display_name for concept in union] == [DESONIDE_CREAM.display_name, "desonide"]

    def test_scoreless_candidates_sort_last(self):
        union = candidate_union([CandidateSearch("a", (DINOPROSTONE, DESONIDE, DESONIDE_CREAM))])
        assert [concept.registry_id for concept in union] == ["1234", "3247", "3325"]

    def test_failed_searches_contribute_nothing(self):
        assert candidate_union([CandidateSearch("x", error="RxNorm: HTTP 500")]) == []


def test_format_candidate():
    assert format_candidate(DESONIDE) == "- desonide (tty=IN, rxcui=3247, score=8)"
    assert format_candidate(DINOPROSTONE) == "- dinoprostone (tty=IN, rxcui=3325)"


class TestMatchAnswer:
    offered = [DESONIDE_CREAM, DESONIDE]

    def test_by_registry_id(self):
        assert match_answer(ReconciliationPayload(rxcui="3247"), self.offered) == DESONIDE

    def test_by_name_case_insensitive(self):
        payload = ReconciliationPayload(rxnormName="DESONIDE")
        assert match_answer(payload, self.offered) == DESONIDE

    def test_unknown_registry_id_is_not_rescued_by_name(self):
        payload = ReconciliationPayload(rxnormName="desonide", rxcui="99999")
        assert match_answer(payload, self.offered) is None


@pytest.mark.asyncio
async def test_search_candidates_continues_after_a_failure():
    class FlakyRegistry(FakeIdentityRegistry):
        async def search_approx(self, name, max_entries=10):
            if name == "bad":
                raise RegistryError("RxNorm", "HTTP 500: oops", status_code=500)
            return await super().search_approx(name, max_entries)

    registry = FlakyRegistry(approx={"desonide": [DESONIDE]})
    searches = await search_candidates(registry, ["bad", "desonide"], max_entries=5)

    assert searches[0].error == "RxNorm: HTTP 500: oops"
    assert searches[0].concepts == ()
    assert searches[1].concepts == (DESONIDE,)


class TestReconcile:
    union = [DESONIDE_CREAM, DESONIDE, DINOPROSTONE]

    @pytest.mark.asyncio
    async def test_selects_the_offered_concept_the_model_names(self):
        service = FakeGenerativeService(reconciliation={"rxnormName": "desonide", "rxcui": "3247"})
        outcome = await CandidateReconciler(service).reconcile("地奈德乳膏", ["desonide"], self.union, "cream")

        assert outcome.selected == DESONIDE
        assert not outcome.used_fallback
        assert outcome.offered == 3

        prompt = service.prompts_for("reconcile")[0]
        assert "Original name: 地奈德乳膏" in prompt
        assert "Dosage form hint: cream" in prompt
        assert "- desonide (tty=IN, rxcui=3247, score=8)" in prompt

    @pytest.mark.asyncio
    async def test_answer_outside_the_offered_set_falls_back_to_first(self):
        service = FakeGenerativeService(reconciliation={"rxnormName": "dinoprostone", "rxcui": "99999"})
        outcome = await CandidateReconciler(service).reconcile("地奈德", ["desonide"], self.union)

        assert outcome.used_fallback
        assert outcome.selected == DESONIDE_CREAM
        assert outcome.reason == "Model answer not among the offered candidates"

    @pytest.mark.asyncio
    async def test_candidates_beyond_the_limit_are_not_offered(self):
        service = FakeGenerativeService(reconciliation={"rxcui": "3325"})
        outcome = await CandidateReconciler(service, candidate_limit=2).reconcile("x", ["x"], self.union)

        assert outcome.offered == 2
        assert outcome.used_fallback
        assert "dinoprostone" not in service.prompts_for("reconcile")[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response, reason",
        [
            (GenerativeServiceError("HTTP 500"), "Reconciliation call failed: HTTP 500"),
            ("{not json", "Unparseable reconciliation"),
            ({"rxnormName": None, "rxcui": None}, "Model named no candidate"),
        ],
    )
    async def test_inconclusive_answers_fall_back(self, response, reason):
        service = FakeGenerativeService(reconciliation=response)
        outcome = await CandidateReconciler(service).reconcile("x", ["x"], self.union)

        assert outcome.used_fallback
        assert outcome.selected == DESONIDE_CREAM
        assert outcome.reason.startswith(reason)

    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        service = FakeGenerativeService(reconciliation={"rxcui": "3247"}, delay=1.0)
        outcome = await CandidateReconciler(service).reconcile("x", ["x"], self.union, timeout=0.05)

        assert outcome.used_fallback
        assert outcome.reason == "Reconciliation call timed out"

    @pytest.mark.asyncio
    async def test_empty_union_is_a_programming_error(self):
        with pytest.raises(ValueError):
            await CandidateReconciler(FakeGenerativeService()).reconcile("x", ["x"], [])
