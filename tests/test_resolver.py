import aiohttp
import pytest

from drug_agent.errors import RegistryError
from drug_agent.models import CandidateConcept, ResolutionMethod
from drug_agent.pharmaceutical.resolver import IdentityResolver

from conftest import FakeIdentityRegistry


@pytest.mark.asyncio
async def test_exact_match_uses_registry_properties(identity_registry):
    outcome = await IdentityResolver(identity_registry).resolve("Ibuprofen")

    assert outcome.resolved
    assert outcome.identity.registry_id == "5640"
    assert outcome.identity.canonical_name == "ibuprofen"
    assert outcome.identity.resolution_method is ResolutionMethod.EXACT
    assert outcome.alternatives == ()
    assert ("approx", "Ibuprofen") not in identity_registry.calls


@pytest.mark.asyncio
async def test_exact_match_without_properties_keeps_the_queried_name():
    registry = FakeIdentityRegistry(exact={"advil": "153010"})
    outcome = await IdentityResolver(registry).resolve("Advil")

    assert outcome.identity.canonical_name == "Advil"
    assert outcome.identity.resolution_method is ResolutionMethod.EXACT


@pytest.mark.asyncio
async def test_approximate_match_prefers_ingredient_term_types():
    concepts = [
        CandidateConcept("1", "Advil 200 MG Oral Tablet", "SBD", match_score=9.0),
        CandidateConcept("2", "ibuprofen 200 MG Oral Tablet", "SCD", match_score=8.0),
        CandidateConcept("3", "ibuprofen", "IN", match_score=7.0),
        CandidateConcept("4", "Advil Pack", "BPCK", match_score=6.0),
    ]
    registry = FakeIdentityRegistry(approx={"ibuprofin": concepts})

    outcome = await IdentityResolver(registry).resolve("ibuprofin")

    assert outcome.identity.registry_id == "3"
    assert outcome.identity.canonical_name == "ibuprofen"
    assert outcome.identity.resolution_method is ResolutionMethod.FUZZY
    assert [concept.registry_id for concept in outcome.alternatives] == ["2", "1", "4"]


@pytest.mark.asyncio
async def test_alternatives_are_capped():
    concepts = [CandidateConcept(str(i), f"name {i}", "SCD") for i in range(10)]
    outcome = await IdentityResolver(FakeIdentityRegistry(approx={"x": concepts})).resolve("x")

    assert outcome.identity.registry_id == "0"
    assert len(outcome.alternatives) == 4


@pytest.mark.asyncio
async def test_no_match_is_unresolved_with_reason():
    outcome = await IdentityResolver(FakeIdentityRegistry()).resolve("zzz-not-a-drug")

    assert not outcome.resolved
    assert outcome.identity.resolution_method is ResolutionMethod.UNRESOLVED
    assert outcome.identity.canonical_name is None
    assert outcome.error == 'No registry match for "zzz-not-a-drug"'


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method, failure",
    [
        ("exact", RegistryError("RxNorm", "request failed: reset")),
        ("approx", aiohttp.ClientError("connection refused")),
    ],
)
async def test_registry_failures_do_not_raise(method, failure):
    registry = FakeIdentityRegistry(errors={method: failure})
    outcome = await IdentityResolver(registry).resolve("ibuprofen")

    assert not outcome.resolved
    assert outcome.error == str(failure)


@pytest.mark.asyncio
async def test_max_entries_is_passed_to_the_registry():
    concepts = [CandidateConcept(str(i), f"name {i}", "SCD") for i in range(10)]
    registry = FakeIdentityRegistry(approx={"x": concepts})

    outcome = await IdentityResolver(registry, max_entries=2).resolve("x")

    assert len(outcome.alternatives) == 1
