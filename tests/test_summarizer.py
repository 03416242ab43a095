import pytest

from drug_agent.errors import GenerativeServiceError
from drug_agent.models import AdverseEventEvidence, LabelEvidence, ReactionStat
from drug_agent.pharmaceutical.summarizer import EvidenceBoundedSummarizer, has_evidence

from conftest import IBUPROFEN_SUMMARY, FakeGenerativeService

LABEL = LabelEvidence(
    document_id="set-2024",
    published_date="Mar 10, 2024",
    sections={
        "indications": "For the temporary relief of minor aches and pains.",
        "warnings": "W" * 3000,
    },
)

ADVERSE = AdverseEventEvidence(
    total_reports=200,
    serious_count=30,
    serious_rate=15.0,
    top_reactions=tuple(ReactionStat(f"REACTION {i}", 100 - i, 100 - i) for i in range(12)),
)


def test_has_evidence():
    assert not has_evidence(None, None)
    assert not has_evidence(LabelEvidence("x", ""), AdverseEventEvidence())
    assert has_evidence(LABEL, None)
    assert has_evidence(None, ADVERSE)


class TestPrompts:
    def test_label_only_prompt_has_no_adverse_event_block(self):
        prompt = EvidenceBoundedSummarizer(FakeGenerativeService()).build_user_prompt("布洛芬", "ibuprofen", LABEL, None)

        assert "布洛芬 (standard name: ibuprofen)" in prompt
        assert "### Source: DailyMed drug label" in prompt
        assert "**Indications:**" in prompt
        assert "FAERS" not in prompt
        assert "Dosage and administration" not in prompt

    def test_adverse_only_prompt_has_no_label_block(self):
        prompt = EvidenceBoundedSummarizer(FakeGenerativeService()).build_user_prompt("ibuprofen", "ibuprofen", None, ADVERSE)

        assert "DailyMed" not in prompt
        assert "(standard name:" not in prompt
        assert "- Total reports: 200" in prompt
        assert "- Serious report rate: 15.0%" in prompt

    def test_sections_and_reactions_are_truncated(self):
        summarizer = EvidenceBoundedSummarizer(FakeGenerativeService(), section_char_limit=100, reaction_limit=3)
        prompt = summarizer.build_user_prompt("ibuprofen", None, LABEL, ADVERSE)

        assert "W" * 100 in prompt
        assert "W" * 101 not in prompt
        assert "3. REACTION 2 (98 reports)" in prompt
        assert "REACTION 3" not in prompt

    @pytest.mark.parametrize(
        "language, instruction",
        [("zh-CN", "简体中文"), ("zh-TW", "繁體中文"), ("en", "respond in English")],
    )
    def test_system_prompt_carries_the_output_language(self, language, instruction):
        prompt = EvidenceBoundedSummarizer(FakeGenerativeService()).build_system_prompt(language)
        assert instruction in prompt
        assert "{language_instruction}" not in prompt


class TestSummarize:
    @pytest.mark.asyncio
    async def test_valid_payload_becomes_summary_evidence(self):
        service = FakeGenerativeService(summary=IBUPROFEN_SUMMARY)
        summarizer = EvidenceBoundedSummarizer(service, model="gpt-summary", temperature=0.3, max_tokens=800)

        outcome = await summarizer.summarize("布洛芬", "ibuprofen", LABEL, ADVERSE, "zh-CN")

        assert outcome.error is None
        assert outcome.summary.overview.startswith("布洛芬")
        assert outcome.summary.warnings == ("可能导致严重胃出血",)
        assert outcome.summary.food_interactions == ()
        assert outcome.meta == {"model": "gpt-summary"}
        constraints = service.calls[0][3]
        assert constraints.temperature == 0.3
        assert constraints.max_tokens == 800

    @pytest.mark.asyncio
    async def test_content_free_payload_is_rejected(self):
        service = FakeGenerativeService(summary={"overview": "", "keyPoints": []})
        outcome = await EvidenceBoundedSummarizer(service).summarize("x", None, LABEL, None, "en")

        assert outcome.summary is None
        assert outcome.error.startswith("Summary payload rejected")

    @pytest.mark.asyncio
    async def test_unparseable_payload_is_rejected(self):
        service = FakeGenerativeService(summary="Sure! Here is a summary.")
        outcome = await EvidenceBoundedSummarizer(service).summarize("x", None, LABEL, None, "en")

        assert outcome.summary is None
        assert "invalid JSON" in outcome.error

    @pytest.mark.asyncio
    async def test_service_failure(self):
        service = FakeGenerativeService(summary=GenerativeServiceError("Rate limited", status_code=429))
        outcome = await EvidenceBoundedSummarizer(service).summarize("x", None, None, ADVERSE, "en")

        assert outcome.error == "Summary call failed: Rate limited"

    @pytest.mark.asyncio
    async def test_timeout(self):
        service = FakeGenerativeService(summary=IBUPROFEN_SUMMARY, delay=1.0)
        outcome = await EvidenceBoundedSummarizer(service).summarize("x", None, LABEL, None, "en", timeout=0.05)

        assert outcome.error == "Summary call timed out"

    @pytest.mark.asyncio
    async def test_refuses_to_run_without_evidence(self):
        service = FakeGenerativeService(summary=IBUPROFEN_SUMMARY)
        with pytest.raises(ValueError):
            await EvidenceBoundedSummarizer(service).summarize("x", None, None, None, "en")
        assert service.calls == []
