import pytest

from drug_agent.config import SUPPORTED_LANGUAGES
from drug_agent.disclaimers import (
    abort_reason,
    get_disclaimer,
    load_messages,
    risk_messages,
    summary_language_instruction,
)


@pytest.mark.parametrize("language", SUPPORTED_LANGUAGES)
def test_every_language_has_a_complete_disclaimer(language):
    disclaimer = get_disclaimer(language)

    assert disclaimer.language == language
    assert disclaimer.title
    assert len(disclaimer.lines) == 3
    assert disclaimer.text.splitlines()[0] == disclaimer.title


def test_unknown_language_falls_back():
    disclaimer = get_disclaimer("fr")
    assert disclaimer.language == "zh-CN"
    assert disclaimer.lines[0] == "本信息仅供参考，不构成医疗诊断或治疗建议。"


def test_message_groups_define_the_same_keys_per_language():
    messages = load_messages()
    for group in ("abort_reasons", "risk_messages"):
        key_sets = {language: set(messages[group][language]) for language in SUPPORTED_LANGUAGES}
        assert len({frozenset(keys) for keys in key_sets.values()}) == 1, group


def test_localised_lookups():
    assert abort_reason("empty_name", "en") == "Please provide a drug name"
    assert abort_reason("translation_failed", "zh-TW").startswith("無法識別")
    assert summary_language_instruction("en") == "Please respond in English."
    assert "{item}" in risk_messages("en")["allergy_message"]
