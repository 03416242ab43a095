from drug_agent.pharmaceutical.schemas import (
    Parsed,
    ParseError,
    ReconciliationPayload,
    SummaryPayload,
    TranslationPayload,
    decode_payload,
    strip_code_fence,
)


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'
    assert strip_code_fence(None) == ""


def test_translation_payload_aliases_and_cleanup():
    decoded = decode_payload('{"candidates": ["ibuprofen", 3, ""], "dosageForm": " Cream "}', TranslationPayload)

    assert isinstance(decoded, Parsed)
    assert decoded.value.candidates == ["ibuprofen"]
    assert decoded.value.dosage_form == "cream"


def test_translation_payload_without_candidates_key():
    decoded = decode_payload('{"dosageForm": null}', TranslationPayload)
    assert decoded.ok
    assert decoded.value.candidates == []


def test_reconciliation_payload_normalises_identifiers():
    payload = ReconciliationPayload.model_validate({"rxnormName": "  ", "rxcui": 5640})
    assert payload.rxnorm_name is None
    assert payload.rxcui == "5640"
    assert not payload.is_empty
    assert ReconciliationPayload.model_validate({}).is_empty


def test_reconciliation_payload_rejects_structures():
    decoded = decode_payload('{"rxcui": ["5640"]}', ReconciliationPayload)
    assert isinstance(decoded, ParseError)
    assert decoded.reason.startswith("rxcui")


def test_summary_payload_accepts_single_strings_as_lists():
    payload = SummaryPayload.model_validate({"overview": "x", "warnings": "Do not exceed the dose", "keyPoints": None})
    assert payload.warnings == ["Do not exceed the dose"]
    assert payload.key_points == []


def test_summary_payload_accepts_snake_case_names():
    payload = SummaryPayload.model_validate({"key_points": ["a"], "common_side_effects": ["nausea"]})
    assert payload.overview == ""
    assert payload.common_side_effects == ["nausea"]


def test_summary_without_content_is_a_parse_error():
    decoded = decode_payload('{"overview": "  ", "foodInteractions": ["alcohol"]}', SummaryPayload)
    assert isinstance(decoded, ParseError)
    assert not decoded.ok
    assert "summary has no content" in decoded.reason


def test_non_object_json_is_a_parse_error():
    decoded = decode_payload("[1, 2]", SummaryPayload)
    assert decoded.reason == "expected a JSON object, got list"
    assert decoded.raw == "[1, 2]"
