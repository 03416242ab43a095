"""Candidate translator: non-Latin drug names to RxNorm-friendly English candidates."""
from __future__ import annotations

import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..clients.openai_client import GenerationConstraints
from ..errors import GenerativeServiceError
from .schemas import ParseError, TranslationPayload, decode_payload

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 3

TRANSLATION_SYSTEM_PROMPT = """You map drug names written in Chinese or another non-Latin script to \
RxNorm-compatible English generic names (INN) and dosage forms.

Output strictly in JSON: {"candidates": [string, ...], "dosageForm": string|null}

Rules:
- Provide 1-3 candidate names (most likely first), RxNorm-friendly spelling.
- Include dosage form if input implies it (乳膏=cream, 片=tablet, 胶囊=capsule, 喷雾=spray).
- Prefer generic/INN naming; avoid prostaglandins unless clearly indicated.
- Common pitfalls: "地奈德" => "desonide" (topical steroid), NOT dinoprostone.
- If the input is not a recognisable medicine, return {"candidates": []}."""


def _is_latin(char: str) -> bool:
    return unicodedata.name(char, "").startswith("LATIN")


def needs_translation(name: str) -> bool:
    """True when the name contains any letter outside the Latin script."""
    return any(char.isalpha() and not _is_latin(char) for char in name)


@dataclass(frozen=True)
class TranslationOutcome:
    candidates: Tuple[str, ...] = ()
    dosage_form: Optional[str] = None
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return bool(self.candidates) and self.error is None

    @property
    def primary(self) -> Optional[str]:
        return self.candidates[0] if self.candidates else None


def _dedupe(candidates: List[str]) -> Tuple[str, ...]:
    seen = set()
    unique: List[str] = []
    for candidate in candidates:
        key = candidate.casefold()
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return tuple(unique[:MAX_CANDIDATES])


class CandidateTranslator:
    def __init__(self, service, model: str = "gpt-4o-mini", max_tokens: int = 120):
        self.service = service
        self.constraints = GenerationConstraints(model=model, temperature=0.0, max_tokens=max_tokens, json_mode=True)

    async def translate(self, raw_name: str) -> TranslationOutcome:
        try:
            completion = await self.service.complete(TRANSLATION_SYSTEM_PROMPT, raw_name, self.constraints)
        except GenerativeServiceError as exc:
            meta = {"status": exc.status_code} if exc.status_code is not None else {}
            return TranslationOutcome(error=f"Translation call failed: {exc}", meta=meta)

        meta: Dict[str, Any] = {"model": completion.model}
        if completion.prompt_tokens is not None:
            meta["prompt_tokens"] = completion.prompt_tokens
            meta["completion_tokens"] = completion.completion_tokens

        decoded = decode_payload(completion.text, TranslationPayload)
        if isinstance(decoded, ParseError):
            logger.debug("Unparseable translation payload: %s", decoded.raw)
            return TranslationOutcome(error=f"Translation payload rejected ({decoded.reason})", meta=meta)

        candidates = _dedupe(decoded.value.candidates)
        if not candidates:
            return TranslationOutcome(error="Translation returned no usable candidates", meta=meta)
        return TranslationOutcome(candidates=candidates, dosage_form=decoded.value.dosage_form, meta=meta)
