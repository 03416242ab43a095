"""Validated payload schemas for generative-service responses."""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

T = TypeVar("T", bound=BaseModel)

_CODE_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*(.*?)\s*```\s*$", re.DOTALL)


def _string_list(value: Any) -> List[str]:
    """Keep non-empty strings; a single string becomes a one-item list."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a list of strings")
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class TranslationPayload(BaseModel):
    """``{"candidates": [...], "dosageForm": "cream"}``"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    candidates: List[str] = Field(default_factory=list)
    dosage_form: Optional[str] = Field(default=None, alias="dosageForm")

    @field_validator("candidates", mode="before")
    @classmethod
    def _clean_candidates(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("candidates must be a list")
        return _string_list(value)

    @field_validator("dosage_form", mode="before")
    @classmethod
    def _clean_dosage_form(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
        return None


class ReconciliationPayload(BaseModel):
    """``{"rxnormName": str|null, "rxcui": str|null}``"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rxnorm_name: Optional[str] = Field(default=None, alias="rxnormName")
    rxcui: Optional[str] = None

    @field_validator("rxnorm_name", "rxcui", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            value = str(int(value))
        if not isinstance(value, str):
            raise ValueError("expected a string or null")
        value = value.strip()
        return value or None

    @property
    def is_empty(self) -> bool:
        return self.rxnorm_name is None and self.rxcui is None


class SummaryPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overview: str = ""
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    warnings: List[str] = Field(default_factory=list)
    common_side_effects: List[str] = Field(default_factory=list, alias="commonSideEffects")
    food_interactions: List[str] = Field(default_factory=list, alias="foodInteractions")

    @field_validator("overview", mode="before")
    @classmethod
    def _clean_overview(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("overview must be a string")
        return value.strip()

    @field_validator("key_points", "warnings", "common_side_effects", "food_interactions", mode="before")
    @classmethod
    def _clean_lists(cls, value: Any) -> List[str]:
        return _string_list(value)

    @model_validator(mode="after")
    def _require_content(self) -> "SummaryPayload":
        if not self.overview and not (self.key_points or self.warnings or self.common_side_effects):
            raise ValueError("summary has no content")
        return self


@dataclass(frozen=True)
class Parsed(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class ParseError:
    reason: str
    raw: str = ""
    ok: bool = False


DecodeResult = Union[Parsed[T], ParseError]


def strip_code_fence(text: str) -> str:
    match = _CODE_FENCE.match(text or "")
    return match.group(1) if match else (text or "").strip()


def decode_payload(text: str, schema: Type[T]) -> DecodeResult:
    """Decode a JSON completion into ``schema`` without raising."""
    body = strip_code_fence(text)
    try:
        data = json.loads(body)
    except ValueError as exc:
        return ParseError(reason=f"invalid JSON: {exc}", raw=body[:200])
    if not isinstance(data, dict):
        return ParseError(reason=f"expected a JSON object, got {type(data).__name__}", raw=body[:200])
    try:
        return Parsed(schema.model_validate(data))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or schema.__name__
        return ParseError(reason=f"{location}: {first.get('msg', 'invalid payload')}", raw=body[:200])
