"""Localised disclaimers and message templates loaded from ``resources/messages.yaml``."""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml

from .config import SUPPORTED_LANGUAGES
from .models import Disclaimer

logger = logging.getLogger(__name__)

MESSAGES_PATH = Path(__file__).parent / "resources" / "messages.yaml"
FALLBACK_LANGUAGE = "zh-CN"


@lru_cache(maxsize=1)
def load_messages() -> Dict[str, Any]:
    with MESSAGES_PATH.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    for group in ("disclaimers", "summary_language", "abort_reasons", "risk_messages"):
        missing = [lang for lang in SUPPORTED_LANGUAGES if lang not in data.get(group, {})]
        if missing:
            logger.warning("messages.yaml group '%s' has no entry for %s", group, ", ".join(missing))
    return data


def _localised(group: str, language: str) -> Any:
    entries = load_messages().get(group, {})
    if language in entries:
        return entries[language]
    return entries[FALLBACK_LANGUAGE]


def get_disclaimer(language: str) -> Disclaimer:
    entry = _localised("disclaimers", language)
    resolved = language if language in load_messages()["disclaimers"] else FALLBACK_LANGUAGE
    return Disclaimer(language=resolved, title=entry["title"], lines=tuple(entry["lines"]))


def summary_language_instruction(language: str) -> str:
    return _localised("summary_language", language)


def abort_reason(key: str, language: str) -> str:
    return _localised("abort_reasons", language)[key]


def risk_messages(language: str) -> Dict[str, str]:
    return dict(_localised("risk_messages", language))
