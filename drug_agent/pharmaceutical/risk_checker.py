"""Rule-based personalised risk matcher.

Deterministic string overlap between a user's health profile and drug label
facts. No generative call is involved.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

from ..disclaimers import risk_messages

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
MAX_GENERAL_WARNINGS = 3
WARNING_CHAR_LIMIT = 200


@dataclass(frozen=True)
class UserProfile:
    allergies: Sequence[str] = ()
    conditions: Sequence[str] = ()
    current_medications: Sequence[str] = ()


@dataclass(frozen=True)
class DrugInfo:
    name: str
    ingredients: Sequence[str] = ()
    contraindications: Sequence[str] = ()
    interactions: Sequence[str] = ()
    warnings: Sequence[str] = ()


@dataclass(frozen=True)
class RiskAlert:
    type: str
    severity: str
    title: str
    message: str
    source: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "source": self.source,
        }


def overlaps(left: str, right: str) -> bool:
    """Case-insensitive containment in either direction."""
    a, b = left.lower(), right.lower()
    if not a or not b:
        return False
    return a in b or b in a


def _first_overlap(item: str, facts: Sequence[str]) -> bool:
    return any(overlaps(item, fact) for fact in facts)


def check_risks(profile: UserProfile, drug: DrugInfo, language: str = "zh-CN") -> List[RiskAlert]:
    msg = risk_messages(language)
    alerts: List[RiskAlert] = []

    for allergy in profile.allergies:
        if _first_overlap(allergy, drug.ingredients):
            alerts.append(
                RiskAlert(
                    type="ALLERGY_WARNING",
                    severity="critical",
                    title=msg["allergy_title"],
                    message=msg["allergy_message"].format(item=allergy),
                    source=f"{msg['profile_source']} + {msg['label_source']}",
                )
            )

    for condition in profile.conditions:
        if _first_overlap(condition, drug.contraindications):
            alerts.append(
                RiskAlert(
                    type="CONTRAINDICATION",
                    severity="high",
                    title=msg["contraindication_title"],
                    message=msg["contraindication_message"].format(item=condition),
                    source=msg["label_source"],
                )
            )

    for medication in profile.current_medications:
        if _first_overlap(medication, drug.interactions):
            alerts.append(
                RiskAlert(
                    type="DRUG_INTERACTION",
                    severity="high",
                    title=msg["interaction_title"],
                    message=msg["interaction_message"].format(item=medication),
                    source=msg["label_source"],
                )
            )

    for warning in list(drug.warnings)[:MAX_GENERAL_WARNINGS]:
        alerts.append(
            RiskAlert(
                type="GENERAL_WARNING",
                severity="medium",
                title=msg["warning_title"],
                message=warning[:WARNING_CHAR_LIMIT],
                source=msg["label_source"],
            )
        )

    # sorted() is stable, so rule order is kept within a severity
    return sorted(alerts, key=lambda alert: SEVERITY_ORDER[alert.severity])
