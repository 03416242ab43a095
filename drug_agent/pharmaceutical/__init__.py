"""Pipeline stages for drug identity resolution and evidence aggregation."""
from .adverse_events import AdverseEventAggregator, AdverseEventOutcome
from .label_aggregator import LabelAggregator, LabelOutcome
from .reconciler import CandidateReconciler, ReconcileOutcome
from .resolver import IdentityResolver, ResolverOutcome
from .risk_checker import DrugInfo, RiskAlert, UserProfile, check_risks
from .summarizer import EvidenceBoundedSummarizer, SummaryOutcome
from .translator import CandidateTranslator, TranslationOutcome, needs_translation

__all__ = [
    "AdverseEventAggregator",
    "AdverseEventOutcome",
    "CandidateReconciler",
    "CandidateTranslator",
    "DrugInfo",
    "EvidenceBoundedSummarizer",
    "IdentityResolver",
    "LabelAggregator",
    "LabelOutcome",
    "ReconcileOutcome",
    "ResolverOutcome",
    "RiskAlert",
    "SummaryOutcome",
    "TranslationOutcome",
    "UserProfile",
    "check_risks",
    "needs_translation",
]
