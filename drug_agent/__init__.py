"""Drug identity resolution and evidence aggregation agent."""
from .config import AgentConfig
from .errors import (
    AnalysisAborted,
    AuditStoreError,
    ConfigurationError,
    DrugAgentError,
    GenerativeServiceError,
    InvalidRequestError,
    RegistryError,
    TranslationFailedError,
)
from .models import AnalysisResult, InputRequest, ResolutionMethod, StageStatus
from .pipeline import DrugAnalysisPipeline

__version__ = "0.1.0"

__all__ = [
    "AgentConfig",
    "AnalysisAborted",
    "AnalysisResult",
    "AuditStoreError",
    "ConfigurationError",
    "DrugAgentError",
    "DrugAnalysisPipeline",
    "GenerativeServiceError",
    "InputRequest",
    "InvalidRequestError",
    "RegistryError",
    "ResolutionMethod",
    "StageStatus",
    "TranslationFailedError",
]
