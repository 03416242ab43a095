"""Exception hierarchy for the drug analysis pipeline."""
from typing import Any, Dict, List, Optional


class DrugAgentError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(DrugAgentError):
    """The service cannot run with the current configuration."""


class RegistryError(DrugAgentError):
    """Failure talking to an identity, label or adverse-event registry."""

    def __init__(
        self,
        registry: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"{registry}: {message}")
        self.registry = registry
        self.status_code = status_code


class GenerativeServiceError(DrugAgentError):
    """Failure of a generative text call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuditStoreError(DrugAgentError):
    """Failure writing to the audit store."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AnalysisAborted(DrugAgentError):
    """
    Fatal outcome of an analysis run.

    Carries the log trail recorded up to the abort so callers can show
    where and why the run stopped. No partial result is attached.
    """

    def __init__(
        self,
        reason: str,
        stage: str,
        logs: Optional[List[Any]] = None,
        overview: Optional[List[Any]] = None,
    ):
        super().__init__(reason)
        self.reason = reason
        self.stage = stage
        self.logs = list(logs or [])
        self.overview = list(overview or [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.reason,
            "stage": self.stage,
            "logs": [entry.to_dict() for entry in self.logs],
            "overview": [row.to_dict() for row in self.overview],
        }


class InvalidRequestError(AnalysisAborted):
    """The request was malformed (for example an empty drug name)."""


class TranslationFailedError(AnalysisAborted):
    """Required translation produced no usable candidate."""
