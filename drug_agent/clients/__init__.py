"""External service clients: generative text, registries and the audit store."""
from .audit_store import SupabaseAuditStore
from .dailymed_client import DailyMedClient
from .http import RegistryHTTPClient
from .openai_client import Completion, GenerationConstraints, OpenAIChatService
from .openfda_client import OpenFDAClient
from .rxnorm_client import RxNormClient

__all__ = [
    "Completion",
    "DailyMedClient",
    "GenerationConstraints",
    "OpenAIChatService",
    "OpenFDAClient",
    "RegistryHTTPClient",
    "RxNormClient",
    "SupabaseAuditStore",
]
