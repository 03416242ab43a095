"""Central configuration for the drug analysis pipeline."""
from __future__ import annotations

import os
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

_BOOL_WORDS = {word: True for word in ("1", "true", "yes", "on", "enabled")}
_BOOL_WORDS.update({word: False for word in ("0", "false", "no", "off", "disabled")})
_SECRET_FIELDS = ("openai_api_key", "openfda_api_key", "supabase_service_role_key")

SUPPORTED_LANGUAGES = ("zh-CN", "zh-TW", "en")


def _get_env(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _as_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = _get_env(env, key)
    if raw is None:
        return default
    if raw.lower() not in _BOOL_WORDS:
        raise ValueError(f"Environment variable {key} must be boolean-like, got: {raw}")
    return _BOOL_WORDS[raw.lower()]


def _convert(env: Mapping[str, str], key: str, convert: Callable[[str], Any], kind: str) -> Any:
    raw = _get_env(env, key)
    if raw is None:
        return None
    try:
        return convert(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be {kind}, got: {raw}") from exc


def _as_int(env: Mapping[str, str], key: str, default: int) -> int:
    value = _convert(env, key, int, "an integer")
    return default if value is None else value


def _as_float(env: Mapping[str, str], key: str, default: float) -> float:
    value = _convert(env, key, float, "numeric")
    return default if value is None else value


def _as_quota(env: Mapping[str, str], key: str) -> Optional[int]:
    value = _convert(env, key, int, "an integer")
    # 0 and -1 disable the quota, as in RegistryRateLimiter
    return None if value in (0, -1) else value


@dataclass
class AgentConfig:
    """Configuration snapshot for the drug analysis pipeline."""

    # Generative text service
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    translation_model: str = "gpt-4o-mini"
    reconcile_model: str = "gpt-4o-mini"
    summary_model: str = "gpt-4o-mini"
    summary_temperature: float = 0.3
    summary_max_tokens: int = 1000
    llm_timeout_seconds: float = 30.0
    llm_max_retries: int = 2

    # External registries
    rxnorm_base_url: str = "https://rxnav.nlm.nih.gov/REST"
    dailymed_base_url: str = "https://dailymed.nlm.nih.gov/dailymed/services/v2"
    openfda_base_url: str = "https://api.fda.gov/drug"
    openfda_api_key: Optional[str] = None

    # Timeouts and deadlines
    http_timeout_seconds: float = 15.0
    fanout_deadline_seconds: float = 25.0
    request_deadline_seconds: float = 90.0

    # Evidence limits
    approx_max_entries: int = 10
    reconcile_candidate_limit: int = 12
    top_reactions_limit: int = 15
    summary_section_char_limit: int = 1000
    summary_reaction_limit: int = 10
    label_preview_char_limit: int = 500

    # Audit store
    supabase_url: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    audit_timeout_seconds: float = 10.0

    # Registry rate limiting
    enable_rate_limiting: bool = True
    registry_max_requests_per_second: int = 10
    registry_daily_request_limit: Optional[int] = None
    rate_limit_timezone: str = "UTC"

    default_language: str = "zh-CN"
    log_level: str = "INFO"

    config_loaded_at: float = field(default_factory=time.time)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "AgentConfig":
        """Build a configuration snapshot from environment variables."""
        env_map: Mapping[str, str] = os.environ if env is None else env

        try:
            values: Dict[str, Any] = dict(
                openai_api_key=_get_env(env_map, "OPENAI_API_KEY"),
                openai_base_url=_get_env(env_map, "OPENAI_BASE_URL"),
                translation_model=_get_env(env_map, "DRUG_AGENT_TRANSLATION_MODEL") or cls.translation_model,
                reconcile_model=_get_env(env_map, "DRUG_AGENT_RECONCILE_MODEL") or cls.reconcile_model,
                summary_model=_get_env(env_map, "DRUG_AGENT_SUMMARY_MODEL") or cls.summary_model,
                summary_temperature=_as_float(env_map, "DRUG_AGENT_SUMMARY_TEMPERATURE", cls.summary_temperature),
                summary_max_tokens=_as_int(env_map, "DRUG_AGENT_SUMMARY_MAX_TOKENS", cls.summary_max_tokens),
                llm_timeout_seconds=_as_float(env_map, "DRUG_AGENT_LLM_TIMEOUT_SECONDS", cls.llm_timeout_seconds),
                llm_max_retries=_as_int(env_map, "DRUG_AGENT_LLM_MAX_RETRIES", cls.llm_max_retries),
                rxnorm_base_url=_get_env(env_map, "RXNORM_BASE_URL") or cls.rxnorm_base_url,
                dailymed_base_url=_get_env(env_map, "DAILYMED_BASE_URL") or cls.dailymed_base_url,
                openfda_base_url=_get_env(env_map, "OPENFDA_BASE_URL") or cls.openfda_base_url,
                openfda_api_key=_get_env(env_map, "OPENFDA_API_KEY"),
                http_timeout_seconds=_as_float(env_map, "DRUG_AGENT_HTTP_TIMEOUT_SECONDS", cls.http_timeout_seconds),
                fanout_deadline_seconds=_as_float(
                    env_map, "DRUG_AGENT_FANOUT_DEADLINE_SECONDS", cls.fanout_deadline_seconds
                ),
                request_deadline_seconds=_as_float(
                    env_map, "DRUG_AGENT_REQUEST_DEADLINE_SECONDS", cls.request_deadline_seconds
                ),
                approx_max_entries=_as_int(env_map, "RXNORM_APPROX_MAX_ENTRIES", cls.approx_max_entries),
                reconcile_candidate_limit=_as_int(
                    env_map, "DRUG_AGENT_RECONCILE_CANDIDATE_LIMIT", cls.reconcile_candidate_limit
                ),
                top_reactions_limit=_as_int(env_map, "OPENFDA_TOP_REACTIONS_LIMIT", cls.top_reactions_limit),
                summary_section_char_limit=_as_int(
                    env_map, "DRUG_AGENT_SUMMARY_SECTION_CHARS", cls.summary_section_char_limit
                ),
                summary_reaction_limit=_as_int(env_map, "DRUG_AGENT_SUMMARY_REACTIONS", cls.summary_reaction_limit),
                label_preview_char_limit=_as_int(
                    env_map, "DRUG_AGENT_LABEL_PREVIEW_CHARS", cls.label_preview_char_limit
                ),
                supabase_url=_get_env(env_map, "SUPABASE_URL"),
                supabase_service_role_key=_get_env(env_map, "SUPABASE_SERVICE_ROLE_KEY"),
                audit_timeout_seconds=_as_float(env_map, "DRUG_AGENT_AUDIT_TIMEOUT_SECONDS", cls.audit_timeout_seconds),
                enable_rate_limiting=_as_bool(env_map, "ENABLE_RATE_LIMITING", cls.enable_rate_limiting),
                registry_max_requests_per_second=_as_int(
                    env_map, "REGISTRY_MAX_REQUESTS_PER_SECOND", cls.registry_max_requests_per_second
                ),
                registry_daily_request_limit=_as_quota(env_map, "REGISTRY_DAILY_REQUEST_LIMIT"),
                rate_limit_timezone=_get_env(env_map, "RATE_LIMIT_TIMEZONE") or cls.rate_limit_timezone,
                default_language=_get_env(env_map, "DRUG_AGENT_DEFAULT_LANGUAGE") or cls.default_language,
                log_level=(_get_env(env_map, "DRUG_AGENT_LOG_LEVEL") or cls.log_level).upper(),
            )
        except ValueError as exc:
            config = cls()
            config.errors.append(str(exc))
            return config

        config = cls(**values)
        config._validate()
        return config

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------
    def _validate(self) -> None:
        self.warnings.clear()

        for name, default in (
            ("http_timeout_seconds", 15.0),
            ("fanout_deadline_seconds", 25.0),
            ("request_deadline_seconds", 90.0),
            ("llm_timeout_seconds", 30.0),
            ("audit_timeout_seconds", 10.0),
        ):
            if getattr(self, name) <= 0:
                self.warnings.append(f"{name} must be positive; defaulting to {default}.")
                setattr(self, name, default)

        for name, default in (
            ("approx_max_entries", 10),
            ("reconcile_candidate_limit", 12),
            ("top_reactions_limit", 15),
            ("summary_section_char_limit", 1000),
            ("summary_reaction_limit", 10),
            ("label_preview_char_limit", 500),
            ("summary_max_tokens", 1000),
            ("registry_max_requests_per_second", 10),
        ):
            if getattr(self, name) <= 0:
                self.warnings.append(f"{name} must be positive; defaulting to {default}.")
                setattr(self, name, default)

        if self.llm_max_retries < 0:
            self.warnings.append("llm_max_retries cannot be negative; using 0.")
            self.llm_max_retries = 0

        if not 0.0 <= self.summary_temperature <= 2.0:
            self.warnings.append("summary_temperature must be between 0 and 2; clamping to valid range.")
            self.summary_temperature = max(0.0, min(2.0, self.summary_temperature))

        if self.registry_daily_request_limit is not None and self.registry_daily_request_limit < 0:
            self.warnings.append("registry_daily_request_limit must be positive; disabling daily quota.")
            self.registry_daily_request_limit = None

        if self.default_language not in SUPPORTED_LANGUAGES:
            self.warnings.append(
                "Unknown default language '%s'; defaulting to 'zh-CN'." % self.default_language
            )
            self.default_language = "zh-CN"

        if self.fanout_deadline_seconds < self.http_timeout_seconds:
            self.warnings.append(
                "Fan-out deadline is shorter than the per-call HTTP timeout; slow sections will be dropped."
            )

    # ------------------------------------------------------------------
    # Runtime helpers
    # ------------------------------------------------------------------
    def has_generative_credentials(self) -> bool:
        return bool(self.openai_api_key)

    def has_audit_store(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def export_public_view(self) -> Dict[str, Any]:
        """Return the configuration with secrets masked, for diagnostics."""
        data = self.to_dict()
        for key in _SECRET_FIELDS:
            if data.get(key):
                data[key] = "***"
        data.pop("warnings", None)
        data.pop("errors", None)
        return data
