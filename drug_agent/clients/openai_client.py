"""
Generative text service backed by the OpenAI Chat Completions API.

Thin wrapper around ``AsyncOpenAI`` that turns every SDK failure into a
``GenerativeServiceError`` and returns plain ``Completion`` records, so the
pipeline stages never handle SDK types directly.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError

from ..errors import ConfigurationError, GenerativeServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationConstraints:
    model: str = "gpt-4o-mini"
    temperature: float = 0.0
    max_tokens: int = 120
    json_mode: bool = True


@dataclass(frozen=True)
class Completion:
    text: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class OpenAIChatService:
    """Generative text service used by the translator, reconciler and summarizer."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        client: Optional[AsyncOpenAI] = None,
    ):
        if client is None:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY is required for the generative text service")
            kwargs: Dict[str, Any] = {"api_key": api_key, "timeout": timeout, "max_retries": max_retries}
            if base_url:
                kwargs["base_url"] = base_url
            client = AsyncOpenAI(**kwargs)
        self.client = client

    @classmethod
    def from_config(cls, config) -> "OpenAIChatService":
        if not config.has_generative_credentials():
            raise ConfigurationError("OPENAI_API_KEY is required for the generative text service")
        return cls(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            timeout=config.llm_timeout_seconds,
            max_retries=config.llm_max_retries,
        )

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        constraints: GenerationConstraints,
    ) -> Completion:
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        request: Dict[str, Any] = {
            "model": constraints.model,
            "messages": messages,
            "temperature": constraints.temperature,
            "max_tokens": constraints.max_tokens,
        }
        if constraints.json_mode:
            request["response_format"] = {"type": "json_object"}

        started = time.perf_counter()
        try:
            response = await self.client.chat.completions.create(**request)
        except RateLimitError as e:
            raise GenerativeServiceError(f"Rate limited by generative service: {e}", status_code=429) from e
        except APIStatusError as e:
            raise GenerativeServiceError(
                f"Generative service returned HTTP {e.status_code}: {e.message}", status_code=e.status_code
            ) from e
        except APIConnectionError as e:
            raise GenerativeServiceError(f"Could not reach generative service: {e}") from e
        except APIError as e:
            raise GenerativeServiceError(f"Generative service error: {e}") from e

        logger.debug(
            "Chat completion model=%s took %.0fms", constraints.model, (time.perf_counter() - started) * 1000
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise GenerativeServiceError("Generative service returned no choices")
        content = getattr(choices[0].message, "content", None)
        if not content or not content.strip():
            raise GenerativeServiceError("Generative service returned empty content")

        usage = getattr(response, "usage", None)
        return Completion(
            text=content,
            model=getattr(response, "model", None) or constraints.model,
            prompt_tokens=getattr(usage, "prompt_tokens", None),
            completion_tokens=getattr(usage, "completion_tokens", None),
        )
