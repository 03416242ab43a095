"""Shared aiohttp transport for the public registry clients."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp

from ..errors import RegistryError
from ..rate_limiting import DailyQuotaExceeded, RegistryRateLimiter

logger = logging.getLogger(__name__)


class RegistryHTTPClient:
    """
    Base class for read-only JSON registries.

    Each request opens its own ``aiohttp.ClientSession`` bounded by
    ``timeout_seconds``, waits on the shared rate limiter and maps every
    transport or decoding problem to :class:`RegistryError`.
    """

    registry_name = "registry"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 15.0,
        rate_limiter: Optional[RegistryRateLimiter] = None,
        default_params: Optional[Mapping[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.rate_limiter = rate_limiter
        self.default_params = dict(default_params or {})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _get_json(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """GET ``path`` and decode the JSON body.

        Returns ``None`` for a 404 when ``allow_not_found`` is set.
        """
        query: Dict[str, Any] = dict(self.default_params)
        query.update(params or {})
        url = self._url(path)

        if self.rate_limiter is not None:
            try:
                await self.rate_limiter.acquire_async(self.registry_name)
            except DailyQuotaExceeded as exc:
                raise RegistryError(self.registry_name, str(exc)) from exc

        logger.debug("%s GET %s params=%s", self.registry_name, url, query)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, params=query or None) as response:
                    if response.status == 404 and allow_not_found:
                        return None
                    if response.status != 200:
                        error_text = await response.text(errors="replace")
                        raise RegistryError(
                            self.registry_name,
                            f"HTTP {response.status}: {error_text[:200]}",
                            status_code=response.status,
                        )
                    body = await response.read()
        except aiohttp.ClientError as exc:
            raise RegistryError(self.registry_name, f"request failed: {exc}") from exc

        try:
            data = json.loads(body.decode("utf-8"))
        except ValueError as exc:
            raise RegistryError(self.registry_name, f"invalid JSON from {path}") from exc
        if not isinstance(data, dict):
            raise RegistryError(self.registry_name, f"unexpected payload type from {path}: {type(data).__name__}")
        return data
