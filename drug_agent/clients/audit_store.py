"""Supabase (PostgREST) audit store for analysis requests and their log trails."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from ..errors import AuditStoreError

logger = logging.getLogger(__name__)

REQUESTS_TABLE = "analyze_requests"
LOGS_TABLE = "analyze_workflow_logs"


class SupabaseAuditStore:
    def __init__(self, url: str, service_role_key: str, timeout_seconds: float = 10.0):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.service_role_key = service_role_key
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config) -> Optional["SupabaseAuditStore"]:
        """Return a store, or ``None`` when Supabase is not configured."""
        if not config.has_audit_store():
            return None
        return cls(config.supabase_url, config.supabase_service_role_key, config.audit_timeout_seconds)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    async def _post(self, table: str, payload: Any) -> List[Dict[str, Any]]:
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                f"{self.rest_url}/{table}",
                data=json.dumps(payload, ensure_ascii=False, default=str),
                headers=self._headers(),
            ) as response:
                if response.status not in (200, 201):
                    error_text = await response.text(errors="replace")
                    raise AuditStoreError(
                        f"Insert into {table} failed with HTTP {response.status}: {error_text[:200]}",
                        status_code=response.status,
                    )
                body = await response.read()
        try:
            rows = json.loads(body)
        except ValueError as exc:
            raise AuditStoreError(f"Insert into {table} returned a non-JSON reply: {body[:80]!r}") from exc
        return rows if isinstance(rows, list) else [rows]

    async def insert_request(self, record: Mapping[str, Any]) -> str:
        rows = await self._post(REQUESTS_TABLE, dict(record))
        if not rows or not isinstance(rows[0], dict) or rows[0].get("id") is None:
            raise AuditStoreError(f"Insert into {REQUESTS_TABLE} returned no id")
        return str(rows[0]["id"])

    async def insert_logs(self, record_id: str, entries: List[Dict[str, Any]]) -> None:
        if not entries:
            return
        rows = [
            {
                "request_id": record_id,
                "step": entry["stage"],
                "status": entry["status"],
                "message": entry["message"],
                "meta": entry.get("meta"),
            }
            for entry in entries
        ]
        await self._post(LOGS_TABLE, rows)
        logger.debug("Stored %d workflow log rows for request %s", len(rows), record_id)
