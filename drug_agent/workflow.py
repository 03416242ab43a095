"""Workflow recorder: the single sink for stage outcomes of one analysis run."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import aiohttp

from .errors import AuditStoreError
from .models import (
    InputRequest,
    OverviewRow,
    ResolvedIdentity,
    StageStatus,
    WorkflowLogEntry,
)

logger = logging.getLogger(__name__)
workflow_logger = logging.getLogger("drug_agent.workflow")

STAGE_TRANSLATE = "translate"
STAGE_RECONCILE = "reconcile"
STAGE_RESOLVE = "resolve"
STAGE_LABEL = "label"
STAGE_ADVERSE_EVENTS = "adverse_events"
STAGE_SUMMARY = "summary"
STAGE_PERSIST = "persist"

PIPELINE_STAGES = (
    STAGE_TRANSLATE,
    STAGE_RECONCILE,
    STAGE_RESOLVE,
    STAGE_LABEL,
    STAGE_ADVERSE_EVENTS,
    STAGE_SUMMARY,
    STAGE_PERSIST,
)

_LOG_LEVELS = {
    StageStatus.START: logging.DEBUG,
    StageStatus.SUCCESS: logging.INFO,
    StageStatus.INFO: logging.INFO,
    StageStatus.SKIP: logging.INFO,
    StageStatus.ERROR: logging.WARNING,
}


def _utc_now_iso() -> str:
    """Module-level clock that tests can patch."""
    return datetime.now(timezone.utc).isoformat()


class AuditStore(Protocol):
    async def insert_request(self, record: Mapping[str, Any]) -> str: ...

    async def insert_logs(self, record_id: str, entries: List[Dict[str, Any]]) -> None: ...


class WorkflowRecorder:
    """
    Append-only log of stage outcomes plus a per-stage overview.

    One recorder belongs to exactly one analysis run. Entries are never
    modified after they are appended; the overview keeps the latest status
    for each stage in order of first appearance.
    """

    def __init__(self, request_label: str = ""):
        self.request_label = request_label
        self._entries: List[WorkflowLogEntry] = []
        self._overview: Dict[str, OverviewRow] = {}

    def record(
        self,
        stage: str,
        status: StageStatus,
        message: str,
        meta: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowLogEntry:
        status = StageStatus(status)
        entry = WorkflowLogEntry(
            stage=stage,
            status=status,
            message=message,
            timestamp_utc=_utc_now_iso(),
            meta=dict(meta) if meta is not None else None,
        )
        self._entries.append(entry)
        # Insertion order is kept when an existing key is overwritten
        self._overview[stage] = OverviewRow(
            stage=stage,
            status=status,
            message=message,
            timestamp_utc=entry.timestamp_utc,
        )
        workflow_logger.log(
            _LOG_LEVELS[status],
            "[%s] %s %s: %s",
            self.request_label or "-",
            stage,
            status.value,
            message,
        )
        return entry

    # Convenience wrappers
    def start(self, stage: str, message: str, meta: Optional[Mapping[str, Any]] = None) -> WorkflowLogEntry:
        return self.record(stage, StageStatus.START, message, meta)

    def success(self, stage: str, message: str, meta: Optional[Mapping[str, Any]] = None) -> WorkflowLogEntry:
        return self.record(stage, StageStatus.SUCCESS, message, meta)

    def error(self, stage: str, message: str, meta: Optional[Mapping[str, Any]] = None) -> WorkflowLogEntry:
        return self.record(stage, StageStatus.ERROR, message, meta)

    def skip(self, stage: str, message: str, meta: Optional[Mapping[str, Any]] = None) -> WorkflowLogEntry:
        return self.record(stage, StageStatus.SKIP, message, meta)

    def info(self, stage: str, message: str, meta: Optional[Mapping[str, Any]] = None) -> WorkflowLogEntry:
        return self.record(stage, StageStatus.INFO, message, meta)

    @property
    def entries(self) -> Tuple[WorkflowLogEntry, ...]:
        return tuple(self._entries)

    @property
    def overview(self) -> Tuple[OverviewRow, ...]:
        return tuple(self._overview.values())

    async def persist(
        self,
        store: Optional[AuditStore],
        request: InputRequest,
        identity: ResolvedIdentity,
        normalized_name: Optional[str],
        timeout_seconds: float,
        status: str = "completed",
        error: Optional[str] = None,
    ) -> Optional[str]:
        """Best-effort write of the request and its log trail.

        Never raises for audit failures. Returns the stored request id when the
        write succeeded, otherwise ``None``.
        """
        if store is None:
            self.skip(STAGE_PERSIST, "Audit store not configured")
            return None
        if not request.requester_id:
            self.skip(STAGE_PERSIST, "Anonymous request; audit trail not stored")
            return None

        self.start(STAGE_PERSIST, "Writing audit trail")
        record = {
            "user_id": request.requester_id,
            "source": request.input_source or "text",
            "input_text": request.raw_name,
            "normalized_name": normalized_name,
            "rxcui": identity.registry_id,
            "status": status,
            "error": error,
            "analyzed_at": _utc_now_iso(),
        }
        # Snapshot before the persist outcome itself is appended
        rows = [entry.to_dict() for entry in self._entries]

        async def _write() -> str:
            record_id = await store.insert_request(record)
            await store.insert_logs(record_id, rows)
            return record_id

        try:
            record_id = await asyncio.wait_for(_write(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            self.error(STAGE_PERSIST, f"Audit store did not answer within {timeout_seconds:g}s")
            return None
        except (AuditStoreError, aiohttp.ClientError, ValueError) as exc:
            self.error(STAGE_PERSIST, f"Audit write failed: {exc}")
            return None

        self.success(STAGE_PERSIST, "Audit trail stored", {"record_id": record_id, "entries": len(rows)})
        return record_id
