"""DailyMed v2 label registry client."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from ..models import LabelDocument
from .http import RegistryHTTPClient

logger = logging.getLogger(__name__)

_DATE_FORMATS = ("%b %d, %Y", "%B %d, %Y", "%Y-%m-%d", "%Y%m%d")


def parse_published_date(raw: str) -> Optional[datetime]:
    """Parse DailyMed publication dates such as ``"Jan 05, 2024"``."""
    text = (raw or "").strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def select_latest(documents: List[LabelDocument]) -> Optional[LabelDocument]:
    """Most recently published document; the first in the list wins ties."""
    latest: Optional[LabelDocument] = None
    latest_date = datetime.min
    for document in documents:
        published = parse_published_date(document.published_date) or datetime.min
        if latest is None or published > latest_date:
            latest, latest_date = document, published
    return latest


class DailyMedClient(RegistryHTTPClient):
    registry_name = "DailyMed"

    async def search_documents(
        self,
        registry_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> List[LabelDocument]:
        if registry_id:
            params = {"rxcui": registry_id}
        elif name:
            params = {"drug_name": name}
        else:
            raise ValueError("search_documents needs a registry_id or a name")

        data = await self._get_json("spls.json", params)
        documents: List[LabelDocument] = []
        for raw in (data or {}).get("data") or []:
            if not isinstance(raw, dict) or not raw.get("setid"):
                continue
            documents.append(
                LabelDocument(
                    document_id=str(raw["setid"]),
                    title=str(raw.get("title") or ""),
                    published_date=str(raw.get("published_date") or ""),
                )
            )
        return documents

    async def get_section(self, document_id: str, section_code: str) -> Optional[str]:
        data = await self._get_json(
            f"spls/{document_id}/sections/{section_code}.json",
            allow_not_found=True,
        )
        if data is None:
            return None
        section = data.get("data")
        if not isinstance(section, dict):
            return None
        text = section.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        return text
