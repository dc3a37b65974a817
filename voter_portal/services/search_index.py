from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchIndexConfig:
    url: str = ""
    index: str = "references"
    username: str = ""
    password: str = ""
    timeout_s: float = 5.0

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    @classmethod
    def from_settings(cls, settings: Any) -> "SearchIndexConfig":
        return cls(
            url=settings.search_index_url,
            index=settings.search_index_name,
            username=settings.search_index_username,
            password=settings.search_index_password,
            timeout_s=float(settings.search_index_timeout_s),
        )


def _iso(v: Any) -> Any:
    if isinstance(v, datetime):
        return v.isoformat()
    return getattr(v, "value", v)


def reference_document(ref: Mapping[str, Any], voter: Optional[Any] = None) -> Dict[str, Any]:
    """Search document for one reference snapshot (snake_case, JSON-ready)."""
    doc = {
        "id": ref.get("id"),
        "user_id": ref.get("user_id"),
        "reference_name": ref.get("reference_name"),
        "reference_contact": ref.get("reference_contact"),
        "status": _iso(ref.get("status")),
        "whatsapp_sent": bool(ref.get("whatsapp_sent")),
        "status_updated_at": _iso(ref.get("status_updated_at")),
        "created_at": _iso(ref.get("created_at")),
        "updated_at": _iso(ref.get("updated_at")),
    }
    if voter is not None:
        doc["user_name"] = getattr(voter, "full_name", None)
        doc["user_contact"] = getattr(voter, "contact", None)
    return doc


class SearchIndexer:
    """
    Best-effort propagation of references to a secondary read index.

    Callers fire and forget: index_reference never raises. Subclasses only
    implement _write.
    """

    async def index_reference(self, ref: Mapping[str, Any], voter: Optional[Any] = None) -> bool:
        ref_id = ref.get("id")
        try:
            await self._write(reference_document(ref, voter))
        except Exception as e:
            logger.warning("Failed to index reference %s: %s", ref_id, e)
            return False
        logger.debug("Reference indexed: %s", ref_id)
        return True

    async def _write(self, document: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class NullSearchIndexer(SearchIndexer):
    """Used when no index is configured: the primary store serves admin queries."""

    async def _write(self, document: Dict[str, Any]) -> None:
        return None


class HttpSearchIndexer(SearchIndexer):
    """
    Upsert-by-id against an Elasticsearch-compatible REST endpoint:
        PUT {url}/{index}/_doc/{id}
    """

    def __init__(self, config: SearchIndexConfig, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self._own_client = client is None
        auth = (config.username, config.password) if config.username else None
        self.client = client or httpx.AsyncClient(timeout=config.timeout_s, auth=auth)

    def document_url(self, doc_id: str) -> str:
        return f"{self.config.url.rstrip('/')}/{self.config.index}/_doc/{doc_id}"

    async def _write(self, document: Dict[str, Any]) -> None:
        r = await self.client.put(self.document_url(str(document["id"])), json=document)
        r.raise_for_status()

    async def aclose(self) -> None:
        if self._own_client:
            await self.client.aclose()


def build_search_indexer(config: SearchIndexConfig) -> SearchIndexer:
    if not config.is_configured:
        logger.info("Search index not configured; reference indexing is a no-op")
        return NullSearchIndexer()
    return HttpSearchIndexer(config)
