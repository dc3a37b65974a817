from __future__ import annotations

import json
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx

from voter_portal.models.reference import ReferenceStatus
from voter_portal.services.search_index import (
    HttpSearchIndexer,
    NullSearchIndexer,
    SearchIndexConfig,
    build_search_indexer,
    reference_document,
)

SNAP = {
    "id": "ref-1",
    "user_id": "voter-1",
    "reference_name": "Anil",
    "reference_contact": "9876500001",
    "status": ReferenceStatus.CONTACTED,
    "whatsapp_sent": True,
    "status_updated_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    "created_at": datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc),
    "updated_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
}


def test_reference_document_is_json_ready():
    doc = reference_document(SNAP, SimpleNamespace(full_name="Ravi Kumar", contact="9876500000"))

    assert doc["status"] == "CONTACTED"
    assert doc["created_at"] == "2024-05-01T11:00:00+00:00"
    assert doc["user_name"] == "Ravi Kumar"
    assert doc["user_contact"] == "9876500000"
    json.dumps(doc)


async def test_http_indexer_upserts_by_id():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"result": "updated"})

    config = SearchIndexConfig(url="http://search.test:9200/", index="references")
    indexer = HttpSearchIndexer(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    assert await indexer.index_reference(SNAP) is True
    method, url, body = seen[0]
    assert method == "PUT"
    assert url == "http://search.test:9200/references/_doc/ref-1"
    assert body["id"] == "ref-1"


async def test_http_indexer_failure_returns_false():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "cluster red"})

    indexer = HttpSearchIndexer(
        SearchIndexConfig(url="http://search.test:9200"),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    assert await indexer.index_reference(SNAP) is False


async def test_null_indexer_when_unconfigured():
    indexer = build_search_indexer(SearchIndexConfig(url=""))
    assert isinstance(indexer, NullSearchIndexer)
    assert await indexer.index_reference(SNAP) is True
    await indexer.aclose()
