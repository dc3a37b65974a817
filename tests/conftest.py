from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from sqlmodel import select

from voter_portal.config import Settings
from voter_portal.database import build_engine, init_db, session_factory_for
from voter_portal.models.audit_log import AuditLog
from voter_portal.models.reference import Reference
from voter_portal.models.voter import Voter
from voter_portal.services.container import Services, build_services

VOTER_CONTACT = "9876500000"

Responder = Callable[[Dict[str, Any], httpx.Request], httpx.Response]


def gateway_ok(payload: Dict[str, Any], request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"messages": [{"id": f"wamid.{payload['to']}.{payload['type']}"}]})


def gateway_error(status: int, code: int, message: str = "error") -> httpx.Response:
    return httpx.Response(status, json={"error": {"code": code, "type": "OAuthException", "message": message}})


class FakeGateway:
    """Records every message POST and answers through `responder`."""

    def __init__(self, responder: Optional[Responder] = None) -> None:
        self.responder = responder or gateway_ok
        self.requests: List[Dict[str, Any]] = []
        self.urls: List[str] = []
        self.headers: List[httpx.Headers] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        self.urls.append(str(request.url))
        self.headers.append(request.headers)
        return self.responder(payload, request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def types_sent_to(self, to: str) -> List[str]:
        return [p["type"] for p in self.requests if p["to"] == to]


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "whatsapp_api_url": "https://graph.test/v18.0",
        "whatsapp_access_token": "test-token",
        "whatsapp_phone_number_id": "1234567890",
        "search_index_url": "",
        "database_url": "sqlite://",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def engine(tmp_path):
    # file-backed so store calls made from worker threads get their own connections
    eng = build_engine(f"sqlite:///{tmp_path / 'portal.sqlite'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return session_factory_for(engine)


@pytest.fixture
def voter(session_factory) -> Voter:
    with session_factory() as session:
        v = Voter(full_name="Ravi Kumar", contact=VOTER_CONTACT)
        session.add(v)
        session.commit()
        session.refresh(v)
        return v


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def build(engine, gateway):
    """
    build(**settings_overrides) -> Services wired to the in-memory engine and
    the fake gateway. Delivery is awaited inline unless wait_for_delivery=False.
    """

    def _build(*, wait_for_delivery: bool = True, indexer=None, gateway_client=None, **overrides) -> Services:
        return build_services(
            make_settings(**overrides),
            engine=engine,
            gateway_client=gateway_client or gateway.client(),
            indexer=indexer,
            wait_for_delivery=wait_for_delivery,
        )

    return _build


def all_references(session_factory, user_id: str) -> List[Reference]:
    with session_factory() as session:
        return list(session.exec(select(Reference).where(Reference.user_id == user_id)).all())


def all_audit_logs(session_factory) -> List[AuditLog]:
    with session_factory() as session:
        return list(session.exec(select(AuditLog)).all())


def reload(session_factory, reference_id: str) -> Reference:
    with session_factory() as session:
        return session.get(Reference, reference_id)
