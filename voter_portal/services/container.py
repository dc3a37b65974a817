from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.engine import Engine

from ..database import SessionFactory, get_engine, session_factory_for
from .audit import AuditRecorder
from .background import TaskSupervisor
from .reference_intake import ReferencePipeline
from .reference_store import ReferenceStore
from .search_index import SearchIndexConfig, SearchIndexer, build_search_indexer
from .status_workflow import StatusWorkflow
from .whatsapp import GatewayConfig, NotificationDispatcher


@dataclass
class Services:
    """Everything the routers need, wired once per app."""

    session_factory: SessionFactory
    store: ReferenceStore
    audit: AuditRecorder
    dispatcher: NotificationDispatcher
    indexer: SearchIndexer
    supervisor: TaskSupervisor
    pipeline: ReferencePipeline
    workflow: StatusWorkflow


def build_services(
    settings: Any,
    *,
    engine: Optional[Engine] = None,
    gateway_client: Optional[httpx.AsyncClient] = None,
    indexer: Optional[SearchIndexer] = None,
    wait_for_delivery: Optional[bool] = None,
) -> Services:
    """
    Build collaborators from settings. Anything passed explicitly wins,
    which is how tests swap in an in-memory engine or a fake gateway.
    """
    factory = session_factory_for(engine or get_engine())
    store = ReferenceStore(factory)
    audit = AuditRecorder(factory)
    dispatcher = NotificationDispatcher(GatewayConfig.from_settings(settings), client=gateway_client)
    indexer = indexer or build_search_indexer(SearchIndexConfig.from_settings(settings))
    supervisor = TaskSupervisor(max_concurrency=settings.background_max_concurrency)

    pipeline = ReferencePipeline(
        store=store,
        dispatcher=dispatcher,
        audit=audit,
        indexer=indexer,
        supervisor=supervisor,
        batch_limit=settings.reference_batch_limit,
        wait_for_delivery=(
            settings.reference_wait_for_delivery if wait_for_delivery is None else wait_for_delivery
        ),
    )
    workflow = StatusWorkflow(
        store=store,
        audit=audit,
        indexer=indexer,
        supervisor=supervisor,
        forward_only=settings.reference_forward_only_status,
    )
    return Services(
        session_factory=factory,
        store=store,
        audit=audit,
        dispatcher=dispatcher,
        indexer=indexer,
        supervisor=supervisor,
        pipeline=pipeline,
        workflow=workflow,
    )
