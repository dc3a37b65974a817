from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..models.reference import REFERENCE_STATUS_ORDER, ReferenceStatus
from .audit import AuditRecorder, RequestMeta
from .background import TaskSupervisor
from .errors import InvalidStatusTransition, ReferenceNotFoundError
from .reference_store import ReferenceStore, Snapshot
from .search_index import SearchIndexer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChange:
    """
    Result of an admin status transition.
    old/new are full reference snapshots taken around the single-row update.
    """

    old: Snapshot
    new: Snapshot

    @property
    def old_status(self) -> ReferenceStatus:
        return ReferenceStatus(self.old["status"])

    @property
    def new_status(self) -> ReferenceStatus:
        return ReferenceStatus(self.new["status"])


# -------------------------
# Guard rails / policy
# -------------------------

def _rank(status: ReferenceStatus) -> int:
    return REFERENCE_STATUS_ORDER.index(ReferenceStatus(status))


def can_transition(
    current: ReferenceStatus,
    new_status: ReferenceStatus,
    *,
    forward_only: bool = False,
) -> Tuple[bool, str]:
    """
    Central guard for reference status changes.

    Rules:
    - Keeping the current status is always allowed (it still re-stamps status_updated_at).
    - By default any of PENDING / CONTACTED / APPLIED may be set directly,
      including backwards moves.
    - With forward_only=True, moving back down PENDING -> CONTACTED -> APPLIED is refused.
    """
    if current == new_status:
        return True, "noop"

    if forward_only and _rank(new_status) < _rank(current):
        return False, f"backward:{current.value}->{new_status.value}"

    return True, "ok"


class StatusWorkflow:
    """Administrator-driven reference status transitions."""

    def __init__(
        self,
        *,
        store: ReferenceStore,
        audit: AuditRecorder,
        indexer: SearchIndexer,
        supervisor: TaskSupervisor,
        forward_only: bool = False,
    ) -> None:
        self.store = store
        self.audit = audit
        self.indexer = indexer
        self.supervisor = supervisor
        self.forward_only = forward_only

    async def change_status(
        self,
        reference_id: str,
        new_status: ReferenceStatus,
        admin_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> StatusChange:
        """
        Apply a status update, then schedule audit + index updates.

        Only ReferenceNotFoundError, InvalidStatusTransition and PersistenceError
        can escape; audit and indexing run on the supervisor and are not awaited.
        Store calls run in a worker thread so the loop keeps serving gateway traffic.
        """
        new_status = ReferenceStatus(new_status)

        if self.forward_only:
            current = await asyncio.to_thread(self.store.get, reference_id)
            if current is None:
                raise ReferenceNotFoundError("Reference not found")
            allowed, why = can_transition(current.status, new_status, forward_only=True)
            if not allowed:
                raise InvalidStatusTransition(f"Status change not allowed ({why})")

        old, new = await asyncio.to_thread(self.store.update_status, reference_id, new_status)
        change = StatusChange(old=old, new=new)

        self.supervisor.spawn(
            self._after_change(reference_id, change, admin_id, meta),
            name=f"reference-status:{reference_id}",
        )

        logger.info(
            "Reference status updated (reference=%s user=%s %s->%s admin=%s)",
            reference_id,
            new.get("user_id"),
            change.old_status.value,
            change.new_status.value,
            admin_id,
        )
        return change

    async def _after_change(
        self,
        reference_id: str,
        change: StatusChange,
        admin_id: str,
        meta: Optional[RequestMeta],
    ) -> None:
        await asyncio.to_thread(self.audit.record_status_change, reference_id, change.old, change.new, admin_id, meta)
        voter = await asyncio.to_thread(self.store.get_voter, str(change.new.get("user_id")))
        await self.indexer.index_reference(change.new, voter)


def status_change_payload(change: StatusChange) -> Dict[str, Any]:
    return {"old": change.old_status.value, "new": change.new_status.value}
