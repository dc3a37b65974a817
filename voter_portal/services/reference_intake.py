from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models.reference import Reference
from ..models.voter import Voter
from .audit import AuditRecorder, RequestMeta
from .background import TaskSupervisor
from .contact import mask_contact
from .dedup import partition_existing
from .errors import DuplicateReferenceError, PersistenceError, VoterNotFoundError
from .reference_store import ReferenceStore, snapshot
from .reference_validator import MAX_REFERENCES_PER_BATCH, CandidateInput, validate_references
from .search_index import SearchIndexer
from .whatsapp import DeliveryOutcome, NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class IntakeResult:
    """
    What submit_references reports back synchronously.

    notification_outcomes is only filled when the pipeline waits for delivery;
    otherwise notifications_pending is True and outcomes land on the rows
    (whatsapp_sent / whatsapp_sent_at) as each task finishes.
    """

    created: List[Reference]
    skipped: List[Reference]
    notification_outcomes: List[DeliveryOutcome] = field(default_factory=list)
    notifications_pending: bool = False
    message: str = ""

    @property
    def skipped_existing(self) -> int:
        return len(self.skipped)


def _intake_message(created: int, skipped: Sequence[Reference]) -> str:
    if created == 0 and skipped:
        masked = ", ".join(mask_contact(r.reference_contact) for r in skipped)
        return f"0 reference(s) added, {len(skipped)} already existed: {masked}"
    msg = f"{created} reference(s) added successfully"
    if skipped:
        msg += f", {len(skipped)} already existed"
    return msg


class ReferencePipeline:
    """
    Reference intake: validate -> dedup -> create (one transaction) -> fan out.

    After the creation commit, each new reference gets its own supervised task
    (notify -> record delivery status -> index) and the batch gets one audit
    task. None of those can fail the submission.
    """

    def __init__(
        self,
        *,
        store: ReferenceStore,
        dispatcher: NotificationDispatcher,
        audit: AuditRecorder,
        indexer: SearchIndexer,
        supervisor: TaskSupervisor,
        batch_limit: int = MAX_REFERENCES_PER_BATCH,
        wait_for_delivery: bool = False,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.audit = audit
        self.indexer = indexer
        self.supervisor = supervisor
        self.batch_limit = batch_limit
        self.wait_for_delivery = wait_for_delivery

    def _require_voter(self, user_id: str) -> Voter:
        voter = self.store.get_voter(user_id)
        if voter is None:
            raise VoterNotFoundError("User not found")
        return voter

    async def submit_references(
        self,
        user_id: str,
        candidates: Sequence[CandidateInput],
        meta: Optional[RequestMeta] = None,
        *,
        wait_for_delivery: Optional[bool] = None,
    ) -> IntakeResult:
        """
        Raises VoterNotFoundError, ReferenceValidationError or PersistenceError.
        Everything after the creation commit is best-effort.
        """
        voter, created, skipped = await asyncio.to_thread(self._persist_batch, user_id, candidates)

        if not created:
            logger.info(
                "All %d submitted reference(s) already exist for user=%s",
                len(skipped),
                user_id,
            )
            return IntakeResult(
                created=[],
                skipped=skipped,
                message=_intake_message(0, skipped),
            )

        delivery_tasks = [
            self.supervisor.spawn(
                self._deliver(reference, voter),
                name=f"reference-delivery:{reference.id}",
            )
            for reference in created
        ]
        self.supervisor.spawn(
            self._audit_created(user_id, [snapshot(r) for r in created], meta),
            name=f"reference-audit:{user_id}",
        )

        wait = self.wait_for_delivery if wait_for_delivery is None else wait_for_delivery
        outcomes: List[DeliveryOutcome] = []
        if wait:
            results = await asyncio.gather(*delivery_tasks, return_exceptions=True)
            outcomes = [
                r if isinstance(r, DeliveryOutcome) else DeliveryOutcome(reference_id=ref.id, sent=False)
                for ref, r in zip(created, results)
            ]

        logger.info(
            "References added (user=%s created=%d skipped=%d whatsapp_sent=%s)",
            user_id,
            len(created),
            len(skipped),
            sum(1 for o in outcomes if o.sent) if wait else "pending",
        )

        return IntakeResult(
            created=created,
            skipped=skipped,
            notification_outcomes=outcomes,
            notifications_pending=not wait,
            message=_intake_message(len(created), skipped),
        )

    def _persist_batch(
        self,
        user_id: str,
        candidates: Sequence[CandidateInput],
    ) -> Tuple[Voter, List[Reference], List[Reference]]:
        """
        Blocking part of intake (runs in a worker thread): voter lookup,
        validation, dedup and the creation transaction.

        A concurrent submission can insert one of our contacts between the
        dedup read and the insert. The batch is then re-partitioned once so
        the contact is reported as skipped instead of failing the request.
        """
        voter = self._require_voter(user_id)
        validated = validate_references(voter.contact, candidates, limit=self.batch_limit)

        dedup = partition_existing(self.store, user_id, validated)
        if not dedup.to_create:
            return voter, [], dedup.skipped

        try:
            created = self.store.create_many(user_id, dedup.to_create)
        except DuplicateReferenceError:
            logger.warning("Reference batch for user=%s raced another submission; re-checking existing", user_id)
            dedup = partition_existing(self.store, user_id, validated)
            if not dedup.to_create:
                return voter, [], dedup.skipped
            created = self.store.create_many(user_id, dedup.to_create)

        return voter, created, dedup.skipped

    def list_references(self, user_id: str) -> List[Reference]:
        self._require_voter(user_id)
        return self.store.list_for_user(user_id)

    # -------------------------
    # Side effects (supervised tasks)
    # -------------------------

    async def _deliver(self, reference: Reference, voter: Voter) -> DeliveryOutcome:
        outcome = await self.dispatcher.notify(reference, voter)

        try:
            updated = await asyncio.to_thread(self.store.update_delivery_status, reference.id, outcome.sent)
        except PersistenceError as e:
            logger.error("Error updating WhatsApp status for reference=%s: %s", reference.id, e)
            return outcome

        if updated is not None:
            await self.indexer.index_reference(updated, voter)
        return outcome

    async def _audit_created(
        self,
        user_id: str,
        references: List[Dict[str, Any]],
        meta: Optional[RequestMeta],
    ) -> None:
        await asyncio.to_thread(self.audit.record_create, user_id, references, meta)
