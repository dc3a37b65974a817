from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select

from ..database import SessionFactory, session_scope
from ..models.reference import Reference, ReferenceStatus, utcnow
from ..models.voter import Voter
from .contact import mask_contact
from .errors import DuplicateReferenceError, PersistenceError, ReferenceNotFoundError
from .reference_validator import ValidatedReference

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Any]

SORTABLE_FIELDS = {
    "created_at": Reference.created_at,
    "updated_at": Reference.updated_at,
    "reference_name": Reference.reference_name,
}


def snapshot(reference: Reference) -> Snapshot:
    """Plain dict copy of a row, safe to hand to audit / indexing after the session closes."""
    return reference.model_dump()


class ReferenceStore:
    """
    Persistence for references.

    The only transactional boundary in the pipeline is create_many; every
    other write here is a single-row update on an already-committed row.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    # -------------------------
    # Reads
    # -------------------------

    def get_voter(self, user_id: str) -> Optional[Voter]:
        with self.session_factory() as session:
            return session.get(Voter, user_id)

    def get(self, reference_id: str) -> Optional[Reference]:
        with self.session_factory() as session:
            return session.get(Reference, reference_id)

    def find_existing(self, user_id: str, contacts: Iterable[str]) -> List[Reference]:
        """Existing references of this voter whose contact is in `contacts` (single read)."""
        wanted = sorted(set(contacts))
        if not wanted:
            return []
        with self.session_factory() as session:
            q = select(Reference).where(
                Reference.user_id == user_id,
                col(Reference.reference_contact).in_(wanted),
            )
            return list(session.exec(q).all())

    def list_for_user(self, user_id: str) -> List[Reference]:
        with self.session_factory() as session:
            q = (
                select(Reference)
                .where(Reference.user_id == user_id)
                .order_by(col(Reference.created_at).desc())
            )
            return list(session.exec(q).all())

    def search(
        self,
        *,
        q: Optional[str] = None,
        status: Optional[ReferenceStatus] = None,
        user_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[Reference], int]:
        """
        Admin listing with filters + pagination. Returns (rows, total).
        `q` matches reference name (case-insensitive) or contact digits.
        """
        filters = []
        if q and q.strip():
            term = q.strip()
            filters.append(
                or_(
                    col(Reference.reference_name).ilike(f"%{term}%"),
                    col(Reference.reference_contact).contains(term),
                )
            )
        if status:
            filters.append(Reference.status == status)
        if user_id:
            filters.append(Reference.user_id == user_id)

        order_col = col(SORTABLE_FIELDS.get(sort_by, Reference.created_at))
        ordering = order_col.asc() if str(sort_order).lower() == "asc" else order_col.desc()

        count_q = select(func.count()).select_from(Reference)
        rows_q = select(Reference)
        if filters:
            count_q = count_q.where(*filters)
            rows_q = rows_q.where(*filters)

        with self.session_factory() as session:
            total = session.exec(count_q).one()
            rows = session.exec(rows_q.order_by(ordering).offset(offset).limit(limit)).all()
            return list(rows), int(total)

    # -------------------------
    # Writes
    # -------------------------

    def create_many(self, user_id: str, items: Sequence[ValidatedReference]) -> List[Reference]:
        """
        Create all references in one unit of work: every row or none.

        Initial state: status=PENDING, whatsapp_sent=False, whatsapp_sent_at=None.
        Any database error rolls the whole batch back and raises PersistenceError.
        """
        if not items:
            return []

        now = utcnow()
        rows = [
            Reference(
                user_id=user_id,
                reference_name=item.reference_name,
                reference_contact=item.reference_contact,
                status=ReferenceStatus.PENDING,
                whatsapp_sent=False,
                whatsapp_sent_at=None,
                created_at=now,
                updated_at=now,
            )
            for item in items
        ]

        try:
            with session_scope(self.session_factory) as session:
                for row in rows:
                    session.add(row)
                    # flush per row so a failure mid-batch is visible before commit
                    session.flush()
        except IntegrityError as e:
            logger.warning(
                "Reference batch for user=%s hit an integrity constraint (contacts=%s)",
                user_id,
                [mask_contact(r.reference_contact) for r in rows],
            )
            raise DuplicateReferenceError("Failed to add references") from e
        except SQLAlchemyError as e:
            logger.error(
                "Reference batch creation failed for user=%s (%d rows, contacts=%s): %s",
                user_id,
                len(rows),
                [mask_contact(r.reference_contact) for r in rows],
                e.__class__.__name__,
            )
            raise PersistenceError("Failed to add references", code="REFERENCE_CREATION_FAILED") from e

        logger.info("Created %d reference(s) for user=%s", len(rows), user_id)
        return rows

    def update_delivery_status(
        self,
        reference_id: str,
        sent: bool,
        sent_at: Optional[datetime] = None,
    ) -> Optional[Snapshot]:
        """
        Record the gateway outcome for one reference. Idempotent.
        Returns the updated snapshot, or None if the row no longer exists.
        """
        try:
            with session_scope(self.session_factory) as session:
                ref = session.get(Reference, reference_id)
                if ref is None:
                    return None
                ref.whatsapp_sent = bool(sent)
                ref.whatsapp_sent_at = (sent_at or utcnow()) if sent else None
                ref.updated_at = utcnow()
                session.add(ref)
                session.flush()
                return snapshot(ref)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to update delivery status for reference {reference_id}",
                code="REFERENCE_UPDATE_FAILED",
            ) from e

    def update_status(self, reference_id: str, new_status: ReferenceStatus) -> Tuple[Snapshot, Snapshot]:
        """
        Set a new status (admin path). Always stamps status_updated_at.
        Returns (old_snapshot, new_snapshot).
        """
        try:
            with session_scope(self.session_factory) as session:
                ref = session.get(Reference, reference_id)
                if ref is None:
                    raise ReferenceNotFoundError("Reference not found")

                old = snapshot(ref)
                now = utcnow()
                ref.status = ReferenceStatus(new_status)
                ref.status_updated_at = now
                ref.updated_at = now
                session.add(ref)
                session.flush()
                return old, snapshot(ref)
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to update reference status",
                code="REFERENCE_UPDATE_FAILED",
            ) from e
