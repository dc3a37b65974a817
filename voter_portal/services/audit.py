from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlmodel import col, select

from ..database import SessionFactory, session_scope
from ..models.audit_log import AuditAction, AuditLog
from .contact import mask_contact

logger = logging.getLogger(__name__)

ENTITY_REFERENCE = "Reference"


@dataclass(frozen=True)
class RequestMeta:
    """Client metadata copied from the HTTP request into audit entries."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def _value(v: Any) -> Any:
    # enums -> their string value so snapshots stay JSON-friendly
    return getattr(v, "value", v)


def reference_audit_values(ref: Mapping[str, Any], *fields: str) -> Dict[str, Any]:
    """Pick `fields` from a reference snapshot, masking the contact number."""
    out: Dict[str, Any] = {}
    for name in fields:
        v = ref.get(name)
        if name == "reference_contact":
            v = mask_contact(v)
        out[name] = _value(v)
    return out


class AuditRecorder:
    """
    Append-only audit trail for reference writes.

    Every public method is best-effort: a failed write is logged and
    swallowed, so it can never fail or roll back the business operation
    that triggered it.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def record(
        self,
        *,
        entity_type: str,
        entity_id: str,
        action: AuditAction,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        admin_id: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Optional[AuditLog]:
        meta = meta or RequestMeta()
        entry = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_values=old_values,
            new_values=new_values,
            user_id=user_id,
            admin_id=admin_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        try:
            with session_scope(self.session_factory) as session:
                session.add(entry)
        except Exception as e:
            logger.error(
                "Failed to create audit log (entity=%s id=%s action=%s): %s",
                entity_type,
                entity_id,
                _value(action),
                e,
            )
            return None

        logger.info(
            "Audit log created (entity=%s id=%s action=%s user=%s admin=%s ip=%s)",
            entity_type,
            entity_id,
            _value(action),
            user_id,
            admin_id,
            meta.ip_address,
        )
        return entry

    def record_create(
        self,
        user_id: str,
        references: Iterable[Mapping[str, Any]],
        meta: Optional[RequestMeta] = None,
    ) -> List[AuditLog]:
        """
        One CREATE entry per reference; the voter is the actor.
        Each entry succeeds or fails on its own.
        """
        written: List[AuditLog] = []
        for ref in references:
            new_values = reference_audit_values(ref, "reference_name", "reference_contact")
            new_values["user_id"] = user_id
            new_values["status"] = _value(ref.get("status"))
            entry = self.record(
                entity_type=ENTITY_REFERENCE,
                entity_id=str(ref.get("id")),
                action=AuditAction.CREATE,
                old_values=None,
                new_values=new_values,
                user_id=user_id,
                admin_id=None,
                meta=meta,
            )
            if entry is not None:
                written.append(entry)
        return written

    def record_status_change(
        self,
        reference_id: str,
        old: Mapping[str, Any],
        new: Mapping[str, Any],
        admin_id: Optional[str],
        meta: Optional[RequestMeta] = None,
    ) -> Optional[AuditLog]:
        """One UPDATE entry; the administrator is the actor, never the owning voter."""
        return self.record(
            entity_type=ENTITY_REFERENCE,
            entity_id=reference_id,
            action=AuditAction.UPDATE,
            old_values=reference_audit_values(old, "status", "reference_contact"),
            new_values=reference_audit_values(new, "status", "reference_contact"),
            user_id=None,
            admin_id=admin_id,
            meta=meta,
        )

    def list_for_entity(self, entity_id: str) -> List[AuditLog]:
        with self.session_factory() as session:
            q = (
                select(AuditLog)
                .where(AuditLog.entity_id == entity_id)
                .order_by(col(AuditLog.created_at).asc())
            )
            return list(session.exec(q).all())
