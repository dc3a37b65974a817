from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class ReferenceStatus(str, Enum):
    """
    Outreach state of a reference, set by administrators.
    Values are API-stable strings and are safe to store and display.
    """

    PENDING = "PENDING"
    CONTACTED = "CONTACTED"
    APPLIED = "APPLIED"


REFERENCE_STATUS_ORDER = (
    ReferenceStatus.PENDING,
    ReferenceStatus.CONTACTED,
    ReferenceStatus.APPLIED,
)


class Reference(SQLModel, table=True):
    """
    A third-party contact nominated by a voter to vouch for their enrollment.

    Notes:
    - reference_contact is always the canonical 10-digit national number
      (no country code, no separators).
    - (user_id, reference_contact) is unique; intake skips duplicates before
      they reach the constraint.
    - whatsapp_sent_at is set exactly when whatsapp_sent becomes True.
    - status_updated_at is only set by admin status transitions.
    """

    __tablename__ = "references"
    __table_args__ = (
        UniqueConstraint("user_id", "reference_contact", name="uq_references_user_contact"),
    )

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)

    user_id: str = Field(foreign_key="voters.id", index=True, max_length=36)

    reference_name: str = Field(max_length=255)
    reference_contact: str = Field(index=True, max_length=15)

    status: ReferenceStatus = Field(default=ReferenceStatus.PENDING, index=True)

    whatsapp_sent: bool = Field(default=False)
    whatsapp_sent_at: Optional[datetime] = Field(default=None)

    status_updated_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
