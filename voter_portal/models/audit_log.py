from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Column
from sqlalchemy.types import JSON
from sqlmodel import SQLModel, Field

from .reference import new_id, utcnow


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"


class AuditLog(SQLModel, table=True):
    """
    Append-only audit trail.

    - user_id is set when a voter performed the write, admin_id when an
      administrator did; the two are never merged into one actor column.
    - old_values / new_values hold snapshots with contact numbers masked.
    """

    __tablename__ = "audit_logs"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)

    entity_type: str = Field(index=True, max_length=50)
    entity_id: str = Field(index=True, max_length=36)
    action: AuditAction = Field(index=True)

    old_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    new_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    user_id: Optional[str] = Field(default=None, index=True, max_length=36)
    admin_id: Optional[str] = Field(default=None, index=True, max_length=36)

    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)
