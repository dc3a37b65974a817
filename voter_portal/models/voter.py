from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from .reference import new_id, utcnow


class Voter(SQLModel, table=True):
    """
    An enrolled citizen (the owner of references).

    Only the fields the reference pipeline needs live here; documents and
    elector details belong to the enrollment service.
    """

    __tablename__ = "voters"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=36)

    full_name: str = Field(max_length=255)

    # canonical 10-digit national number
    contact: str = Field(index=True, max_length=15)
    email: Optional[str] = Field(default=None, index=True)

    is_verified: bool = Field(default=False, index=True)

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
