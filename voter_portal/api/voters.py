from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field as PydField
from sqlmodel import select

from ..models.voter import Voter
from ..services.contact import InvalidContactFormat, normalize_contact
from ..services.container import Services
from .deps import get_services

router = APIRouter(prefix="/voters", tags=["voters"])


class VoterCreate(BaseModel):
    """
    Minimal enrollment payload. The contact is stored in canonical
    10-digit form; references are checked against it.
    """
    full_name: str = PydField(..., min_length=1, max_length=255)
    contact: str = PydField(..., min_length=10, max_length=15)
    email: Optional[EmailStr] = None


@router.post("/", response_model=Voter, status_code=201)
def create_voter(payload: VoterCreate, services: Services = Depends(get_services)) -> Voter:
    try:
        contact = normalize_contact(payload.contact)
    except InvalidContactFormat:
        raise HTTPException(status_code=400, detail="Invalid contact number format")

    with services.session_factory() as session:
        existing = session.exec(select(Voter).where(Voter.contact == contact)).first()
        if existing:
            raise HTTPException(status_code=409, detail="A voter with this contact already exists")

        voter = Voter(
            full_name=payload.full_name.strip(),
            contact=contact,
            email=str(payload.email) if payload.email else None,
        )
        session.add(voter)
        session.commit()
        session.refresh(voter)
        return voter


@router.get("/{voter_id}", response_model=Voter)
def get_voter(voter_id: str, services: Services = Depends(get_services)) -> Voter:
    voter = services.store.get_voter(voter_id)
    if not voter:
        raise HTTPException(status_code=404, detail="Voter not found")
    return voter
