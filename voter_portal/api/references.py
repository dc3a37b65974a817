from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field as PydField

from ..models.reference import Reference, ReferenceStatus
from ..services.audit import RequestMeta
from ..services.container import Services
from ..services.reference_validator import ReferenceCandidate
from ..services.status_workflow import status_change_payload
from .deps import get_request_meta, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/references", tags=["references"])


# -----------------------------
# Schemas (do NOT use DB model as input)
# -----------------------------

class ReferenceIn(BaseModel):
    """
    One nominated contact. Format checks here are coarse; the intake
    validator does normalization, self-reference and duplicate checks.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    reference_name: str = PydField(..., min_length=1, max_length=255)
    reference_contact: str = PydField(..., min_length=10, max_length=15, pattern=r"^[\d\s\-+]+$")


class ReferencesSubmit(BaseModel):
    # upper bound is REFERENCE_BATCH_LIMIT, enforced by the intake validator
    references: List[ReferenceIn] = PydField(..., min_length=1)


class NotificationOutcomeOut(BaseModel):
    id: str
    sent: bool


class IntakeResponse(BaseModel):
    success: bool = True
    message: str
    created: List[Reference]
    skipped_existing: int
    notification_outcomes: List[NotificationOutcomeOut]
    notifications_pending: bool


class ReferenceList(BaseModel):
    success: bool = True
    references: List[Reference]


class ReferencePage(BaseModel):
    items: List[Reference]
    total: int
    page: int
    limit: int


class ReferenceStatusUpdate(BaseModel):
    """
    Admin status change. admin_id identifies the reviewing administrator
    (supplied by the auth layer in front of this service).
    """
    status: ReferenceStatus
    admin_id: str = PydField(..., min_length=1)


class StatusUpdateResponse(BaseModel):
    success: bool = True
    message: str
    old: ReferenceStatus
    new: ReferenceStatus
    status_updated_at: Optional[datetime] = None
    reference: Dict[str, Any]


# -----------------------------
# Routes
# -----------------------------

@router.get("/admin/all", response_model=ReferencePage)
def list_all_references(
    q: Optional[str] = None,
    status: Optional[ReferenceStatus] = None,
    user_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["created_at", "updated_at"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    services: Services = Depends(get_services),
) -> ReferencePage:
    """
    Admin listing with filters + pagination, served from the primary store.
    """
    rows, total = services.store.search(
        q=q,
        status=status,
        user_id=user_id,
        limit=limit,
        offset=(page - 1) * limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return ReferencePage(items=rows, total=total, page=page, limit=limit)


@router.put("/admin/{reference_id}/status", response_model=StatusUpdateResponse)
async def update_reference_status(
    reference_id: str,
    payload: ReferenceStatusUpdate,
    services: Services = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> StatusUpdateResponse:
    """
    Set a reference's status (PENDING / CONTACTED / APPLIED).

    Audit + search index updates are scheduled in the background.
    """
    change = await services.workflow.change_status(reference_id, payload.status, payload.admin_id, meta)
    body = status_change_payload(change)
    return StatusUpdateResponse(
        message="Reference status updated successfully",
        old=body["old"],
        new=body["new"],
        status_updated_at=change.new.get("status_updated_at"),
        reference=change.new,
    )


@router.post("/{user_id}", response_model=IntakeResponse, status_code=201)
async def add_references(
    user_id: str,
    payload: ReferencesSubmit,
    services: Services = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> IntakeResponse:
    """
    Submit a batch of references for a voter.

    - Already-nominated contacts are skipped (reported, not an error).
    - WhatsApp notifications run in the background unless the pipeline is
      configured to wait; a failed notification never fails the request.
    """
    candidates = [
        ReferenceCandidate(reference_name=r.reference_name, reference_contact=r.reference_contact)
        for r in payload.references
    ]
    result = await services.pipeline.submit_references(user_id, candidates, meta)

    logger.info(
        "References submitted via API (user=%s submitted=%d created=%d skipped=%d)",
        user_id,
        len(candidates),
        len(result.created),
        result.skipped_existing,
    )

    return IntakeResponse(
        message=result.message,
        created=result.created,
        skipped_existing=result.skipped_existing,
        notification_outcomes=[NotificationOutcomeOut(**o.as_dict()) for o in result.notification_outcomes],
        notifications_pending=result.notifications_pending,
    )


@router.get("/{user_id}", response_model=ReferenceList)
def get_references(user_id: str, services: Services = Depends(get_services)) -> ReferenceList:
    return ReferenceList(references=services.pipeline.list_references(user_id))
