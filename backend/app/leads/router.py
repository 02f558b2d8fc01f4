from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.security import Identity
from app.cache.client import CacheClient, get_cache
from app.db.session import get_db
from app.leads import service
from app.leads.schemas import (
    ActivityCreateRequest,
    ActivityOut,
    ConvertRequest,
    ConvertResponse,
    DealOut,
    LeadCreateRequest,
    LeadListResponse,
    LeadOut,
    LeadPatchRequest,
)

router = APIRouter()


@router.get("", response_model=LeadListResponse)
def list_leads(
    status_filter: str | None = Query(default=None, alias="status"),
    source: str | None = None,
    assigned_to: int | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    rows, total = service.list_leads(
        db, status=status_filter, source=source, assigned_to=assigned_to, limit=limit, offset=offset
    )
    return LeadListResponse(
        items=[LeadOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=LeadOut, status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadCreateRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.create_lead(db, cache, payload, acting_user_id=identity.user_id)


@router.get("/{lead_id}", response_model=LeadOut)
def get_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.get_lead(db, cache, lead_id)


@router.patch("/{lead_id}", response_model=LeadOut)
def update_lead(
    lead_id: int,
    payload: LeadPatchRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.update_lead(db, cache, lead_id, payload, acting_user_id=identity.user_id)


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(
    lead_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles("admin")),
):
    service.delete_lead(db, cache, lead_id, acting_user_id=identity.user_id)


@router.post("/{lead_id}/activities", response_model=ActivityOut, status_code=status.HTTP_201_CREATED)
def add_activity(
    lead_id: int,
    payload: ActivityCreateRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.add_activity(
        db,
        lead_id,
        activity_type=payload.activity_type,
        description=payload.description,
        acting_user_id=identity.user_id,
    )


@router.get("/{lead_id}/activities", response_model=list[ActivityOut])
def list_activities(
    lead_id: int,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.list_activities(db, lead_id)


@router.post("/{lead_id}/convert", response_model=ConvertResponse)
def convert(
    lead_id: int,
    payload: ConvertRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    deal = service.convert(
        db,
        cache,
        lead_id=lead_id,
        program_name=payload.program_name,
        amount=payload.amount,
        stage=payload.stage,
        expected_close_date=payload.expected_close_date,
        notes=payload.notes,
        acting_user_id=identity.user_id,
    )
    return ConvertResponse(lead_id=lead_id, deal=DealOut.model_validate(deal))
