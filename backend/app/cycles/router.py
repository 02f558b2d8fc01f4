from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.auth.deps import get_current_identity
from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.security import Identity
from app.cache.client import CacheClient, get_cache
from app.cycles import service
from app.cycles.schemas import (
    CycleCreateRequest,
    CycleOut,
    CyclePatchRequest,
    CycleStudentOut,
    EnrollmentOut,
    EnrollmentPatchRequest,
    EnrollRequest,
    ProgramCreateRequest,
    ProgramOut,
)
from app.db.session import get_db

router = APIRouter()
programs_router = APIRouter()


class CycleListResponse(BaseModel):
    items: list[CycleOut]
    total: int
    limit: int
    offset: int


@programs_router.post("", response_model=ProgramOut, status_code=status.HTTP_201_CREATED)
def create_program(
    payload: ProgramCreateRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.create_program(db, cache, payload)


@programs_router.get("", response_model=list[ProgramOut])
def list_programs(db: Session = Depends(get_db), _: Identity = Depends(get_current_identity)):
    return service.list_programs(db)


@router.get("", response_model=CycleListResponse)
def list_cycles(
    status_filter: str | None = Query(default=None, alias="status"),
    program_id: int | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: Identity = Depends(get_current_identity),
):
    rows, total = service.list_cycles(db, status=status_filter, program_id=program_id, limit=limit, offset=offset)
    return CycleListResponse(
        items=[CycleOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=CycleOut, status_code=status.HTTP_201_CREATED)
def create_cycle(
    payload: CycleCreateRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.create_cycle(db, cache, payload, acting_user_id=identity.user_id)


@router.get("/{cycle_id}", response_model=CycleOut)
def get_cycle(
    cycle_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    _: Identity = Depends(get_current_identity),
):
    return service.get_cycle(db, cache, cycle_id)


@router.patch("/{cycle_id}", response_model=CycleOut)
def update_cycle(
    cycle_id: int,
    payload: CyclePatchRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.update_cycle(db, cache, cycle_id, payload, acting_user_id=identity.user_id)


@router.delete("/{cycle_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cycle(
    cycle_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles("admin")),
):
    service.delete_cycle(db, cache, cycle_id, acting_user_id=identity.user_id)


@router.get("/{cycle_id}/students", response_model=list[CycleStudentOut])
def list_students(
    cycle_id: int,
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.list_cycle_students(db, cycle_id)


@router.post("/{cycle_id}/enroll", response_model=EnrollmentOut, status_code=status.HTTP_201_CREATED)
def enroll(
    cycle_id: int,
    payload: EnrollRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.enroll(
        db,
        cache,
        cycle_id=cycle_id,
        user_id=payload.user_id,
        payment_status=payload.payment_status,
        total_paid=payload.total_paid,
        notes=payload.notes,
    )


@router.patch("/{cycle_id}/enrollments/{enrollment_id}", response_model=EnrollmentOut)
def update_enrollment(
    cycle_id: int,
    enrollment_id: int,
    payload: EnrollmentPatchRequest,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.update_enrollment(db, cache, cycle_id, enrollment_id, payload)


@router.delete("/{cycle_id}/enrollments/{enrollment_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_enrollment(
    cycle_id: int,
    enrollment_id: int,
    db: Session = Depends(get_db),
    cache: CacheClient = Depends(get_cache),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    service.remove_enrollment(db, cache, cycle_id, enrollment_id, acting_user_id=identity.user_id)
