from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.auth.deps import get_current_identity
from app.auth.rbac import STAFF_ROLES, require_roles
from app.auth.schemas import UserOut
from app.auth.security import Identity
from app.db.session import get_db
from app.users import service
from app.users.schemas import UserListResponse, UserPatchRequest

router = APIRouter()


@router.get("", response_model=UserListResponse)
def list_users(
    role: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    rows, total = service.list_users(db, role=role, status=status_filter, limit=limit, offset=offset)
    return UserListResponse(
        items=[UserOut.model_validate(r) for r in rows],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return service.get_user_for(db, identity, user_id)


@router.patch("/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    payload: UserPatchRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles(*STAFF_ROLES)),
):
    return service.update_user(db, identity, user_id, payload)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_roles("admin")),
):
    service.delete_user(db, identity, user_id)
