"""Staff-facing user administration.

Users referenced by enrollments, leads or deals are never hard-deleted;
deactivate them instead.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.models import User
from app.auth.rbac import STAFF_ROLES
from app.auth.security import Identity
from app.auth.store import get_user, revoke_all_refresh_tokens
from app.core.errors import Conflict, Forbidden, NotFound
from app.cycles.models import Enrollment
from app.db.session import unit_of_work
from app.leads.models import Deal, Lead
from app.users.schemas import UserPatchRequest

logger = logging.getLogger(__name__)


def _load(db: Session, user_id: int) -> User:
    user = get_user(db, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def _references(db: Session, user_id: int) -> dict[str, int]:
    counts = {
        "enrollments": select(func.count(Enrollment.id)).where(Enrollment.user_id == user_id),
        "leads": select(func.count(Lead.id)).where(Lead.assigned_to == user_id),
        "deals": select(func.count(Deal.id)).where(Deal.assigned_to == user_id),
    }
    return {name: db.execute(stmt).scalar_one() for name, stmt in counts.items()}


def list_users(
    db: Session,
    *,
    role: str | None = None,
    status: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[User], int]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    if status:
        stmt = stmt.where(User.status == status)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(stmt.order_by(User.created_at.desc(), User.id.desc()).limit(limit).offset(offset)).scalars().all()
    return list(rows), int(total)


def get_user_for(db: Session, acting: Identity, user_id: int) -> User:
    if acting.user_id != user_id and acting.role not in STAFF_ROLES:
        raise Forbidden()
    return _load(db, user_id)


def update_user(db: Session, acting: Identity, user_id: int, patch: UserPatchRequest) -> User:
    changes = patch.changes()
    with unit_of_work(db):
        user = _load(db, user_id)
        if acting.role != "admin":
            if user.role == "admin":
                raise Forbidden("Only admins can modify admin accounts")
            if "role" in changes and changes["role"] != user.role:
                raise Forbidden("Only admins can change roles")
        if user_id == acting.user_id and changes.get("status") == "inactive":
            raise Conflict("Cannot deactivate your own account")

        deactivated = changes.get("status") == "inactive" and user.status != "inactive"
        patch.apply_to(user)
        if deactivated:
            # access tokens run out on their own
            revoke_all_refresh_tokens(db, user_id=user_id)

    logger.info("User updated: user_id=%s by user_id=%s fields=%s", user_id, acting.user_id, sorted(changes))
    return user


def delete_user(db: Session, acting: Identity, user_id: int) -> None:
    if user_id == acting.user_id:
        raise Conflict("Cannot delete your own account")

    try:
        with unit_of_work(db):
            user = _load(db, user_id)
            in_use = [name for name, count in _references(db, user_id).items() if count]
            if in_use:
                raise Conflict(f"User still has {', '.join(in_use)}; deactivate instead")
            revoke_all_refresh_tokens(db, user_id=user_id)
            db.delete(user)
    except IntegrityError as exc:
        raise Conflict("User is still referenced; deactivate instead") from exc

    logger.info("User deleted: user_id=%s by user_id=%s", user_id, acting.user_id)
