import hmac

from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth.models import User
from app.auth.schemas import AuthResponse, UserOut
from app.auth.security import hash_password
from app.auth.service import issue_token_pair
from app.auth.store import add_user
from app.core.config import settings
from app.core.errors import Conflict, Forbidden, Unauthorized
from app.db.session import get_db, unit_of_work

router = APIRouter()


class BootstrapRequest(BaseModel):
    admin_email: EmailStr
    admin_password: str = Field(min_length=8, max_length=72)
    first_name: str = Field(default="Admin", min_length=1, max_length=100)
    last_name: str = Field(default="User", min_length=1, max_length=100)


@router.post("/bootstrap", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def bootstrap(
    payload: BootstrapRequest,
    db: Session = Depends(get_db),
    x_bootstrap_secret: str | None = Header(default=None, alias="X-Bootstrap-Secret"),
):
    # 1) Must be enabled
    if not settings.BOOTSTRAP_ENABLED:
        raise Forbidden("Bootstrap is disabled")

    # 2) Must provide correct secret
    expected = settings.BOOTSTRAP_SECRET
    if not expected or not x_bootstrap_secret or not hmac.compare_digest(x_bootstrap_secret, expected):
        raise Unauthorized("Invalid bootstrap secret")

    with unit_of_work(db):
        # 3) Only allowed while no admin exists
        if db.execute(select(User.id).where(User.role == "admin")).first() is not None:
            raise Conflict("Bootstrap already completed")

        user = add_user(
            db,
            email=payload.admin_email,
            password_hash=hash_password(payload.admin_password),
            first_name=payload.first_name,
            last_name=payload.last_name,
            role="admin",
            status="active",
        )
        access_token, refresh_token = issue_token_pair(db, user)

    return AuthResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        user=UserOut.model_validate(user),
    )
