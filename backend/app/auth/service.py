import logging
import secrets
from datetime import datetime
from functools import lru_cache

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.auth.login_guard import LoginGuard, login_guard
from app.auth.models import User
from app.auth.schemas import (
    AuthResponse,
    ProfilePatchRequest,
    RegisterRequest,
    TokenPairResponse,
    UserOut,
)
from app.auth.security import (
    Identity,
    create_access_token,
    create_password_reset_token,
    create_refresh_token,
    hash_password,
    verify_and_update_password,
    verify_password,
    verify_password_reset_token,
    verify_refresh_token,
)
from app.auth.store import (
    add_user,
    consume_refresh_token,
    email_taken,
    get_user,
    get_user_by_email,
    normalize_email,
    replace_password_hash,
    revoke_all_refresh_tokens,
    revoke_refresh_token,
    store_refresh_token,
)
from app.core.errors import (
    Conflict,
    Forbidden,
    InvalidCredentials,
    InvalidInput,
    InvalidToken,
    NotFound,
    TooManyAttempts,
)
from app.db.session import unit_of_work
from app.notifications.service import send_password_reset

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # verified against for unknown emails so both failure paths cost one bcrypt check
    return hash_password(secrets.token_urlsafe(16))


def _hash_or_reject(password: str) -> str:
    try:
        return hash_password(password)
    except ValueError as exc:
        raise InvalidInput(str(exc)) from exc


def identity_for(user: User) -> Identity:
    return Identity(user_id=user.id, email=user.email, role=user.role)


def issue_token_pair(db: Session, user: User) -> tuple[str, str]:
    """Sign both tokens and stage the refresh record; caller commits."""
    identity = identity_for(user)
    access_token = create_access_token(identity)
    refresh_token, expires_at = create_refresh_token(identity)
    store_refresh_token(db, user_id=user.id, token=refresh_token, expires_at=expires_at)
    return access_token, refresh_token


def _auth_response(user: User, access_token: str, refresh_token: str) -> AuthResponse:
    return AuthResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        user=UserOut.model_validate(user),
    )


def register(db: Session, payload: RegisterRequest, acting: Identity | None = None) -> AuthResponse:
    if payload.role != "student" and (acting is None or acting.role != "admin"):
        raise Forbidden("Only admins can create staff accounts")

    pw_hash = _hash_or_reject(payload.password)
    try:
        with unit_of_work(db):
            if email_taken(db, payload.email):
                raise Conflict("Email already registered")
            user = add_user(
                db,
                email=payload.email,
                password_hash=pw_hash,
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone=payload.phone,
                role=payload.role,
                status="active",
            )
            access_token, refresh_token = issue_token_pair(db, user)
    except IntegrityError as exc:
        raise Conflict("Email already registered") from exc

    logger.info("User registered: user_id=%s role=%s", user.id, user.role)
    return _auth_response(user, access_token, refresh_token)


def login(
    db: Session,
    *,
    email: str,
    password: str,
    client_ip: str,
    guard: LoginGuard = login_guard,
) -> AuthResponse:
    login_key = f"{normalize_email(email)}:{client_ip}"
    locked_until = guard.locked_until(login_key)
    if locked_until:
        raise TooManyAttempts(f"Too many failed attempts. Retry after {locked_until.isoformat()}")

    user = get_user_by_email(db, email)
    password_ok, upgraded_hash = False, None
    if user:
        password_ok, upgraded_hash = verify_and_update_password(password, user.password_hash)
    else:
        verify_password(password, _dummy_hash())

    if not user or not password_ok:
        new_lock = guard.register_failure(login_key)
        logger.info("Failed login attempt: key=%s", login_key)
        if new_lock:
            raise TooManyAttempts(f"Too many failed attempts. Retry after {new_lock.isoformat()}")
        raise InvalidCredentials()

    guard.clear(login_key)
    if user.status != "active":
        raise Forbidden("Account is inactive")

    with unit_of_work(db):
        if upgraded_hash:
            user.password_hash = upgraded_hash
        user.last_login = datetime.utcnow()
        access_token, refresh_token = issue_token_pair(db, user)

    logger.info("User logged in: user_id=%s", user.id)
    return _auth_response(user, access_token, refresh_token)


def rotate(db: Session, refresh_token: str) -> TokenPairResponse:
    """Exchange a live refresh token for a new pair; the old one dies here."""
    claimed = verify_refresh_token(refresh_token)

    with unit_of_work(db):
        if not consume_refresh_token(db, user_id=claimed.user_id, token=refresh_token):
            raise InvalidToken()
        user = get_user(db, claimed.user_id)
        if not user or user.status != "active":
            raise InvalidToken()
        access_token, new_refresh_token = issue_token_pair(db, user)

    logger.info("Refresh token rotated: user_id=%s", claimed.user_id)
    return TokenPairResponse(access_token=access_token, refresh_token=new_refresh_token)


def logout(db: Session, identity: Identity, refresh_token: str) -> None:
    with unit_of_work(db):
        removed = revoke_refresh_token(db, user_id=identity.user_id, token=refresh_token)
    logger.info("User logged out: user_id=%s removed=%s", identity.user_id, removed)


def get_profile(db: Session, identity: Identity) -> UserOut:
    user = get_user(db, identity.user_id)
    if not user:
        raise NotFound("User not found")
    return UserOut.model_validate(user)


def update_profile(db: Session, identity: Identity, patch: ProfilePatchRequest) -> UserOut:
    with unit_of_work(db):
        user = get_user(db, identity.user_id)
        if not user:
            raise NotFound("User not found")
        patch.apply_to(user)
    return UserOut.model_validate(user)


def change_password(db: Session, identity: Identity, current_password: str, new_password: str) -> None:
    with unit_of_work(db):
        user = get_user(db, identity.user_id)
        if not user:
            raise NotFound("User not found")
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        user.password_hash = _hash_or_reject(new_password)
        # every refresh token dies; access tokens live until they expire
        revoked = revoke_all_refresh_tokens(db, user_id=user.id)

    logger.info("Password changed: user_id=%s refresh_tokens_revoked=%s", identity.user_id, revoked)


def request_password_reset(db: Session, email: str) -> None:
    user = get_user_by_email(db, email)
    if not user or user.status != "active":
        logger.info("Password reset requested for unknown or inactive account")
        return

    token = create_password_reset_token(user.id, user.password_hash)
    send_password_reset(email=user.email, user_id=user.id, token=token)


def reset_password(db: Session, token: str, new_password: str) -> None:
    new_hash = _hash_or_reject(new_password)
    seen: dict[int, str] = {}

    def _current_hash(user_id: int) -> str | None:
        user = get_user(db, user_id)
        if not user or user.status != "active":
            return None
        seen[user_id] = user.password_hash
        return user.password_hash

    with unit_of_work(db):
        user_id = verify_password_reset_token(token, _current_hash)
        # a concurrent reset with the same token has already replaced the hash
        if not replace_password_hash(db, user_id=user_id, expected_hash=seen[user_id], new_hash=new_hash):
            raise InvalidToken()
        revoke_all_refresh_tokens(db, user_id=user_id)

    logger.info("Password reset completed: user_id=%s", user_id)
