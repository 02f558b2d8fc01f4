"""Credential store: users and persisted refresh-token records.

Functions here only stage changes on the session; committing is the job of
the caller's unit of work.
"""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app.auth.models import RefreshToken, User
from app.auth.security import hash_token

MAX_ACTIVE_REFRESH_TOKENS = 5


def normalize_email(email: str) -> str:
    return str(email).strip().lower()


def get_user(db: Session, user_id: int) -> User | None:
    return db.get(User, user_id)


def get_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def email_taken(db: Session, email: str) -> bool:
    return get_user_by_email(db, email) is not None


def add_user(db: Session, **fields) -> User:
    fields["email"] = normalize_email(fields["email"])
    user = User(**fields)
    db.add(user)
    db.flush()
    return user


def store_refresh_token(db: Session, *, user_id: int, token: str, expires_at: datetime) -> RefreshToken:
    row = RefreshToken(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at)
    db.add(row)
    db.flush()
    _enforce_refresh_token_limit(db, user_id=user_id)
    return row


def _enforce_refresh_token_limit(db: Session, *, user_id: int) -> None:
    now = datetime.utcnow()
    db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    keep_ids = (
        db.execute(
            select(RefreshToken.id)
            .where(RefreshToken.user_id == user_id)
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .limit(MAX_ACTIVE_REFRESH_TOKENS)
        )
        .scalars()
        .all()
    )
    db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.id.not_in(keep_ids))
        .execution_options(synchronize_session=False)
    )


def find_active_refresh_token(db: Session, *, user_id: int, token: str) -> RefreshToken | None:
    return db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(token),
            RefreshToken.user_id == user_id,
            RefreshToken.expires_at > datetime.utcnow(),
        )
    ).scalar_one_or_none()


def consume_refresh_token(db: Session, *, user_id: int, token: str) -> bool:
    """Delete the record for ``token`` if it is still live and owned by ``user_id``.

    The delete is conditional, so among concurrent consumers of the same token
    only the first one sees a row count of one.
    """
    result = db.execute(
        delete(RefreshToken)
        .where(
            RefreshToken.token_hash == hash_token(token),
            RefreshToken.user_id == user_id,
            RefreshToken.expires_at > datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def revoke_refresh_token(db: Session, *, user_id: int, token: str) -> bool:
    result = db.execute(
        delete(RefreshToken)
        .where(RefreshToken.token_hash == hash_token(token), RefreshToken.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def revoke_all_refresh_tokens(db: Session, *, user_id: int) -> int:
    result = db.execute(
        delete(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def replace_password_hash(db: Session, *, user_id: int, expected_hash: str, new_hash: str) -> bool:
    """Swap the stored hash only while it still equals ``expected_hash``."""
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.password_hash == expected_hash)
        .values(password_hash=new_hash)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
