import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from hashlib import sha256
from typing import Any, Dict

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import Settings, settings
from app.core.errors import InvalidToken

logger = logging.getLogger(__name__)

# Bump BCRYPT_ROUNDS to raise the work factor; older hashes are upgraded on
# the next successful login through verify_and_update.
BCRYPT_ROUNDS = 12
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
    bcrypt__min_rounds=BCRYPT_ROUNDS,
)

DEV_ACCESS_SECRET = "dev-access-secret-change-me"
DEV_REFRESH_SECRET = "dev-refresh-secret-change-me"
JWT_ALG = "HS256"

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"
RESET_TOKEN_TYPE = "reset"


def resolve_signing_secrets(cfg: Settings) -> tuple[str, str]:
    access_secret = cfg.JWT_SECRET
    refresh_secret = cfg.JWT_REFRESH_SECRET
    if cfg.is_production:
        if not access_secret or not refresh_secret:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must be set")
        if access_secret == refresh_secret:
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        return access_secret, refresh_secret

    if not access_secret or not refresh_secret:
        logger.warning("Signing secrets not configured; using development defaults (env=%s)", cfg.ENV)
    return access_secret or DEV_ACCESS_SECRET, refresh_secret or DEV_REFRESH_SECRET


JWT_SECRET, JWT_REFRESH_SECRET = resolve_signing_secrets(settings)
JWT_ACCESS_EXP_MINUTES = settings.JWT_ACCESS_EXP_MINUTES
JWT_REFRESH_EXP_DAYS = settings.JWT_REFRESH_EXP_DAYS
PASSWORD_RESET_EXP_MINUTES = settings.PASSWORD_RESET_EXP_MINUTES


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str
    role: str

    def claims(self) -> Dict[str, Any]:
        return {"sub": str(self.user_id), "email": self.email, "role": self.role}


def _ensure_bcrypt_limit(password: str) -> None:
    # bcrypt limit is 72 BYTES, not characters
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password too long (max 72 bytes).")


def hash_password(password: str) -> str:
    _ensure_bcrypt_limit(password)
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    ok, _ = verify_and_update_password(password, password_hash)
    return ok


def verify_and_update_password(password: str, password_hash: str) -> tuple[bool, str | None]:
    """Return (matches, replacement_hash); never raises on bad input."""
    try:
        _ensure_bcrypt_limit(password)
        return pwd_context.verify_and_update(password, password_hash)
    except (ValueError, TypeError):
        return False, None


def create_access_token(identity: Identity) -> str:
    now = datetime.utcnow()
    to_encode = identity.claims()
    to_encode["typ"] = ACCESS_TOKEN_TYPE
    to_encode["iat"] = now
    to_encode["exp"] = now + timedelta(minutes=JWT_ACCESS_EXP_MINUTES)
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def create_refresh_token(identity: Identity) -> tuple[str, datetime]:
    now = datetime.utcnow()
    expires_at = now + timedelta(days=JWT_REFRESH_EXP_DAYS)
    to_encode = identity.claims()
    to_encode["typ"] = REFRESH_TOKEN_TYPE
    to_encode["jti"] = secrets.token_urlsafe(24)
    to_encode["iat"] = now
    to_encode["exp"] = expires_at
    token = jwt.encode(to_encode, JWT_REFRESH_SECRET, algorithm=JWT_ALG)
    return token, expires_at


def _decode(token: str, secret: str, expected_type: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALG])
    except JWTError as exc:
        raise InvalidToken() from exc
    if claims.get("typ") != expected_type:
        raise InvalidToken()
    return claims


def _identity_from_claims(claims: Dict[str, Any]) -> Identity:
    email = claims.get("email")
    role = claims.get("role")
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise InvalidToken()
    if not email or not role:
        raise InvalidToken()
    return Identity(user_id=user_id, email=email, role=role)


def verify_access_token(token: str) -> Identity:
    return _identity_from_claims(_decode(token, JWT_SECRET, ACCESS_TOKEN_TYPE))


def verify_refresh_token(token: str) -> Identity:
    """Signature, expiry and type only; the caller must also check the store."""
    return _identity_from_claims(_decode(token, JWT_REFRESH_SECRET, REFRESH_TOKEN_TYPE))


def password_fingerprint(password_hash: str) -> str:
    return sha256(password_hash.encode("utf-8")).hexdigest()[:32]


def create_password_reset_token(user_id: int, password_hash: str) -> str:
    now = datetime.utcnow()
    to_encode = {
        "sub": str(user_id),
        "typ": RESET_TOKEN_TYPE,
        "pfp": password_fingerprint(password_hash),
        "iat": now,
        "exp": now + timedelta(minutes=PASSWORD_RESET_EXP_MINUTES),
    }
    return jwt.encode(to_encode, JWT_REFRESH_SECRET, algorithm=JWT_ALG)


def verify_password_reset_token(token: str, password_hash_lookup) -> int:
    """Return the user id for a reset token still bound to the current password.

    ``password_hash_lookup`` maps a user id to its current password hash (or
    None when the user is gone).
    """
    claims = _decode(token, JWT_REFRESH_SECRET, RESET_TOKEN_TYPE)
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        raise InvalidToken()
    current_hash = password_hash_lookup(user_id)
    if not current_hash:
        raise InvalidToken()
    if not hmac.compare_digest(str(claims.get("pfp", "")), password_fingerprint(current_hash)):
        raise InvalidToken()
    return user_id


def hash_token(token: str) -> str:
    return sha256(token.encode("utf-8")).hexdigest()


__all__ = [
    "Identity",
    "JWTError",
    "create_access_token",
    "create_password_reset_token",
    "create_refresh_token",
    "hash_password",
    "hash_token",
    "verify_access_token",
    "verify_and_update_password",
    "verify_password",
    "verify_password_reset_token",
    "verify_refresh_token",
]
