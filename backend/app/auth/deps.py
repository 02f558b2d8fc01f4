from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.security import Identity, verify_access_token
from app.core.errors import InvalidToken, Unauthorized

bearer = HTTPBearer(auto_error=False)


def get_current_identity(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Identity:
    """Identity from a valid access token. Stateless: no store lookup."""
    if not creds or not creds.credentials:
        raise Unauthorized()
    return verify_access_token(creds.credentials)


def get_optional_identity(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> Identity | None:
    if not creds or not creds.credentials:
        return None
    try:
        return verify_access_token(creds.credentials)
    except InvalidToken:
        return None
