from fastapi import Depends

from app.auth.deps import get_current_identity
from app.auth.security import Identity
from app.core.errors import Forbidden

STAFF_ROLES = ("admin", "manager")


def require_roles(*allowed_roles: str):
    def checker(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed_roles:
            raise Forbidden()
        return identity

    return checker
