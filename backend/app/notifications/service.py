import json
import logging
from urllib import request

from app.core.config import settings

logger = logging.getLogger(__name__)


def _post_webhook(url: str, payload: dict) -> None:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(
        url,
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with request.urlopen(req, timeout=3):
        pass


def send_password_reset(*, email: str, user_id: int, token: str) -> bool:
    """Hand a reset token to the external delivery service.

    Best-effort: delivery failures are logged and reported as False, never
    raised to the request that asked for the reset.
    """
    if not settings.NOTIFY_WEBHOOK_URL:
        logger.info("No notification webhook configured; reset for user_id=%s not delivered", user_id)
        return False

    try:
        _post_webhook(
            settings.NOTIFY_WEBHOOK_URL,
            {"type": "password_reset", "email": email, "user_id": user_id, "token": token},
        )
    except Exception:
        logger.warning("Password reset notification failed for user_id=%s", user_id, exc_info=True)
        return False
    return True
