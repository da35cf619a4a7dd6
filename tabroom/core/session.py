import base64
import hashlib
import hmac
import json

from tabroom.core.config import settings

SESSION_COOKIE = "tab_session"


def _b64_encode(value: str) -> str:
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("utf-8")
    return encoded.rstrip("=")


def _b64_decode(value: str) -> str:
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8")


def _sign(payload: str) -> str:
    digest = hmac.new(settings.secret_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def create_session_token(user_id: str) -> str:
    payload = _b64_encode(json.dumps({"uid": user_id}, separators=(",", ":")))
    return f"{payload}.{_sign(payload)}"


def user_id_from_token(token: str | None) -> str | None:
    """Возвращает id пользователя из подписанного токена или None."""
    if not token or "." not in token:
        return None

    payload, signature = token.rsplit(".", 1)
    if not hmac.compare_digest(signature, _sign(payload)):
        return None

    try:
        data = json.loads(_b64_decode(payload))
    except (ValueError, json.JSONDecodeError):
        return None
    user_id = data.get("uid") if isinstance(data, dict) else None
    return user_id if isinstance(user_id, str) and user_id else None
