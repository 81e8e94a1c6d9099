import time
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


CSRF_HEADER = "X-CSRF-Token"


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.csrf_secret, salt="fincal-csrf")


def generate_csrf_token(owner_id: int, max_age_hours: int = 2) -> str:
    issued = int(time.time())
    return _serializer().dumps(
        {"o": owner_id, "exp": issued + max_age_hours * 3600}
    )


def validate_csrf_token(
    token: Optional[str], owner_id: int, max_age_hours: int = 2
) -> bool:
    """True when ``token`` was issued for ``owner_id`` and has not expired."""
    if not token:
        return False
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except (SignatureExpired, BadSignature):
        return False
    if data.get("o") != owner_id:
        return False
    return int(time.time()) <= data.get("exp", 0)
