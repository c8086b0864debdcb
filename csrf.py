import time

from itsdangerous import BadSignature, URLSafeSerializer

from config import get_settings


def _serializer() -> URLSafeSerializer:
    settings = get_settings()
    return URLSafeSerializer(settings.csrf_secret, salt="csrf-token")


def generate_csrf_token(user_id: str, max_age_hours: int = 2) -> str:
    expiry = int(time.time()) + (max_age_hours * 3600)
    return _serializer().dumps({"u": user_id, "exp": expiry})


def validate_csrf_token(token: str, user_id: str) -> bool:
    try:
        data = _serializer().loads(token)
    except BadSignature:
        return False

    if not isinstance(data, dict) or data.get("u") != user_id:
        return False

    return int(time.time()) <= int(data.get("exp", 0))
