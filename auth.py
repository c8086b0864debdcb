from typing import Optional

from fastapi import Request

from schemas import ExternalIdentity


USER_HEADER = "X-Forwarded-User"
EMAIL_HEADER = "X-Forwarded-Email"
NAME_HEADER = "X-Forwarded-Preferred-Username"


class SignInRequired(Exception):
    pass


def identity_from_request(request: Request) -> Optional[ExternalIdentity]:
    """Identity forwarded by the authenticating proxy, if any.

    Credentials are never seen here; the proxy has already validated the
    session and only passes the resulting profile fields along.
    """
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    if not user_id:
        return None
    return ExternalIdentity(
        id=user_id,
        email=request.headers.get(EMAIL_HEADER) or None,
        name=request.headers.get(NAME_HEADER) or None,
    )


def require_identity(request: Request) -> ExternalIdentity:
    identity = identity_from_request(request)
    if identity is None:
        raise SignInRequired()
    return identity
