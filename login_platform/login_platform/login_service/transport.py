"""
Cookie transport for credential artifacts.

`access_jwt` is a browser-session cookie (no expiry); `refresh_jwt` and a
remembered `session_id` are persistent cookies that expire with the
credential they carry.
"""
from fastapi import Request, Response

from .config import Settings
from .db import utcnow
from .strategies import CredentialArtifact, InboundCredentials

ACCESS_COOKIE = "access_jwt"
REFRESH_COOKIE = "refresh_jwt"
SESSION_COOKIE = "session_id"
OAUTH_STATE_COOKIE = "oauth_state"

CREDENTIAL_COOKIES = (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_COOKIE)


def cookie_kwargs(settings: Settings, key: str, value: str, max_age=None) -> dict:
    kwargs = {
        "key": key,
        "value": value,
        "httponly": True,
        "secure": settings.COOKIE_SECURE,
        "samesite": settings.COOKIE_SAMESITE,
        "path": "/",
        "domain": settings.COOKIE_DOMAIN,
    }
    if max_age is not None:
        kwargs["max_age"] = max_age
    return kwargs


def read_credentials(request: Request) -> InboundCredentials:
    return InboundCredentials(
        access_token=request.cookies.get(ACCESS_COOKIE) or None,
        refresh_token=request.cookies.get(REFRESH_COOKIE) or None,
        session_id=request.cookies.get(SESSION_COOKIE) or None,
    )


def attach_artifact(response: Response, artifact: CredentialArtifact, settings: Settings) -> None:
    if artifact.access_token:
        response.set_cookie(**cookie_kwargs(settings, ACCESS_COOKIE, artifact.access_token))
    if artifact.refresh_token:
        max_age = settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600
        response.set_cookie(**cookie_kwargs(settings, REFRESH_COOKIE, artifact.refresh_token, max_age=max_age))
    if artifact.session_id:
        max_age = None
        if artifact.session_expires_at is not None:
            max_age = max(0, int((artifact.session_expires_at - utcnow()).total_seconds()))
        response.set_cookie(**cookie_kwargs(settings, SESSION_COOKIE, artifact.session_id, max_age=max_age))


def clear_credentials(response: Response, settings: Settings) -> None:
    for key in CREDENTIAL_COOKIES:
        response.delete_cookie(
            key,
            path="/",
            domain=settings.COOKIE_DOMAIN,
            secure=settings.COOKIE_SECURE,
            httponly=True,
            samesite=settings.COOKIE_SAMESITE,
        )
