"""
OAuth Router - redirect-in / callback endpoints for Google and Kakao sign-in.
"""
import logging
import secrets
from typing import Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db import get_db
from ..dependencies import get_oauth_clients, get_orchestrator
from ..errors import AuthServiceError, ProviderConflict, UnknownProvider
from ..oauth import OAuthClient
from ..orchestrator import AuthOrchestrator
from ..transport import OAUTH_STATE_COOKIE, attach_artifact, cookie_kwargs
from ..utils.event_logger import log_auth_event

router = APIRouter(prefix="/auth", tags=["oauth"])
logger = logging.getLogger(__name__)

_STATE_TTL_SECONDS = 600


def _client_for(provider: str, clients: Dict[str, OAuthClient]) -> OAuthClient:
    client = clients.get(provider.lower())
    if client is None:
        raise UnknownProvider(provider)
    return client


def _callback_uri(settings: Settings, client: OAuthClient) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/auth/{client.slug}/callback"


def _redirect_to_client(settings: Settings, **params) -> RedirectResponse:
    url = settings.CLIENT_REDIRECT_URL
    query = {k: v for k, v in params.items() if v}
    if query:
        url = f"{url}{'&' if '?' in url else '?'}{urlencode(query)}"
    resp = RedirectResponse(url=url, status_code=302)
    # State is single-use either way
    resp.delete_cookie(OAUTH_STATE_COOKIE, path="/", domain=settings.COOKIE_DOMAIN)
    return resp


@router.get("/{provider}")
def oauth_login(
    provider: str,
    settings: Settings = Depends(get_settings),
    clients: Dict[str, OAuthClient] = Depends(get_oauth_clients),
):
    client = _client_for(provider, clients)
    state = secrets.token_urlsafe(32)
    url = client.authorize_url(redirect_uri=_callback_uri(settings, client), state=state)

    resp = RedirectResponse(url=url, status_code=302)
    # The provider redirects back cross-site, so the state cookie must survive a top-level GET
    kwargs = cookie_kwargs(settings, OAUTH_STATE_COOKIE, state, max_age=_STATE_TTL_SECONDS)
    kwargs["samesite"] = "lax"
    resp.set_cookie(**kwargs)
    return resp


@router.get("/{provider}/callback")
def oauth_callback(
    provider: str,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    clients: Dict[str, OAuthClient] = Depends(get_oauth_clients),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    db: Session = Depends(get_db),
):
    client = _client_for(provider, clients)

    if error or not code:
        logger.info("%s sign-in cancelled or denied: %s", client.provider.value, error)
        return _redirect_to_client(settings, error="oauth_denied")

    expected_state = request.cookies.get(OAUTH_STATE_COOKIE) or ""
    if not expected_state or not secrets.compare_digest(expected_state, state or ""):
        logger.warning("%s callback with invalid OAuth state", client.provider.value)
        return _redirect_to_client(settings, error="invalid_state")

    try:
        identity = client.exchange(code=code, redirect_uri=_callback_uri(settings, client))
    except AuthServiceError as e:
        logger.warning("%s code exchange failed: %s", client.provider.value, e.detail)
        return _redirect_to_client(settings, error="oauth_failed")

    try:
        outcome = orchestrator.federated_login(identity)
    except ProviderConflict as e:
        log_auth_event(
            "oauth_rejected", request, db,
            email=identity.email,
            metadata={"provider": client.provider.value, "registered_provider": e.provider},
        )
        return _redirect_to_client(settings, error="provider_conflict", provider=e.provider, message=e.detail)
    except AuthServiceError as e:
        logger.warning("%s sign-in failed: %s", client.provider.value, e.detail)
        return _redirect_to_client(settings, error="oauth_failed")

    log_auth_event(
        "oauth_login", request, db,
        account_id=outcome.principal.id,
        email=outcome.principal.email,
        metadata={"provider": client.provider.value},
    )
    resp = _redirect_to_client(settings)
    attach_artifact(resp, outcome.artifact, settings)
    return resp
