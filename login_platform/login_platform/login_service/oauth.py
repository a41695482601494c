"""
OAuth authorization-code exchange for the supported identity providers.

Each client turns a callback `code` into a `ProviderIdentity`; everything
after that (linking, creating, rejecting) is the Federation Resolver's job.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import urlencode
import logging

import requests

from .config import Settings
from .errors import UpstreamFailure
from .federation import ProviderIdentity
from .models import Provider

logger = logging.getLogger(__name__)


class OAuthClient(ABC):
    provider: Provider
    authorize_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    scope: str

    def __init__(self, client_id: Optional[str], client_secret: Optional[str], timeout: float):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.client_id)

    @property
    def slug(self) -> str:
        return self.provider.value.lower()

    def authorize_url(self, *, redirect_uri: str, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.scope,
            "state": state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    def _token_payload(self, code: str, redirect_uri: str) -> Dict[str, str]:
        payload = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if self.client_secret:
            payload["client_secret"] = self.client_secret
        return payload

    def _request_json(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            r = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning("%s request to %s failed: %s", self.provider.value, url, e)
            raise UpstreamFailure(f"{self.provider.value} is unavailable") from e
        if r.status_code >= 400:
            # Response bodies stay out of the logs
            logger.warning("%s responded %s for %s", self.provider.value, r.status_code, url)
            raise UpstreamFailure(f"{self.provider.value} sign-in failed")
        try:
            data = r.json()
        except ValueError as e:
            logger.warning("%s returned a non-JSON body for %s", self.provider.value, url)
            raise UpstreamFailure(f"{self.provider.value} sign-in failed") from e
        if not isinstance(data, dict):
            raise UpstreamFailure(f"{self.provider.value} sign-in failed")
        return data

    def exchange(self, *, code: str, redirect_uri: str) -> ProviderIdentity:
        tokens = self._request_json("POST", self.token_endpoint, data=self._token_payload(code, redirect_uri))
        access_token = tokens.get("access_token")
        if not access_token:
            raise UpstreamFailure(f"{self.provider.value} sign-in failed")
        profile = self._request_json(
            "GET", self.userinfo_endpoint, headers={"Authorization": f"Bearer {access_token}"}
        )
        return self.parse_profile(profile)

    @abstractmethod
    def parse_profile(self, profile: Dict[str, Any]) -> ProviderIdentity:
        """Pull the provider id and email out of the userinfo response."""


class GoogleOAuthClient(OAuthClient):
    provider = Provider.GOOGLE
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://openidconnect.googleapis.com/v1/userinfo"
    scope = "openid email profile"

    def parse_profile(self, profile: Dict[str, Any]) -> ProviderIdentity:
        return ProviderIdentity(
            provider=self.provider,
            provider_id=str(profile.get("sub") or ""),
            email=str(profile.get("email") or ""),
            raw_profile=profile,
        )


class KakaoOAuthClient(OAuthClient):
    provider = Provider.KAKAO
    authorize_endpoint = "https://kauth.kakao.com/oauth/authorize"
    token_endpoint = "https://kauth.kakao.com/oauth/token"
    userinfo_endpoint = "https://kapi.kakao.com/v2/user/me"
    scope = "account_email"

    def parse_profile(self, profile: Dict[str, Any]) -> ProviderIdentity:
        kakao_account = profile.get("kakao_account") or {}
        return ProviderIdentity(
            provider=self.provider,
            provider_id=str(profile.get("id") or ""),
            email=str(kakao_account.get("email") or ""),
            raw_profile=profile,
        )


def build_oauth_clients(settings: Settings) -> Dict[str, OAuthClient]:
    """Configured provider clients keyed by their URL slug (`google`, `kakao`)."""
    clients = [
        GoogleOAuthClient(settings.GOOGLE_CLIENT_ID, settings.GOOGLE_CLIENT_SECRET, settings.OAUTH_TIMEOUT_SECONDS),
        KakaoOAuthClient(settings.KAKAO_CLIENT_ID, settings.KAKAO_CLIENT_SECRET, settings.OAUTH_TIMEOUT_SECONDS),
    ]
    return {c.slug: c for c in clients if c.enabled}
