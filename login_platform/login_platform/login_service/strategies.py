"""
Credential strategies: issue and validate the artifact that keeps a user
logged in between requests.

Two strategies exist, picked once per deployment through
`Settings.CREDENTIAL_STRATEGY`:

- `TokenPairStrategy`: a short-lived signed access token, plus a long-lived
  refresh token when the user asked to be remembered. Only the access token
  is ever renewed automatically.
- `SessionStrategy`: an opaque random id pointing at a server-side
  `LoginSession` row.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Protocol
import logging

import jwt

from .auth import Principal
from .config import Settings
from .db import utcnow
from .store import AccountStore, SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialArtifact:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    session_id: Optional[str] = None
    session_expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class InboundCredentials:
    """Whatever credential material the client presented (from cookies)."""

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    session_id: Optional[str] = None


class ValidationFailureReason(str, Enum):
    MISSING = "missing"
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ValidationResult:
    principal: Optional[Principal] = None
    refreshed: Optional[CredentialArtifact] = None
    failure: Optional[ValidationFailureReason] = None

    @property
    def ok(self) -> bool:
        return self.principal is not None

    @classmethod
    def fail(cls, reason: ValidationFailureReason) -> "ValidationResult":
        return cls(failure=reason)


class CredentialStrategy(Protocol):
    name: str

    def issue(self, store: AccountStore, principal: Principal, remember: bool) -> CredentialArtifact:
        ...

    def validate(self, store: AccountStore, presented: InboundCredentials) -> ValidationResult:
        ...

    def revoke(self, store: AccountStore, presented: InboundCredentials) -> None:
        ...


class TokenPairStrategy:
    name = "token"

    def __init__(self, settings: Settings):
        self.algorithm = settings.JWT_ALGORITHM
        self.access_secret = settings.JWT_ACCESS_SECRET
        self.refresh_secret = settings.JWT_REFRESH_SECRET
        self.access_ttl = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        self.refresh_ttl = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)

    def _encode(self, principal: Principal, secret: str, ttl: timedelta) -> str:
        now = utcnow()
        payload = {"id": principal.id, "email": principal.email, "iat": now, "exp": now + ttl}
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def _decode(self, token: str, secret: str) -> dict:
        return jwt.decode(token, secret, algorithms=[self.algorithm], options={"require": ["exp", "id", "email"]})

    def create_access_token(self, principal: Principal) -> str:
        return self._encode(principal, self.access_secret, self.access_ttl)

    def create_refresh_token(self, principal: Principal) -> str:
        return self._encode(principal, self.refresh_secret, self.refresh_ttl)

    def issue(self, store: AccountStore, principal: Principal, remember: bool) -> CredentialArtifact:
        refresh_token = self.create_refresh_token(principal) if remember else None
        return CredentialArtifact(access_token=self.create_access_token(principal), refresh_token=refresh_token)

    def validate(self, store: AccountStore, presented: InboundCredentials) -> ValidationResult:
        if not presented.access_token and not presented.refresh_token:
            return ValidationResult.fail(ValidationFailureReason.MISSING)

        access_failure = ValidationFailureReason.MISSING
        if presented.access_token:
            try:
                claims = self._decode(presented.access_token, self.access_secret)
            except jwt.ExpiredSignatureError:
                access_failure = ValidationFailureReason.EXPIRED
            except jwt.InvalidTokenError:
                access_failure = ValidationFailureReason.INVALID
            else:
                account = store.find_by_identity(claims["id"], claims["email"])
                if account is None:
                    return ValidationResult.fail(ValidationFailureReason.INVALID)
                return ValidationResult(principal=Principal.from_account(account))

        if not presented.refresh_token:
            return ValidationResult.fail(access_failure)

        try:
            claims = self._decode(presented.refresh_token, self.refresh_secret)
        except jwt.ExpiredSignatureError:
            return ValidationResult.fail(ValidationFailureReason.EXPIRED)
        except jwt.InvalidTokenError:
            return ValidationResult.fail(ValidationFailureReason.INVALID)

        account = store.find_by_identity(claims["id"], claims["email"])
        if account is None:
            return ValidationResult.fail(ValidationFailureReason.INVALID)

        principal = Principal.from_account(account)
        logger.debug("Access token renewed from refresh token: account_id=%s", principal.id)
        return ValidationResult(
            principal=principal,
            refreshed=CredentialArtifact(access_token=self.create_access_token(principal)),
        )

    def revoke(self, store: AccountStore, presented: InboundCredentials) -> None:
        # Stateless: the client drops its cookies
        return None


class SessionStrategy:
    name = "session"

    def __init__(self, settings: Settings):
        self.remember_ttl = timedelta(days=settings.SESSION_REMEMBER_DAYS)

    def issue(self, store: AccountStore, principal: Principal, remember: bool) -> CredentialArtifact:
        expires_at = utcnow() + self.remember_ttl if remember else None
        record = SessionStore(store.db).create(principal.id, expires_at)
        return CredentialArtifact(session_id=record.id, session_expires_at=record.expires_at)

    def validate(self, store: AccountStore, presented: InboundCredentials) -> ValidationResult:
        if not presented.session_id:
            return ValidationResult.fail(ValidationFailureReason.MISSING)

        sessions = SessionStore(store.db)
        record = sessions.get(presented.session_id)
        if record is None:
            return ValidationResult.fail(ValidationFailureReason.EXPIRED)
        if record.expires_at is not None and record.expires_at <= utcnow():
            sessions.delete(record.id)
            return ValidationResult.fail(ValidationFailureReason.EXPIRED)

        account = store.find_by_id(record.account_id)
        if account is None:
            return ValidationResult.fail(ValidationFailureReason.INVALID)
        return ValidationResult(principal=Principal.from_account(account))

    def revoke(self, store: AccountStore, presented: InboundCredentials) -> None:
        if presented.session_id:
            SessionStore(store.db).delete(presented.session_id)


def build_strategy(settings: Settings) -> CredentialStrategy:
    if settings.CREDENTIAL_STRATEGY == "session":
        return SessionStrategy(settings)
    return TokenPairStrategy(settings)
