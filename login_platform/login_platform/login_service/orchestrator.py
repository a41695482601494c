"""
Auth Orchestrator: the per-endpoint flows (email verification, signup,
login, session check, logout, provider callback) built on the verifier,
the credential strategy and the federation resolver.

The orchestrator knows nothing about HTTP. It returns plain outcomes and
raises the errors from `errors.py`; the API layer turns those into
responses and cookies.
"""
from dataclasses import dataclass
from typing import Optional
import logging
import secrets

from .auth import LoginFailure, LoginFailureReason, Principal, hash_password, verify_credentials
from .config import Settings
from .db import utcnow
from .errors import (
    Conflict,
    InvalidVerificationToken,
    LoginRejected,
    MailDeliveryError,
    NotFound,
    ProviderConflict,
    ValidationFailure,
    VerificationExpired,
)
from .federation import ProviderIdentity, resolve
from .mailer import Mailer
from .models import Account, Provider
from .store import AccountStore
from .strategies import CredentialArtifact, CredentialStrategy, InboundCredentials, ValidationResult

logger = logging.getLogger(__name__)

GENERIC_LOGIN_FAILURE = "Invalid email or password"
MAIL_NOT_SENT = "mail_not_sent"


@dataclass(frozen=True)
class LoginOutcome:
    principal: Principal
    artifact: CredentialArtifact


@dataclass(frozen=True)
class VerificationRequestOutcome:
    email: str
    warning: Optional[str] = None


def new_verification_code() -> str:
    """Six hex characters from a CSPRNG."""
    return secrets.token_hex(3)


class AuthOrchestrator:
    def __init__(self, store: AccountStore, strategy: CredentialStrategy, settings: Settings, mailer: Mailer):
        self.store = store
        self.strategy = strategy
        self.settings = settings
        self.mailer = mailer

    # ---------------- Email verification ----------------

    def _store_pending_code(self, email: str, code: str) -> Account:
        fields = {"verification_token": code, "verification_issued_at": utcnow(), "verified": False}
        pending = self.store.find_pending(email)
        if pending is not None:
            return self.store.save(pending, **fields)
        try:
            return self.store.create(email=email, provider=None, **fields)
        except Conflict:
            # A concurrent request inserted the pending row first
            pending = self.store.find_pending(email)
            if pending is None:
                raise
            return self.store.save(pending, **fields)

    def request_email_verification(self, email: str) -> VerificationRequestOutcome:
        """
        Issue a fresh verification code for `email` and mail it out.

        An email already owned by any provider is rejected with that provider's
        name. A mail failure leaves the pending code in place and is reported
        as a warning instead of an error.
        """
        registered = self.store.find_registered(email)
        if registered is not None:
            raise ProviderConflict(registered.provider.value)

        code = new_verification_code()
        self._store_pending_code(email, code)

        try:
            self.mailer.send_verification_code(email, code, self.settings.VERIFICATION_TOKEN_TTL_SECONDS)
        except MailDeliveryError as e:
            logger.warning("Verification code for %s stored but not delivered: %s", email, e)
            return VerificationRequestOutcome(email=email, warning=MAIL_NOT_SENT)
        return VerificationRequestOutcome(email=email)

    def verify_email(self, email: str, token: str) -> None:
        pending = self.store.find_pending_with_token(email, token)
        if pending is None or pending.verification_issued_at is None:
            raise InvalidVerificationToken("Invalid email or token")

        age = (utcnow() - pending.verification_issued_at).total_seconds()
        if age > self.settings.VERIFICATION_TOKEN_TTL_SECONDS:
            raise VerificationExpired("Token expired")

        self.store.save(pending, verified=True)

    # ---------------- Signup ----------------

    def _reject_registered(self, email: str) -> None:
        registered = self.store.find_registered(email)
        if registered is not None:
            raise ProviderConflict(registered.provider.value, detail="Email already registered")

    def signup(self, email: str, password: str) -> Principal:
        if self.settings.SIGNUP_MODE == "direct":
            return self._signup_direct(email, password)
        return self._signup_verified(email, password)

    def _signup_direct(self, email: str, password: str) -> Principal:
        self._reject_registered(email)
        try:
            account = self.store.create(
                email=email,
                password_hash=hash_password(password),
                provider=Provider.EMAIL,
            )
        except Conflict as e:
            raise Conflict("Email already registered") from e
        logger.info("Local account created: account_id=%s", account.id)
        return Principal.from_account(account)

    def _signup_verified(self, email: str, password: str) -> Principal:
        pending = self.store.find_pending(email)
        if pending is None:
            self._reject_registered(email)
            raise NotFound("Request a verification code for this email first")

        if self.settings.SIGNUP_REQUIRE_VERIFIED_EMAIL and not pending.verified:
            raise ValidationFailure("Email address has not been verified")

        try:
            promoted = self.store.update(
                {
                    "password_hash": hash_password(password),
                    "provider": Provider.EMAIL,
                    "verification_token": None,
                    "verification_issued_at": None,
                    "updated_at": utcnow(),
                },
                Account.id == pending.id,
                Account.provider.is_(None),
            )
        except Conflict as e:
            raise Conflict("Email already registered") from e
        if promoted == 0:
            raise Conflict("Email already registered")

        account = self.store.find_by_provider(email, Provider.EMAIL)
        logger.info("Pending account promoted to local: account_id=%s", account.id)
        return Principal.from_account(account)

    # ---------------- Login / session ----------------

    def _login_failure_message(self, failure: LoginFailure) -> str:
        if failure.reason == LoginFailureReason.PROVIDER_MISMATCH:
            return f"This email is registered with {failure.provider}. Please sign in with {failure.provider}."
        if self.settings.UNIFIED_LOGIN_ERRORS:
            return GENERIC_LOGIN_FAILURE
        if failure.reason == LoginFailureReason.NO_SUCH_ACCOUNT:
            return "No account exists for this email"
        return "Password does not match"

    def login(self, email: str, password: str, remember: bool = False) -> LoginOutcome:
        result = verify_credentials(self.store, email, password)
        if isinstance(result, LoginFailure):
            raise LoginRejected(self._login_failure_message(result), reason=result.reason.value, provider=result.provider)
        artifact = self.strategy.issue(self.store, result, remember)
        return LoginOutcome(principal=result, artifact=artifact)

    def current_user(self, presented: InboundCredentials) -> ValidationResult:
        return self.strategy.validate(self.store, presented)

    def logout(self, presented: InboundCredentials) -> Optional[Principal]:
        """Revoke whatever was presented. Idempotent; returns who was logged in, if anyone."""
        principal = self.strategy.validate(self.store, presented).principal
        self.strategy.revoke(self.store, presented)
        return principal

    # ---------------- Federation ----------------

    def federated_login(self, identity: ProviderIdentity) -> LoginOutcome:
        principal = resolve(self.store, identity)
        # Provider logins are always persistent
        artifact = self.strategy.issue(self.store, principal, True)
        return LoginOutcome(principal=principal, artifact=artifact)
