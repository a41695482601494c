from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
import logging

from passlib.context import CryptContext

from .config import get_settings
from .models import Account, Provider
from .store import AccountStore

logger = logging.getLogger(__name__)

# Use pbkdf2_sha256 to avoid external bcrypt backend issues in some environments
pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
    pbkdf2_sha256__default_rounds=get_settings().PASSWORD_HASH_ROUNDS,
)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity resolved from a credential."""

    id: int
    email: str
    provider: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "Principal":
        provider = account.provider.value if account.provider else None
        return cls(id=account.id, email=account.email, provider=provider)


class LoginFailureReason(str, Enum):
    NO_SUCH_ACCOUNT = "no_such_account"
    WRONG_PASSWORD = "wrong_password"
    PROVIDER_MISMATCH = "provider_mismatch"


@dataclass(frozen=True)
class LoginFailure:
    reason: LoginFailureReason
    provider: Optional[str] = None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        # Malformed or missing hash
        return False


def verify_credentials(store: AccountStore, email: str, password: str) -> Union[Principal, LoginFailure]:
    """
    Check an email/password pair against local (provider=Email) accounts.

    Federated accounts are never password-authenticable; an email owned by
    another provider yields PROVIDER_MISMATCH so the caller can point the user
    at the right login method.

    Returns:
        Principal on success, LoginFailure otherwise. Never writes.
    """
    account = store.find_by_provider(email, Provider.EMAIL)
    if account is None:
        # Keep the unknown-email path as slow as a real hash check
        pwd_context.dummy_verify()
        other = store.find_registered(email)
        if other is not None:
            return LoginFailure(LoginFailureReason.PROVIDER_MISMATCH, provider=other.provider.value)
        return LoginFailure(LoginFailureReason.NO_SUCH_ACCOUNT)

    if not verify_password(password, account.password_hash):
        return LoginFailure(LoginFailureReason.WRONG_PASSWORD)

    return Principal.from_account(account)
