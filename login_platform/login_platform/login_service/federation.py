"""
Federation Resolver: reconcile a third-party identity assertion with the
Account Store.

Emails are never silently re-owned across providers. An email registered
locally (or through the other provider) rejects the callback with a message
that names the provider the user originally signed up with.
"""
from dataclasses import dataclass, field
from typing import Any, Dict
import logging

from .auth import Principal
from .errors import Conflict, ProviderConflict, ValidationFailure
from .models import Account, Provider
from .store import AccountStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderIdentity:
    """Result of a completed OAuth handshake. Only provider_id and email are trusted."""

    provider: Provider
    provider_id: str
    email: str
    raw_profile: Dict[str, Any] = field(default_factory=dict, compare=False)


def _match(store: AccountStore, identity: ProviderIdentity):
    """Return the account this identity logs into, or None when a new one is needed."""
    account = store.find_by_provider_id(identity.provider, identity.provider_id)
    if account is not None:
        return account

    account = store.find_registered(identity.email)
    if account is None:
        return None
    if account.provider != identity.provider:
        raise ProviderConflict(account.provider.value)
    if account.provider_id:
        # Same provider, different external identity: the email alone never grants access
        logger.warning(
            "%s identity %s asserted email of account_id=%s",
            identity.provider.value, identity.provider_id, account.id,
        )
        raise Conflict("Account already exists")
    return store.save(account, provider_id=identity.provider_id)


def resolve(store: AccountStore, identity: ProviderIdentity) -> Principal:
    """
    Log in, link, or create the account for a provider identity.

    Raises:
        ValidationFailure: the provider returned no usable id or email
        ProviderConflict: the email belongs to an account of another provider
        Conflict: the email belongs to another identity of the same provider,
            or a concurrent insert won with a different identity
    """
    if not identity.provider_id or not identity.email:
        raise ValidationFailure(f"{identity.provider.value} did not return an account id and email")

    account = _match(store, identity)
    if account is not None:
        return Principal.from_account(account)

    try:
        account: Account = store.create(
            email=identity.email,
            provider=identity.provider,
            provider_id=identity.provider_id,
            verified=True,
        )
    except Conflict:
        # Lost a race against a concurrent callback; the winner's row decides
        logger.info("Federated account insert collided: provider=%s email=%s", identity.provider.value, identity.email)
        account = _match(store, identity)
        if account is None:
            raise
        return Principal.from_account(account)

    logger.info(
        "Federated account created: account_id=%s provider=%s",
        account.id, identity.provider.value,
    )
    return Principal.from_account(account)
