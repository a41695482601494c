"""
Account Store and session record store.

Thin adapters over a SQLAlchemy session. Unique-key violations surface as
`Conflict` (after rolling back); any other storage error surfaces as
`UpstreamFailure` so the API never leaks driver messages.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional
import logging
import secrets

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import Conflict, UpstreamFailure
from .models import Account, LoginSession, Provider

logger = logging.getLogger(__name__)


@contextmanager
def _storage_errors(db: Session, action: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        db.rollback()
        logger.info("Unique constraint hit while trying to %s: %s", action, exc.orig)
        raise Conflict("Account already exists") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Storage failure while trying to %s: %s", action, exc, exc_info=True)
        raise UpstreamFailure() from exc


class AccountStore:
    def __init__(self, db: Session):
        self.db = db

    def _first(self, action: str, *criteria) -> Optional[Account]:
        with _storage_errors(self.db, action):
            return self.db.query(Account).filter(*criteria).first()

    def find_registered(self, email: str) -> Optional[Account]:
        """Account owning `email` under any provider (pending rows excluded)."""
        return self._first("find registered account", Account.email == email, Account.provider.isnot(None))

    def find_by_provider(self, email: str, provider: Provider) -> Optional[Account]:
        return self._first("find account by provider", Account.email == email, Account.provider == provider)

    def find_pending(self, email: str) -> Optional[Account]:
        return self._first("find pending account", Account.email == email, Account.provider.is_(None))

    def find_pending_with_token(self, email: str, token: str) -> Optional[Account]:
        return self._first(
            "find pending account by token",
            Account.email == email,
            Account.verification_token == token,
            Account.provider.is_(None),
        )

    def find_by_identity(self, account_id, email) -> Optional[Account]:
        """Point-in-time re-confirmation of a principal's `{id, email}` claims."""
        return self._first("confirm account identity", Account.id == account_id, Account.email == email)

    def find_by_id(self, account_id) -> Optional[Account]:
        return self._first("find account by id", Account.id == account_id)

    def find_by_provider_id(self, provider: Provider, provider_id: str) -> Optional[Account]:
        return self._first(
            "find account by provider id",
            Account.provider == provider,
            Account.provider_id == provider_id,
        )

    def create(self, **fields) -> Account:
        account = Account(**fields)
        with _storage_errors(self.db, "create account"):
            self.db.add(account)
            self.db.commit()
            self.db.refresh(account)
        return account

    def save(self, account: Account, **fields) -> Account:
        for key, value in fields.items():
            setattr(account, key, value)
        with _storage_errors(self.db, "update account"):
            self.db.add(account)
            self.db.commit()
            self.db.refresh(account)
        return account

    def update(self, values: dict, *criteria) -> int:
        """Bulk update matching rows; returns the number of rows changed."""
        with _storage_errors(self.db, "update accounts"):
            count = (
                self.db.query(Account)
                .filter(*criteria)
                .update(values, synchronize_session=False)
            )
            self.db.commit()
        return count


class SessionStore:
    def __init__(self, db: Session):
        self.db = db

    def create(self, account_id: int, expires_at: Optional[datetime]) -> LoginSession:
        record = LoginSession(id=secrets.token_urlsafe(32), account_id=account_id, expires_at=expires_at)
        with _storage_errors(self.db, "create session"):
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        return record

    def get(self, session_id: str) -> Optional[LoginSession]:
        with _storage_errors(self.db, "load session"):
            return self.db.query(LoginSession).filter(LoginSession.id == session_id).first()

    def delete(self, session_id: str) -> int:
        with _storage_errors(self.db, "delete session"):
            count = self.db.query(LoginSession).filter(LoginSession.id == session_id).delete()
            self.db.commit()
        return count
