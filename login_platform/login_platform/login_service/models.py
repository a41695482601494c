from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, Index, JSON, UniqueConstraint, text
from sqlalchemy.orm import relationship
import enum
import uuid

from .db import Base, utcnow


class Provider(str, enum.Enum):
    EMAIL = "Email"
    GOOGLE = "Google"
    KAKAO = "Kakao"


class Account(Base):
    __tablename__ = "accounts"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    password_hash = Column(String, nullable=True)
    # NULL provider marks a pending (email verification) account
    provider = Column(
        Enum(Provider, name="account_provider", values_callable=lambda e: [m.value for m in e]),
        nullable=True,
    )
    provider_id = Column(String(64), nullable=True)
    verification_token = Column(String(6), nullable=True)
    verification_issued_at = Column(DateTime, nullable=True)
    verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sessions = relationship("LoginSession", back_populates="account", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("provider", "provider_id", name="uq_accounts_provider_identity"),
        Index(
            "uq_accounts_email_registered", "email", unique=True,
            sqlite_where=text("provider IS NOT NULL"),
            postgresql_where=text("provider IS NOT NULL"),
        ),
        Index(
            "uq_accounts_email_pending", "email", unique=True,
            sqlite_where=text("provider IS NULL"),
            postgresql_where=text("provider IS NULL"),
        ),
    )


class LoginSession(Base):
    __tablename__ = "login_sessions"
    id = Column(String(64), primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    # NULL means a browser-session login with no server-side expiry
    expires_at = Column(DateTime, nullable=True)

    account = relationship("Account", back_populates="sessions")


class AuthEvent(Base):
    __tablename__ = "auth_events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    email = Column(String, nullable=True)
    event_type = Column(
        Enum("signup", "login_success", "login_failure", "logout", "oauth_login",
             "oauth_rejected", "token_refreshed",
             name="auth_event_type"),
        nullable=False
    )
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    event_metadata = Column(JSON, nullable=True)

    __table_args__ = (
        Index('ix_auth_events_account_id', 'account_id'),
        Index('ix_auth_events_timestamp', 'timestamp'),
        Index('ix_auth_events_event_type', 'event_type'),
    )

    def to_dict(self) -> dict:
        """
        Serialize AuthEvent to a dictionary.

        Returns:
            Dictionary with all event fields, datetimes in ISO 8601 format
        """
        return {
            "id": str(self.id),
            "account_id": self.account_id,
            "email": self.email,
            "event_type": self.event_type,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "metadata": self.event_metadata or {}
        }
