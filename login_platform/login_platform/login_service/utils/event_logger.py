"""
Event logger utility for authentication events.
"""
from typing import Optional
from fastapi import Request
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import sys
import logging
import os

from ..config import get_settings
from ..db import utcnow
from ..models import AuthEvent

_settings = get_settings()

# Configure file and stdout logging
log_dir = os.getenv("LOG_DIR", _settings.LOG_DIR)

# Create handlers list
handlers = [logging.StreamHandler(sys.stdout)]

# Try to add file handler, but continue without it if directory creation fails
try:
    os.makedirs(log_dir, exist_ok=True)
    handlers.append(logging.FileHandler(f"{log_dir}/auth_events.log"))
except (OSError, PermissionError) as e:
    # Log to stderr if file logging setup fails
    print(f"WARNING: Could not set up file logging: {e}", file=sys.stderr)

logging.basicConfig(
    level=getattr(logging, _settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    handlers=handlers
)

logger = logging.getLogger(__name__)


ALLOWED_EVENT_TYPES = {
    "signup",
    "login_success",
    "login_failure",
    "logout",
    "oauth_login",
    "oauth_rejected",
    "token_refreshed",
}


def client_ip(request: Request) -> Optional[str]:
    # Prefer X-Forwarded-For (proxy/load balancer scenarios), first hop only
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def log_auth_event(
    event_type: str,
    request: Request,
    db: Session,
    account_id: Optional[int] = None,
    email: Optional[str] = None,
    metadata: Optional[dict] = None
) -> None:
    """
    Record an authentication event in the database and the auth log.

    Args:
        event_type: One of ALLOWED_EVENT_TYPES
        request: FastAPI Request object
        db: Database session
        account_id: Account the event is about, when one is known
        email: Email the event is about
        metadata: Optional dictionary of additional context

    Raises:
        ValueError: If event_type is invalid
    """
    if event_type not in ALLOWED_EVENT_TYPES:
        raise ValueError(
            f"Invalid event_type '{event_type}'. Must be one of: {', '.join(sorted(ALLOWED_EVENT_TYPES))}"
        )

    ip_address = client_ip(request)
    user_agent = request.headers.get("user-agent")
    try:
        auth_event = AuthEvent(
            account_id=account_id,
            email=email,
            event_type=event_type,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=utcnow(),
            event_metadata=metadata or {}
        )

        db.add(auth_event)
        db.commit()

        logger.info(
            "AUTH %s account_id=%s email=%s ip=%s",
            event_type, account_id, email, ip_address
        )

    except SQLAlchemyError as e:
        # Log error but don't raise - logging failure should not break auth flow
        logger.warning(
            "Failed to log auth event - account_id=%s, event_type=%s, error=%s",
            account_id, event_type, e
        )
        db.rollback()
