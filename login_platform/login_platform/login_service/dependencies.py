from typing import Dict

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db import get_db
from .mailer import Mailer
from .oauth import OAuthClient, build_oauth_clients
from .orchestrator import AuthOrchestrator
from .store import AccountStore
from .strategies import build_strategy


def get_mailer(settings: Settings = Depends(get_settings)) -> Mailer:
    return Mailer(settings)


def get_oauth_clients(settings: Settings = Depends(get_settings)) -> Dict[str, OAuthClient]:
    return build_oauth_clients(settings)


def get_orchestrator(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
) -> AuthOrchestrator:
    return AuthOrchestrator(AccountStore(db), build_strategy(settings), settings, mailer)
