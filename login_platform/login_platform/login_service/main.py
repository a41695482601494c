from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db import get_db, init_db
from .dependencies import get_orchestrator
from .errors import AuthServiceError, LoginRejected
from .orchestrator import AuthOrchestrator
from .schemas import (
    AccountResponse,
    EmailRequest,
    EmailResponse,
    ErrorResponse,
    LoginRequest,
    ResultResponse,
    SignupRequest,
    VerifyRequest,
)
from .transport import attach_artifact, clear_credentials, read_credentials
from .utils.event_logger import log_auth_event
from .routes import oauth

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Initialize database on startup"""
    init_db()
    yield


app = FastAPI(title="Login Service", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(oauth.router)


@app.middleware("http")
async def no_store(request: Request, call_next):
    # Keep authenticated pages out of the back/forward cache
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(AuthServiceError)
async def auth_error_handler(request: Request, exc: AuthServiceError):
    if exc.status_code >= 500:
        logger.error("Request failed: %s %s -> %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "UPSTREAM_FAILURE"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/email", response_model=EmailResponse, responses={400: {"model": ErrorResponse}})
def request_verification_code(payload: EmailRequest, orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    outcome = orchestrator.request_email_verification(payload.email)
    return EmailResponse(result="Check your email for verification code", warning=outcome.warning)


@app.post("/verify", response_model=ResultResponse, responses={400: {"model": ErrorResponse}})
def verify_email(payload: VerifyRequest, orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    orchestrator.verify_email(payload.email, payload.token)
    return ResultResponse(result="User verified")


@app.post("/signup", response_model=ResultResponse, responses={400: {"model": ErrorResponse}})
def signup(
    payload: SignupRequest,
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    db: Session = Depends(get_db),
):
    principal = orchestrator.signup(payload.email, payload.password)
    log_auth_event("signup", request, db, account_id=principal.id, email=principal.email)
    return ResultResponse(result="Signup success")


@app.post("/login", response_model=AccountResponse, responses={401: {"model": ErrorResponse}})
def login(
    payload: LoginRequest,
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    try:
        outcome = orchestrator.login(payload.email, payload.password, remember=payload.checkedKeepLogin)
    except LoginRejected as e:
        log_auth_event("login_failure", request, db, email=payload.email, metadata={"reason": e.reason})
        raise

    log_auth_event(
        "login_success", request, db,
        account_id=outcome.principal.id,
        email=outcome.principal.email,
        metadata={"remember": payload.checkedKeepLogin},
    )
    response = JSONResponse(
        content=AccountResponse(
            result="Login success", email=outcome.principal.email, provider=outcome.principal.provider
        ).model_dump()
    )
    attach_artifact(response, outcome.artifact, settings)
    return response


@app.get("/userInfo", response_model=AccountResponse, responses={401: {"model": ErrorResponse}})
def user_info(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    result = orchestrator.current_user(read_credentials(request))
    if not result.ok:
        response = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Not authorized", "code": result.failure.value.upper()},
        )
        if result.failure.value != "missing":
            # Drop credentials that can no longer succeed
            clear_credentials(response, settings)
        return response

    response = JSONResponse(
        content=AccountResponse(
            result="Login success", email=result.principal.email, provider=result.principal.provider
        ).model_dump()
    )
    if result.refreshed is not None:
        attach_artifact(response, result.refreshed, settings)
        log_auth_event("token_refreshed", request, db, account_id=result.principal.id, email=result.principal.email)
    return response


@app.post("/logout", response_model=ResultResponse)
def logout(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    principal = orchestrator.logout(read_credentials(request))
    if principal is not None:
        log_auth_event("logout", request, db, account_id=principal.id, email=principal.email)

    response = JSONResponse(content={"result": "Logged Out Successfully"})
    clear_credentials(response, settings)
    return response
