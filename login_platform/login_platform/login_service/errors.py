"""
Error taxonomy for the login service.

Every error carries the HTTP status and machine-readable code the API layer
renders, so routes can simply let them propagate.
"""
from typing import Optional


class AuthServiceError(Exception):
    status_code = 400
    code = "AUTH_ERROR"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class ValidationFailure(AuthServiceError):
    code = "VALIDATION_FAILURE"


class InvalidVerificationToken(ValidationFailure):
    code = "INVALID_TOKEN"


class VerificationExpired(ValidationFailure):
    code = "TOKEN_EXPIRED"


class NotFound(AuthServiceError):
    code = "NOT_FOUND"


class UnknownProvider(NotFound):
    status_code = 404

    def __init__(self, provider: str):
        super().__init__(f"Unknown or disabled provider: {provider}")


class Conflict(AuthServiceError):
    code = "CONFLICT"


class ProviderConflict(Conflict):
    """The email is already owned by an account of the given provider."""

    code = "PROVIDER_CONFLICT"

    def __init__(self, provider: str, detail: Optional[str] = None):
        super().__init__(detail or f"This email is registered with {provider}. Please sign in with {provider}.")
        self.provider = provider

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["provider"] = self.provider
        return body


class Unauthorized(AuthServiceError):
    status_code = 401
    code = "UNAUTHORIZED"


class LoginRejected(Unauthorized):
    code = "INVALID_CREDENTIALS"

    def __init__(self, detail: str, reason: str, provider: Optional[str] = None):
        super().__init__(detail)
        self.reason = reason
        self.provider = provider

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.provider:
            body["provider"] = self.provider
        return body


class UpstreamFailure(AuthServiceError):
    status_code = 500
    code = "UPSTREAM_FAILURE"

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail)


class MailDeliveryError(Exception):
    """Outbound mail could not be handed to the SMTP server."""
