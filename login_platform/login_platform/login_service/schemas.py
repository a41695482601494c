from pydantic import BaseModel, Field

from typing import Optional


class EmailRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)


class VerifyRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    token: str = Field(min_length=1, max_length=6)


class SignupRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=5, max_length=128)


class LoginRequest(BaseModel):
    email: str
    password: str
    checkedKeepLogin: bool = False


class ResultResponse(BaseModel):
    result: str


class EmailResponse(BaseModel):
    result: str
    warning: Optional[str] = None


class AccountResponse(BaseModel):
    result: str
    email: str
    provider: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
    code: str
    provider: Optional[str] = None
