from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON bodies use camelCase; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---
class RegisterRequest(CamelModel):
    username: str = Field(..., min_length=1, max_length=35)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=50)
    south_african_id_number: str = Field(..., min_length=1, max_length=20)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone_number: str = Field(..., min_length=1, max_length=30)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1, max_length=100)
    province: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=10)


class LoginRequest(CamelModel):
    username: str = Field(..., min_length=1, max_length=35)
    password: str = Field(..., min_length=1, max_length=50)


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordResetRequest(CamelModel):
    email: EmailStr


# --- Responses ---
class RegisterResponse(CamelModel):
    user_id: str
    email: str
    message: str
    email_verification_required: bool = True


class UserInfo(CamelModel):
    id: Optional[str] = None
    username: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    roles: List[str] = []


class TokenResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


class LoginResponse(TokenResponse):
    user: UserInfo


class TokenValidationResponse(CamelModel):
    valid: bool
    username: str
    authorities: List[str]
    expires_at: datetime


class LogoutResponse(CamelModel):
    message: str
    timestamp: datetime


class PasswordResetResponse(CamelModel):
    message: str


class ErrorResponse(CamelModel):
    message: str
    error_code: str
