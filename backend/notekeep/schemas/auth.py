"""
NoteKeep Backend: Authentication Request/Response Schemas
==========================================================

What:  API contract for the email-OTP sign-up and sign-in endpoints.
How:   FastAPI validates bodies against these models (422 on failure) and
       serializes responses from them.

Validation rules:
    email  syntactically valid address (email-validator)
    name   2-50 characters, letters and spaces only
    age    10-120
    otp    exactly six ASCII digits
"""

import re
import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

_NAME_PATTERN = re.compile(r"^[A-Za-z ]+$")


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class SignupRequest(BaseModel):
    """Body of POST /api/auth/signup."""
    email: EmailStr = Field(description="Address the verification code is sent to")
    name: str = Field(min_length=2, max_length=50, description="Display name")
    age: int = Field(ge=10, le=120, description="Age in years")

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not _NAME_PATTERN.match(v):
            raise ValueError("Name can only contain letters and spaces")
        return v


class EmailRequest(BaseModel):
    """Body of POST /api/auth/login and POST /api/auth/resend-otp."""
    email: EmailStr


class VerifyCodeRequest(BaseModel):
    """Body of POST /api/auth/verify-otp and POST /api/auth/verify-login-otp."""
    email: EmailStr
    otp: str = Field(pattern=r"^[0-9]{6}$", description="The 6-digit code from the email")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    """Public view of an account. Never includes challenge state."""
    id: uuid.UUID
    email: str
    name: str
    age: int
    is_verified: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class SignupResponse(BaseModel):
    message: str = Field(
        default="Account created. Please check your email for the verification code."
    )
    user_id: uuid.UUID
    email: str
    name: str


class CodeSentResponse(BaseModel):
    """Returned by login and resend once the code has been emailed."""
    message: str
    email: str
    name: str


class TokenResponse(BaseModel):
    """
    Returned by both verify endpoints.

    The client sends `token` back as `Authorization: Bearer <token>`.
    """
    message: str
    token: str
    token_type: str = Field(default="bearer")
    expires_in: int = Field(description="Token lifetime in seconds")
    user: UserResponse
