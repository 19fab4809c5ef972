"""
NoteKeep Backend: Authentication Route Handlers
================================================

What:  Email-OTP sign-up and sign-in endpoints under /api/auth.
How:   Validate the body (schemas.auth), call AuthService, shape the response.
       Every failure is raised as a NoteKeepError and rendered by the global
       handlers in main.py.

Endpoints:
    POST /api/auth/signup            create account, email a code   → 201
    POST /api/auth/verify-otp        finish signup, get a token     → 200
    POST /api/auth/login             email a sign-in code           → 200
    POST /api/auth/verify-login-otp  finish sign-in, get a token    → 200
    POST /api/auth/resend-otp        new code for a pending signup  → 200
    GET  /api/auth/me                current user (gated)           → 200
"""

import logging

from fastapi import APIRouter, Depends, status

from notekeep.config import settings
from notekeep.dependencies import get_auth_service, get_current_user
from notekeep.models.user import User
from notekeep.schemas.auth import (
    CodeSentResponse,
    EmailRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse,
    UserResponse,
    VerifyCodeRequest,
)
from notekeep.schemas.common import ErrorResponse
from notekeep.services.auth_service import AuthService
from notekeep.services.notifier import ChallengePurpose

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Auth"])

_CHALLENGE_ERRORS = {
    400: {"description": "Invalid or expired code", "model": ErrorResponse},
    429: {"description": "Too many requests", "model": ErrorResponse},
    503: {"description": "Email delivery unavailable", "model": ErrorResponse},
}


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Email already registered", "model": ErrorResponse},
        **_CHALLENGE_ERRORS,
    },
    summary="Create an account and email a verification code",
)
async def signup(
    body: SignupRequest,
    auth: AuthService = Depends(get_auth_service),
) -> SignupResponse:
    user = await auth.begin_challenge(
        body.email,
        ChallengePurpose.SIGNUP,
        name=body.name,
        age=body.age,
    )
    return SignupResponse(user_id=user.id, email=user.email, name=user.name)


@router.post(
    "/verify-otp",
    response_model=TokenResponse,
    responses=_CHALLENGE_ERRORS,
    summary="Verify the signup code and receive a session token",
)
async def verify_signup_code(
    body: VerifyCodeRequest,
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    token, user = await auth.complete_challenge(body.email, body.otp)
    return TokenResponse(
        message="Email verified successfully",
        token=token,
        expires_in=settings.token_ttl_seconds,
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/login",
    response_model=CodeSentResponse,
    responses={
        403: {"description": "Email not verified yet", "model": ErrorResponse},
        404: {"description": "No account for this email", "model": ErrorResponse},
        **_CHALLENGE_ERRORS,
    },
    summary="Email a sign-in code to a verified account",
)
async def login(
    body: EmailRequest,
    auth: AuthService = Depends(get_auth_service),
) -> CodeSentResponse:
    user = await auth.begin_challenge(body.email, ChallengePurpose.LOGIN)
    return CodeSentResponse(
        message="A sign-in code has been sent to your email.",
        email=user.email,
        name=user.name,
    )


@router.post(
    "/verify-login-otp",
    response_model=TokenResponse,
    responses=_CHALLENGE_ERRORS,
    summary="Verify the sign-in code and receive a session token",
)
async def verify_login_code(
    body: VerifyCodeRequest,
    auth: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    token, user = await auth.complete_challenge(body.email, body.otp)
    return TokenResponse(
        message="Login successful",
        token=token,
        expires_in=settings.token_ttl_seconds,
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/resend-otp",
    response_model=CodeSentResponse,
    responses={
        404: {"description": "No account for this email", "model": ErrorResponse},
        **_CHALLENGE_ERRORS,
    },
    summary="Replace a pending signup code with a new one",
)
async def resend_code(
    body: EmailRequest,
    auth: AuthService = Depends(get_auth_service),
) -> CodeSentResponse:
    user = await auth.resend(body.email)
    return CodeSentResponse(
        message="A new verification code has been sent to your email.",
        email=user.email,
        name=user.name,
    )


@router.get(
    "/me",
    response_model=UserResponse,
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
    summary="The signed-in user",
)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)
