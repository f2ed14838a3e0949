"""
FastAPI endpoints for passkey and password authentication.
"""

import html
import logging
from typing import Any, Dict, NoReturn, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .exceptions import AuthError, AuthErrorCode
from .startup import AuthServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

STATUS_CODES = {
    AuthErrorCode.BAD_REQUEST: 400,
    AuthErrorCode.USER_ALREADY_EXISTS: 400,
    AuthErrorCode.CHALLENGE_NOT_FOUND: 400,
    AuthErrorCode.VERIFICATION_FAILED: 400,
    AuthErrorCode.REGISTRATION_FAILED: 400,
    AuthErrorCode.INVALID_CREDENTIALS: 400,
    AuthErrorCode.USER_NOT_FOUND: 404,
    AuthErrorCode.CREDENTIAL_NOT_FOUND: 404,
    AuthErrorCode.INTERNAL_ERROR: 500,
}


class RegisterBeginRequest(BaseModel):
    email: EmailStr = Field(..., description="Valid email address")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")


class LoginBeginRequest(BaseModel):
    email: EmailStr = Field(..., description="Valid email address")


class PasswordRegisterRequest(BaseModel):
    email: EmailStr = Field(..., description="Valid email address")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    password: str = Field(..., min_length=1, max_length=1024)


class PasswordLoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=320)
    password: str = Field(..., min_length=1, max_length=1024)


class PublicKeyCredentialPayload(BaseModel):
    """Attestation or assertion response as serialized by the browser."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1, max_length=1024)
    rawId: str = Field(..., min_length=1, max_length=1024)
    response: Dict[str, Any] = Field(..., description="Authenticator response object")
    type: str

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v != "public-key":
            raise ValueError("Credential type must be public-key")
        return v


def get_services(request: Request) -> AuthServices:
    """Services built at app creation and kept on app.state."""
    return request.app.state.auth_services


def client_info(request: Request) -> Tuple[Optional[str], str]:
    ip_address = request.client.host if request.client else None
    user_agent = html.escape(request.headers.get("user-agent", ""))[:500]  # Limit length
    return ip_address, user_agent


def raise_http(e: AuthError) -> NoReturn:
    status_code = STATUS_CODES.get(e.code, 500)
    if e.code is AuthErrorCode.INTERNAL_ERROR and e.retryable:
        status_code = 503
    raise HTTPException(status_code=status_code, detail=e.to_dict())


def raise_internal(operation: str, e: Exception) -> NoReturn:
    logger.exception(f"Unhandled error in {operation}: {e}")
    raise HTTPException(
        status_code=500,
        detail={"error": AuthErrorCode.INTERNAL_ERROR.value, "message": "Internal server error", "details": {}}
    )


def require_email_param(email: Optional[str]) -> str:
    if not email:
        raise_http(AuthError(AuthErrorCode.BAD_REQUEST, "Email query parameter is required."))
    return email


# WebAuthn registration
@router.post("/register/begin")
async def register_begin(
    data: RegisterBeginRequest,
    request: Request,
    services: AuthServices = Depends(get_services)
):
    """Start passkey registration for a new identity."""
    ip_address, user_agent = client_info(request)
    try:
        return services.registration.begin(data.email, data.name, ip_address, user_agent)
    except AuthError as e:
        raise_http(e)
    except Exception as e:
        raise_internal("register_begin", e)


@router.post("/register/finish")
async def register_finish(
    data: PublicKeyCredentialPayload,
    request: Request,
    email: Optional[str] = Query(None),
    services: AuthServices = Depends(get_services)
):
    """Finish passkey registration with the authenticator's attestation."""
    email = require_email_param(email)
    ip_address, user_agent = client_info(request)
    try:
        result = await services.registration.finish(
            email, data.model_dump(), ip_address=ip_address, user_agent=user_agent
        )
        return {"success": True, **result}
    except AuthError as e:
        raise_http(e)
    except Exception as e:
        raise_internal("register_finish", e)


# WebAuthn authentication
@router.post("/login/begin")
async def login_begin(
    data: LoginBeginRequest,
    request: Request,
    services: AuthServices = Depends(get_services)
):
    """Start passkey login."""
    ip_address, user_agent = client_info(request)
    try:
        return services.authentication.begin(data.email, ip_address, user_agent)
    except AuthError as e:
        raise_http(e)
    except Exception as e:
        raise_internal("login_begin", e)


@router.post("/login/finish")
async def login_finish(
    data: PublicKeyCredentialPayload,
    request: Request,
    email: Optional[str] = Query(None),
    services: AuthServices = Depends(get_services)
):
    """Finish passkey login with the authenticator's assertion."""
    email = require_email_param(email)
    ip_address, user_agent = client_info(request)
    try:
        result = await services.authentication.finish(
            email, data.model_dump(), ip_address=ip_address, user_agent=user_agent
        )
        # Session issuance is left to the caller
        return {"success": True, **result}
    except AuthError as e:
        raise_http(e)
    except Exception as e:
        raise_internal("login_finish", e)


# Password fallback
@router.post("/register/password")
async def register_password(
    data: PasswordRegisterRequest,
    request: Request,
    services: AuthServices = Depends(get_services)
):
    """Create an identity with a password."""
    ip_address, user_agent = client_info(request)
    try:
        user = await services.password.register(data.email, data.name, data.password, ip_address, user_agent)
        return {"success": True, "user": user}
    except AuthError as e:
        raise_http(e)
    except Exception as e:
        raise_internal("register_password", e)


@router.post("/login/password")
async def login_password(
    data: PasswordLoginRequest,
    request: Request,
    services: AuthServices = Depends(get_services)
):
    """Log in with a password."""
    ip_address, user_agent = client_info(request)
    try:
        user = await services.password.login(data.email, data.password, ip_address, user_agent)
        return {"success": True, "user": user}
    except AuthError as e:
        raise_http(e)
    except Exception as e:
        raise_internal("login_password", e)
