# /chatbotflex/routes/auth.py

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from chatbotflex.config.settings import settings
from chatbotflex.models.api import LoginRequest, TokenResponse, APIResponse
from chatbotflex.utils.dependencies import verify_jwt_token
from chatbotflex.utils.request_utils import get_remote_address, limiter
from chatbotflex.utils.metrics import auth_attempts_counter
from chatbotflex.services.jwt_service import jwt_service
from chatbotflex.services.security_service import SecurityService, login_tracker
from chatbotflex.services.db_service import db_service

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"]
)

log = structlog.get_logger(__name__)

ADMIN_SUBJECT = "admin"


@router.post("/login", response_model=TokenResponse)
@limiter.limit(f"{settings.auth_rate_limit_per_minute}/minute")
async def login(request: Request, login_data: LoginRequest):
    client_ip = get_remote_address(request)

    if await login_tracker.is_locked_out(client_ip):
        auth_attempts_counter.labels(status="lockout", method="password").inc()
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed attempts. Please try again later."
        )

    if not SecurityService.verify_password(login_data.password, settings.admin_password_hash):
        await login_tracker.record_attempt(client_ip)
        auth_attempts_counter.labels(status="failure", method="password").inc()
        await db_service.log_security_event("failed_login", client_ip, {"reason": "invalid_password"})
        log.warning("Failed admin login.", client_ip=client_ip)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    access_token = jwt_service.create_access_token(ADMIN_SUBJECT)

    auth_attempts_counter.labels(status="success", method="password").inc()
    await db_service.log_security_event("successful_login", client_ip, {"method": "jwt"})

    return TokenResponse(
        access_token=access_token,
        token_type="bearer",
        expires_in=jwt_service.expires_in
    )


@router.get("/me", response_model=APIResponse, status_code=status.HTTP_200_OK)
async def read_current_user(current_user: dict = Depends(verify_jwt_token)):
    return APIResponse(
        success=True,
        message="User authenticated successfully.",
        data={"user": {"username": current_user.get("username")}},
        version=settings.api_version
    )
