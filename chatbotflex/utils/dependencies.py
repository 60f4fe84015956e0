# /chatbotflex/utils/dependencies.py

import secrets
import structlog
from fastapi import Request, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from chatbotflex.config.settings import settings
from chatbotflex.services.jwt_service import jwt_service
from chatbotflex.services.security_service import SecurityService
from chatbotflex.services.db_service import db_service
from chatbotflex.utils.metrics import webhook_signature_counter
from chatbotflex.utils.request_utils import get_remote_address

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"/api/{settings.api_version}/auth/login")
log = structlog.get_logger(__name__)


async def verify_jwt_token(token: str = Depends(oauth2_scheme)) -> dict:
    claims = jwt_service.verify_access_token(token)
    return {"username": claims.get("sub"), **claims}


async def _verify_signature(request: Request, channel: str, secret: str | None) -> bytes:
    body = await request.body()
    signature = request.headers.get("x-hub-signature-256", "")
    if not SecurityService.verify_webhook_signature(body, signature, secret):
        webhook_signature_counter.labels(channel=channel, status="invalid").inc()
        await db_service.log_security_event(
            "invalid_webhook_signature", get_remote_address(request), {"channel": channel, "signature": signature[:50]}
        )
        log.error("Invalid webhook signature.", channel=channel)
        raise HTTPException(status_code=403, detail="Invalid signature")
    webhook_signature_counter.labels(channel=channel, status="valid").inc()
    return body


async def verify_whatsapp_signature(request: Request) -> bytes:
    return await _verify_signature(request, "whatsapp", settings.whatsapp_app_secret)


async def verify_instagram_signature(request: Request) -> bytes:
    # Instagram deliveries are signed with the Meta app secret; WhatsApp's is used when no separate one is set
    return await _verify_signature(request, "instagram", settings.instagram_app_secret or settings.whatsapp_app_secret)


async def verify_metrics_access(request: Request):
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")
