# /chatbotflex/routes/webhooks.py

import json
import asyncio
import structlog
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Query
from fastapi.responses import JSONResponse, PlainTextResponse

from chatbotflex.config.settings import settings
from chatbotflex.models.conversation import InboundMessage
from chatbotflex.services.inbound_parser import parse_instagram_payload, parse_whatsapp_payload
from chatbotflex.services.message_handler import message_handler
from chatbotflex.utils.dependencies import verify_instagram_signature, verify_whatsapp_signature
from chatbotflex.utils.metrics import response_time_histogram
from chatbotflex.utils.request_utils import limiter

# Meta webhook endpoints. GET answers the subscription handshake; POST
# deliveries are signature-checked, acknowledged at once, and the messages
# are handled in the background so Meta does not retry slow turns.

router = APIRouter(
    tags=["Webhooks"]
)

log = structlog.get_logger(__name__)


def _verify_subscription(channel: str, mode: Optional[str], token: Optional[str], challenge: Optional[str], expected: Optional[str]):
    if mode == "subscribe" and expected and token == expected:
        log.info("Webhook verification successful.", channel=channel)
        return PlainTextResponse(challenge or "")
    log.error("Webhook verification failed.", channel=channel)
    raise HTTPException(status_code=403, detail="Forbidden")


def _decode(body: bytes) -> dict:
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise HTTPException(status_code=400, detail="Malformed JSON body")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")
    return data


async def dispatch_messages(messages: List[InboundMessage]):
    await asyncio.gather(*(message_handler.handle_incoming_message(message) for message in messages))


# --- WhatsApp ---

@router.get("/whatsapp")
async def verify_whatsapp_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge")
):
    return _verify_subscription("whatsapp", hub_mode, hub_verify_token, hub_challenge, settings.whatsapp_verify_token)


@router.post("/whatsapp")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_whatsapp_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    verified_body: bytes = Depends(verify_whatsapp_signature)
):
    with response_time_histogram.labels(endpoint="whatsapp_webhook").time():
        messages = parse_whatsapp_payload(_decode(verified_body), settings.whatsapp_phone_id)
        log.info("WhatsApp webhook received.", messages=len(messages))
        if messages:
            background_tasks.add_task(dispatch_messages, messages)
        return JSONResponse({"status": "success"})


# --- Instagram ---

@router.get("/instagram")
async def verify_instagram_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge")
):
    return _verify_subscription("instagram", hub_mode, hub_verify_token, hub_challenge, settings.instagram_verify_token)


@router.post("/instagram")
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def handle_instagram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    verified_body: bytes = Depends(verify_instagram_signature)
):
    with response_time_histogram.labels(endpoint="instagram_webhook").time():
        messages = parse_instagram_payload(_decode(verified_body))
        log.info("Instagram webhook received.", messages=len(messages))
        if messages:
            background_tasks.add_task(dispatch_messages, messages)
        return JSONResponse({"status": "success"})
