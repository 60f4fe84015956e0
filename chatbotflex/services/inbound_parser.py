# /chatbotflex/services/inbound_parser.py

"""
Turns Meta webhook deliveries into InboundMessage records.

Pure functions: the webhook routes verify signatures and hand the decoded
JSON here; nothing in this module touches the network or the database.
Status callbacks, reactions and other non-message events are skipped.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from chatbotflex.models.conversation import Channel, InboundMessage

logger = logging.getLogger(__name__)


def _from_epoch(value: Any, milliseconds: bool = False) -> Optional[datetime]:
    try:
        seconds = float(value) / (1000 if milliseconds else 1)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _whatsapp_text(message: Dict[str, Any]) -> str:
    message_type = message.get("type")
    if message_type == "text":
        return (message.get("text") or {}).get("body", "")
    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return reply.get("title", "")
    if message_type == "button":
        return (message.get("button") or {}).get("text", "")
    return ""


def parse_whatsapp_payload(payload: Dict[str, Any], expected_phone_id: Optional[str] = None) -> List[InboundMessage]:
    """
    Extracts user messages from a WhatsApp Cloud API webhook body.

    Changes addressed to a different business phone number than
    `expected_phone_id` are ignored.
    """
    messages: List[InboundMessage] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            if change.get("field") != "messages":
                continue
            value = change.get("value") or {}

            incoming_phone_id = (value.get("metadata") or {}).get("phone_number_id")
            if incoming_phone_id and expected_phone_id and incoming_phone_id != expected_phone_id:
                logger.info(f"Ignoring WhatsApp event for phone id {incoming_phone_id}.")
                continue

            names = {
                contact.get("wa_id"): (contact.get("profile") or {}).get("name")
                for contact in value.get("contacts") or []
            }
            for message in value.get("messages") or []:
                sender, message_id = message.get("from"), message.get("id")
                if not sender or not message_id:
                    logger.warning(f"Skipping WhatsApp message without sender or id: {message}")
                    continue
                messages.append(InboundMessage(
                    channel=Channel.WHATSAPP,
                    sender_id=sender,
                    message_id=message_id,
                    text=_whatsapp_text(message),
                    message_type=message.get("type") or "text",
                    sender_name=names.get(sender),
                    timestamp=_from_epoch(message.get("timestamp")),
                ))
    return messages


def parse_instagram_payload(payload: Dict[str, Any]) -> List[InboundMessage]:
    """Extracts direct messages from an Instagram messaging webhook body. Echoes are marked from_me."""
    messages: List[InboundMessage] = []
    for entry in payload.get("entry") or []:
        for event in entry.get("messaging") or []:
            message = event.get("message")
            sender = (event.get("sender") or {}).get("id")
            if not message or not sender or not message.get("mid"):
                continue
            text = message.get("text") or ""
            if not text and message.get("quick_reply"):
                text = message["quick_reply"].get("payload", "")
            messages.append(InboundMessage(
                channel=Channel.INSTAGRAM,
                sender_id=sender,
                message_id=message["mid"],
                text=text,
                message_type="text" if text else "attachment",
                from_me=bool(message.get("is_echo")),
                timestamp=_from_epoch(event.get("timestamp"), milliseconds=True),
            ))
    return messages
