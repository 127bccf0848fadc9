# whatsapp/builder_out.py

import os
import requests
from typing import Any, Dict, Optional
from dotenv import load_dotenv

from app.logging_config import logger

"""
WhatsApp delivery of clarification links.

   extra = {"display_text": "Choose item", "url": "https://example.com/c/<token>"}
   send_link_cta_message(to, "Which noodles did you mean?", extra)
"""

load_dotenv(override=True)
WABA_HEADER_TEXT_LIMIT = 60
WABA_BUTTON_TEXT_LIMIT = 20


def _api_url() -> str:
    return f"https://graph.facebook.com/v19.0/{os.getenv('PHONE_NUMBER_ID')}/messages"


def _get_headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {os.getenv('WHATSAPP_ACCESS_TOKEN')}",
        "Content-Type": "application/json"
    }


def send_clarify_link(to_number: str, url: str, item_label: Optional[str] = None) -> bool:
    """Deliver a clarification link. Failures are logged, never raised."""
    item = (item_label or "").strip() or "one of your items"
    text = f"Quick question before we pack your order: which {item} did you mean? Tap below to choose."
    try:
        send_link_cta_message(
            to_number,
            text,
            {"display_text": "Choose item", "url": url, "header_text": "Confirm your item"},
        )
        return True
    except (requests.RequestException, RuntimeError, ValueError) as e:
        logger.warning(f"builder_out ::::: send_clarify_link ::::: delivery to {to_number} failed: {e}")
        return False


# ---------- Message Senders ----------

def send_link_cta_message(
    to_number: str,
    message_text: str,
    extra_data: Optional[Dict[str, Any]] = None
):
    """
    extra_data = {"display_text": "...", "url": "...", ["header_text": "..."]}
    """
    if not extra_data or "display_text" not in extra_data or "url" not in extra_data:
        raise ValueError("send_link_cta_message requires extra_data['display_text'] and extra_data['url'].")

    interactive = {
        "type": "cta_url",
        "body": {"text": message_text},
        "action": {
            "name": "cta_url",
            "parameters": {
                "display_text": str(extra_data["display_text"])[:WABA_BUTTON_TEXT_LIMIT],
                "url": extra_data["url"]
            }
        }
    }

    header_text = extra_data.get("header_text")
    if header_text:
        text = str(header_text)
        text = text if len(text) <= WABA_HEADER_TEXT_LIMIT else text[:WABA_HEADER_TEXT_LIMIT - 1] + "…"
        interactive["header"] = {"type": "text", "text": text}

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to_number,
        "type": "interactive",
        "interactive": interactive
    }
    _post_message(payload)


def _post_message(payload: Dict[str, Any]):
    logger.info(f"builder_out ::::: _post_message ::::: sending {payload.get('type')} to {payload.get('to')}")
    response = requests.post(_api_url(), headers=_get_headers(), json=payload, timeout=10)
    logger.info(f"builder_out ::::: _post_message ::::: WhatsApp API response: {response.status_code}")
    if not (200 <= response.status_code < 300):
        raise RuntimeError(f"Failed to send message: {response.status_code} {response.text}")
