# utils/clarify_token.py
"""
Signed, self-contained clarification tokens.

A token is ``<b64url(json body)>.<b64url(hmac-sha256(body))>``. It carries everything the
submission handler needs (org, order, line, the options shown, which fields were asked for)
plus an ``exp`` epoch. Nothing is stored server-side; the org/order/line it names are
re-checked against live rows when the token comes back.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError


class ClarifyOption(BaseModel):
    label: str
    canonical: str
    brand: Optional[str] = None
    variant: Optional[str] = None
    unit: Optional[str] = None
    product_id: Optional[str] = None
    score: Optional[float] = None
    recommended: bool = False


class AskFlags(BaseModel):
    brand: bool = False
    variant: bool = False


class ClarifyPayload(BaseModel):
    org_id: str
    order_id: str
    line_index: int
    options: List[ClarifyOption] = Field(default_factory=list)
    ask: AskFlags = Field(default_factory=AskFlags)
    allow_other: bool = True
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    exp: int


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    """Strict decode: only the canonical unpadded encoding of a byte string is accepted."""
    padded = text + "=" * (-len(text) % 4)
    raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    # rejects stray '+', '/', '=' and non-zero trailing bits
    if _b64url_encode(raw) != text:
        raise ValueError("non-canonical base64url segment")
    return raw


def _hmac(body: bytes, secret: str) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def sign_clarify_token(payload: ClarifyPayload, secret: str) -> str:
    if not secret:
        raise ValueError("clarify secret is not configured")
    body = json.dumps(payload.model_dump(mode="json"), separators=(",", ":"), sort_keys=True).encode("utf-8")
    return f"{_b64url_encode(body)}.{_b64url_encode(_hmac(body, secret))}"


def verify_clarify_token(token: str, secret: str, *, now: Optional[float] = None) -> Optional[ClarifyPayload]:
    """Return the payload, or None for malformed, tampered or expired tokens."""
    if not token or not secret:
        return None
    parts = token.split(".")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    try:
        body = _b64url_decode(parts[0])
        got = _b64url_decode(parts[1])
    except (ValueError, UnicodeEncodeError):
        return None
    if not hmac.compare_digest(_hmac(body, secret), got):
        return None
    try:
        payload = ClarifyPayload.model_validate(json.loads(body.decode("utf-8")))
    except (ValueError, ValidationError):
        return None
    current = time.time() if now is None else now
    if current > payload.exp:
        return None
    return payload


def token_hash(token: str) -> str:
    return hashlib.sha256((token or "").encode("utf-8")).hexdigest()
