# onboarding/core/security.py

import hashlib
import hmac
import re
import time
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from onboarding.core.config import settings
from onboarding.services.exceptions import ValidationError, StaleRequestError

# Fields covered by the provider signature; everything else in the handshake is unsigned
SIGNED_FIELDS = ("code", "host", "shop", "state", "timestamp")

# unix seconds, ASCII digits only
TIMESTAMP_PATTERN = re.compile(r"[0-9]{1,20}")

def build_signature_message(params: Mapping[str, Any]) -> str:
    """Alphabetically sorted, form-urlencoded signed fields; empty ones are left out."""
    items = sorted(
        (key, str(params[key])) for key in SIGNED_FIELDS
        if params.get(key) not in (None, "")
    )
    return urlencode(items)

def compute_hmac(params: Mapping[str, Any], secret: Optional[str] = None) -> str:
    secret = settings.HANDSHAKE_SECRET if secret is None else secret
    message = build_signature_message(params)
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()

def constant_time_equals(expected: Optional[str], provided: Optional[str]) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))

def verify_hmac(params: Mapping[str, Any], signature: Optional[str], secret: Optional[str] = None) -> bool:
    secret = settings.HANDSHAKE_SECRET if secret is None else secret
    if not secret or not signature:
        return False
    return constant_time_equals(compute_hmac(params, secret), signature.lower())

def check_timestamp(timestamp: Any, max_age: Optional[int] = None, now: Optional[float] = None) -> int:
    """
    Rejects handshakes whose timestamp (unix seconds) is more than max_age
    seconds away from now, in either direction. Returns the parsed value.
    """
    max_age = settings.HANDSHAKE_MAX_AGE_SECONDS if max_age is None else max_age
    value = str(timestamp) if isinstance(timestamp, int) else timestamp
    if not isinstance(value, str) or not TIMESTAMP_PATTERN.fullmatch(value):
        raise ValidationError("Invalid timestamp.", code="invalid_timestamp")
    ts = int(value)
    now = time.time() if now is None else now
    if abs(now - ts) > max_age:
        raise StaleRequestError("Request timestamp is too old.")
    return ts
