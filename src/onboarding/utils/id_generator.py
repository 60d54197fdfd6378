# onboarding/utils/id_generator.py

import secrets
import string
from datetime import datetime, timezone
from typing import Optional

TENANT_CODE_LENGTH = 20
TENANT_CODE_ALPHABET = string.ascii_uppercase + string.digits

def generate_tenant_code(now: Optional[datetime] = None) -> str:
    """
    Generates an opaque 20 character tenant code.

    The first character encodes the day of the month (1 -> 'A' ... 26 -> 'Z',
    later days wrap around); the remaining 19 are drawn from [A-Z0-9] with a
    CSPRNG. Uniqueness is not guaranteed here, callers insert and retry.
    """
    now = now or datetime.now(timezone.utc)
    day_letter = string.ascii_uppercase[(now.day - 1) % 26]
    body = "".join(secrets.choice(TENANT_CODE_ALPHABET) for _ in range(TENANT_CODE_LENGTH - 1))
    return day_letter + body

def generate_installation_token() -> str:
    """64 hex chars, 32 random bytes."""
    return secrets.token_hex(32)

def generate_state() -> str:
    """Random anti-forgery value for the provider authorize redirect."""
    return secrets.token_hex(16)
