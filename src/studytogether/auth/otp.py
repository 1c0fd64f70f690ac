"""Six-digit email verification codes.

Only a SHA-256 digest of the code is stored; comparison is constant-time.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

OTP_LENGTH = 6


def generate_otp() -> str:
    """Random code in 100000..999999."""
    return str(100000 + secrets.randbelow(900000))


def hash_otp(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def otp_matches(code: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_otp(code.strip()), stored_hash)


def otp_expiry(now: datetime, ttl_minutes: int) -> datetime:
    return now + timedelta(minutes=ttl_minutes)
