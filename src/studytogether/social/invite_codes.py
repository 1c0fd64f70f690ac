"""Friend invite codes.

Codes are 8 uppercase hex characters (4 random bytes), generated server-side
with a cryptographic random source. Every user gets one at registration.
"""

from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studytogether.db.models import User

INVITE_CHARSET = frozenset(string.hexdigits.upper())
INVITE_LENGTH = 8
MAX_ATTEMPTS = 10


def generate_invite_code() -> str:
    """Generate a random 8-character uppercase hex code."""
    return secrets.token_hex(INVITE_LENGTH // 2).upper()


def normalize_invite_code(code: str) -> str:
    """Normalize user input for case-insensitive lookup."""
    return code.strip().upper()


def is_well_formed(code: str) -> bool:
    return len(code) == INVITE_LENGTH and all(c in INVITE_CHARSET for c in code)


async def generate_unique_invite_code(db: AsyncSession) -> str:
    """Generate a code no existing user holds."""
    for _ in range(MAX_ATTEMPTS):
        code = generate_invite_code()
        existing = await db.execute(select(User.id).where(User.friend_invite_code == code))
        if existing.scalar_one_or_none() is None:
            return code
    msg = f"Failed to generate unique invite code after {MAX_ATTEMPTS} attempts"
    raise RuntimeError(msg)
