"""
Order Engine — Security helpers (JWT decode only, shared secret)
"""
from typing import Any

from jose import jwt

from order_engine.core.config import get_settings

settings = get_settings()

OWNER_ROLE = "OWNER"


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def outlet_allowed(claims: dict[str, Any], outlet_id: str) -> bool:
    """Owners see every outlet; other staff only the one in their token."""
    if claims.get("role") == OWNER_ROLE:
        return True
    return claims.get("outlet_id") == outlet_id
