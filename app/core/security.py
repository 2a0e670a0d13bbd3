"""
Request authentication and caller identity
"""

import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.schemas.analysis import Tier

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> Optional[str]:
    """
    Check the X-API-Key header against API_KEY.

    Authentication is skipped entirely when API_KEY is not configured.
    """
    if not settings.API_KEY:
        return api_key
    if not api_key:
        raise HTTPException(status_code=401, detail="X-API-Key header required")
    if not secrets.compare_digest(api_key, settings.API_KEY):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as asserted by the gateway"""
    owner_id: str
    tier: Tier


async def get_principal(
    x_owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
    x_owner_tier: Optional[str] = Header(None, alias="X-Owner-Tier"),
    api_key: Optional[str] = Security(verify_api_key)
) -> Principal:
    """Caller identity from the gateway headers; unknown tiers are treated as free"""
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        tier = Tier((x_owner_tier or Tier.FREE.value).strip().lower())
    except ValueError:
        tier = Tier.FREE
    return Principal(owner_id=x_owner_id.strip(), tier=tier)
