"""
API-key authentication for the race API.

Keys are read from ``API_KEY_USER1`` .. ``API_KEY_USER5``; the key in
slot *n* authenticates as the identity ``user<n>``.  Authentication only
names the caller.  Whether that caller may start a race or relay a wager
is for the race engine to decide.

With no key configured nobody can authenticate, except under
``ENVIRONMENT=development`` where ``DEV_FALLBACK_KEY`` signs in as user1.
"""

import os
import secrets
from typing import Dict, Optional

from dotenv import load_dotenv
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

load_dotenv()

API_KEY_SLOTS = 5
DEV_FALLBACK_KEY = "dev-key-insecure"

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def load_api_keys() -> Dict[str, str]:
    """Configured ``{key: identity}``, read from the environment on every call."""
    configured = {}
    for slot in range(1, API_KEY_SLOTS + 1):
        key = os.getenv(f"API_KEY_USER{slot}")
        if key:
            configured[key] = f"user{slot}"
    if configured:
        return configured

    if os.getenv("ENVIRONMENT") == "development":
        return {DEV_FALLBACK_KEY: "user1"}
    raise ValueError(
        f"No API keys configured; set at least one of API_KEY_USER1..API_KEY_USER{API_KEY_SLOTS}"
    )


def identity_for_key(api_key: str) -> Optional[str]:
    """Identity the key belongs to, or None.  Compared in constant time."""
    for key, identity in load_api_keys().items():
        if secrets.compare_digest(key.encode(), api_key.encode()):
            return identity
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """FastAPI dependency returning the caller identity; 401 on a missing or unknown key."""
    if not api_key:
        raise _unauthorized("Missing X-API-Key header")
    caller = identity_for_key(api_key)
    if caller is None:
        raise _unauthorized("Unknown API key")
    return caller
