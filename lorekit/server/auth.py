"""X-Lorekit-Key header check, attached to routers as a dependency."""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from lorekit.server.config import settings

logger = logging.getLogger(__name__)

_key_header = APIKeyHeader(name="X-Lorekit-Key", auto_error=False)


def _key_accepted(presented: str, accepted: list[str]) -> bool:
    # Compare against every configured key so timing doesn't reveal which one matched
    matched = False
    for key in accepted:
        matched |= hmac.compare_digest(presented.encode(), key.encode())
    return matched


def require_auth(
    request: Request,
    api_key: Optional[str] = Security(_key_header),
) -> None:
    """Reject the request unless it carries one of the configured API keys.

    LOREKIT_API_KEY may hold several comma-separated keys so a key can be
    rotated without downtime. Unset means open access (local use).
    """
    accepted = settings.api_keys
    if not accepted:
        return

    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-Lorekit-Key header")

    if not _key_accepted(api_key, accepted):
        client = request.client.host if request.client else "unknown"
        logger.warning("Rejected API key from %s on %s", client, request.url.path)
        raise HTTPException(status_code=403, detail="Invalid API key")
