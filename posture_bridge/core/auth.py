import logging

import httpx
from fastapi import Depends, Header

from posture_bridge.core.config import Settings
from posture_bridge.core.deps import get_http_client, get_settings_dep
from posture_bridge.core.errors import AuthVerificationError
from posture_bridge.core.security import AccessClaims, verify_access_assertion

logger = logging.getLogger(__name__)

ASSERTION_HEADER = "Cf-Access-Jwt-Assertion"


async def require_access_assertion(
    assertion: str | None = Header(default=None, alias=ASSERTION_HEADER),
    settings: Settings = Depends(get_settings_dep),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> AccessClaims:
    if not assertion:
        logger.error("Missing %s header", ASSERTION_HEADER)
        raise AuthVerificationError("missing required cf authorization token")
    try:
        claims = await verify_access_assertion(assertion, settings, client)
    except AuthVerificationError as exc:
        logger.error("%s", exc)
        raise
    logger.info("JWT verification successful")
    return claims
