import datetime as dt
import logging
from typing import Any

import httpx
from jose import jwt, JWTError
from pydantic import BaseModel, ValidationError

from posture_bridge.core.config import Settings
from posture_bridge.core.errors import AuthVerificationError

logger = logging.getLogger(__name__)


class AccessClaims(BaseModel):
    aud: str | list[str]
    exp: int
    sub: str | None = None
    iss: str | None = None
    email: str | None = None
    type: str | None = None
    iat: int | None = None
    nbf: int | None = None
    kid: str | None = None


class JWKSCache:
    """Small in-process cache of the access-control plane's signing keys."""

    def __init__(self):
        self.cached_at: dt.datetime | None = None
        self.jwks: dict[str, Any] | None = None

    def is_fresh(self, ttl_seconds: int) -> bool:
        return self.cached_at is not None and (dt.datetime.now(dt.timezone.utc) - self.cached_at).total_seconds() < ttl_seconds

    def clear(self) -> None:
        self.cached_at = None
        self.jwks = None

    async def load(self, settings: Settings, client: httpx.AsyncClient) -> dict[str, Any]:
        if self.is_fresh(settings.jwks_cache_ttl_seconds) and self.jwks:
            return self.jwks
        try:
            resp = await client.get(settings.jwks_url)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Unable to fetch JWKS from %s: %s", settings.jwks_url, exc)
            raise AuthVerificationError("JWT verification failed: unable to fetch signing keys") from exc
        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            raise AuthVerificationError("JWT verification failed: JWKS missing keys")
        self.cached_at = dt.datetime.now(dt.timezone.utc)
        self.jwks = data
        return data


jwks_cache = JWKSCache()


def _find_jwk(kid: str | None, jwks: dict[str, Any]) -> dict[str, Any] | None:
    keys = jwks.get("keys", [])
    for key in keys:
        if kid and key.get("kid") == kid:
            return key
    if not kid and keys:
        return keys[0]
    return None


async def _select_jwk(kid: str | None, settings: Settings, client: httpx.AsyncClient, cache: JWKSCache) -> dict[str, Any]:
    key = _find_jwk(kid, await cache.load(settings, client))
    if key is None and kid:
        # signing keys rotated since the last load
        logger.info("Unknown kid %s, reloading JWKS", kid)
        cache.clear()
        key = _find_jwk(kid, await cache.load(settings, client))
    if key is not None:
        return key
    raise AuthVerificationError("JWT verification failed: unknown signing key")


def _decode_with_jwk(token: str, jwk: dict[str, Any], settings: Settings) -> dict[str, Any]:
    options = {
        "verify_aud": True,
        "require_aud": True,
        "require_exp": True,
        "verify_iss": settings.access_jwt_issuer is not None,
        "leeway": max(0, settings.jwt_clock_skew_seconds),
    }
    return jwt.decode(
        token,
        jwk,
        algorithms=settings.access_jwt_algorithms,
        audience=settings.policy_aud,
        issuer=settings.access_jwt_issuer,
        options=options,
    )


async def verify_access_assertion(
    token: str,
    settings: Settings,
    client: httpx.AsyncClient,
    cache: JWKSCache = jwks_cache,
) -> AccessClaims:
    """
    Verify the access-control plane's signed assertion against its remote JWKS,
    scoped to the configured policy audience.
    """
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise AuthVerificationError(f"JWT verification failed: {exc}") from exc

    jwk = await _select_jwk(header.get("kid"), settings, client, cache)
    try:
        payload = _decode_with_jwk(token, jwk, settings)
        return AccessClaims(**payload, kid=header.get("kid"))
    except (JWTError, ValidationError) as exc:
        raise AuthVerificationError(f"JWT verification failed: {exc}") from exc
