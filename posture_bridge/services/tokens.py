import logging
import time
from typing import Callable, Optional, Protocol

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from posture_bridge.core.config import Settings
from posture_bridge.core.errors import CredentialExchangeError, TokenStoreError
from posture_bridge.schemas.device import CachedCredential

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    async def get(self) -> Optional[CachedCredential]: ...

    async def put(self, credential: CachedCredential) -> None: ...


class MemoryTokenStore:
    """In-process credential cache. A refresh swaps the whole frozen credential."""

    def __init__(self):
        self._credential: Optional[CachedCredential] = None

    async def get(self) -> Optional[CachedCredential]:
        return self._credential

    async def put(self, credential: CachedCredential) -> None:
        self._credential = credential


class RedisTokenStore:
    """Credential cache shared by every worker through Redis.

    The token and its expiry live under two keys, written together in one
    MULTI/EXEC so readers never see a new token with an old expiry.
    """

    def __init__(self, redis: Redis, token_key: str, expiry_key: str):
        self.redis = redis
        self.token_key = token_key
        self.expiry_key = expiry_key

    async def get(self) -> Optional[CachedCredential]:
        try:
            token, expiry = await self.redis.mget(self.token_key, self.expiry_key)
        except RedisError as exc:
            raise TokenStoreError(f"Token cache read failed: {exc}") from exc
        if not token or not expiry:
            return None
        if isinstance(token, bytes):
            token = token.decode()
        try:
            expires_at = int(expiry)
        except ValueError:
            logger.warning("Ignoring unparseable cached token expiry %r", expiry)
            return None
        return CachedCredential(token=token, expires_at=expires_at)

    async def put(self, credential: CachedCredential) -> None:
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.set(self.token_key, credential.token)
            pipe.set(self.expiry_key, str(credential.expires_at))
            await pipe.execute()
        except RedisError as exc:
            raise TokenStoreError(f"Token cache write failed: {exc}") from exc


memory_token_store = MemoryTokenStore()


class DefenderTokenManager:
    def __init__(
        self,
        settings: Settings,
        store: TokenStore,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.client = client
        self.clock = clock

    async def get_access_token(self) -> str:
        now = int(self.clock())
        cached = await self.store.get()
        if cached and cached.expires_at > now + self.settings.token_refresh_skew_seconds:
            logger.debug("Using cached Defender token")
            return cached.token

        logger.info("Refreshing Microsoft Defender token")
        credential = await self._exchange(now)
        await self.store.put(credential)
        return credential.token

    async def _exchange(self, now: int) -> CachedCredential:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.settings.microsoft_client_id,
            "client_secret": self.settings.microsoft_client_secret,
            "scope": self.settings.defender_token_scope,
        }
        try:
            resp = await self.client.post(self.settings.token_endpoint, data=form)
        except httpx.HTTPError as exc:
            logger.error("Token refresh error: %s", exc)
            raise CredentialExchangeError(f"Token refresh failed: {exc}") from exc

        if not resp.is_success:
            logger.error("Token refresh failed: %s %s", resp.status_code, resp.text)
            raise CredentialExchangeError(
                f"Token refresh failed: {resp.status_code} {resp.reason_phrase}",
                status=resp.status_code,
                body=resp.text,
            )

        try:
            data = resp.json()
            token = data["access_token"]
            expires_in = int(data["expires_in"])
        except (ValueError, TypeError, KeyError) as exc:
            raise CredentialExchangeError(
                "Token refresh returned a malformed body", status=resp.status_code, body=resp.text
            ) from exc
        if not isinstance(token, str) or not token:
            raise CredentialExchangeError(
                "Token refresh returned no access_token", status=resp.status_code, body=resp.text
            )
        return CachedCredential(token=token, expires_at=now + expires_in)
