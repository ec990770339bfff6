from collections.abc import AsyncGenerator

import httpx
from fastapi import Depends
from redis import asyncio as aioredis
from redis.asyncio import ConnectionPool

from posture_bridge.core.config import get_settings, Settings
from posture_bridge.services.telemetry import DefenderDeviceFetcher
from posture_bridge.services.tokens import DefenderTokenManager, RedisTokenStore, TokenStore, memory_token_store

_redis_pool: ConnectionPool | None = None


async def get_settings_dep() -> Settings:
    return get_settings()


def _ensure_redis_pool(settings: Settings) -> ConnectionPool:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            settings.redis_url,
            max_connections=64,
            decode_responses=True,
            socket_timeout=1.0,
            socket_connect_timeout=1.0,
            health_check_interval=30,
        )
    return _redis_pool


async def get_http_client(settings: Settings = Depends(get_settings_dep)) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


async def get_token_store(settings: Settings = Depends(get_settings_dep)) -> AsyncGenerator[TokenStore, None]:
    if not settings.redis_url:
        yield memory_token_store
        return
    client = aioredis.Redis(connection_pool=_ensure_redis_pool(settings))
    try:
        yield RedisTokenStore(client, settings.token_cache_key, settings.token_cache_expiry_key)
    finally:
        # the pool stays open; only this client object is released
        await client.aclose()


async def get_token_manager(
    settings: Settings = Depends(get_settings_dep),
    store: TokenStore = Depends(get_token_store),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> DefenderTokenManager:
    return DefenderTokenManager(settings, store, client)


async def get_device_fetcher(
    settings: Settings = Depends(get_settings_dep),
    token_manager: DefenderTokenManager = Depends(get_token_manager),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> DefenderDeviceFetcher:
    return DefenderDeviceFetcher(settings, token_manager, client)
