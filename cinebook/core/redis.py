"""
Redis client (sweeper leader lock + health checks)
"""
import logging
import time
from typing import Optional
from urllib.parse import quote, unquote, urlparse

import redis.asyncio as aioredis
from redis.asyncio import Redis

from cinebook.core.config import REDIS_URL

logger = logging.getLogger(__name__)

# Global Redis client instance
_redis_client: Optional[Redis] = None


def _parse_redis_url(url: str) -> str:
    """
    Normalize a REDIS_URL so the password is URL-encoded exactly once
    (unquote then quote, so 'abc%40d' and 'abc@d' both end up as 'abc%40d').
    """
    if not url:
        return url
    p = urlparse(url)
    if p.scheme not in ("redis", "rediss") or "@" not in p.netloc or not p.password:
        return url

    host_port = p.netloc.split("@")[-1]
    password = quote(unquote(p.password), safe="")
    netloc = f"{p.username}:{password}@{host_port}" if p.username else f":{password}@{host_port}"
    normalized = f"{p.scheme}://{netloc}{p.path or ''}"
    if p.query:
        normalized += f"?{p.query}"
    return normalized


def _redacted(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url


async def get_redis(url: Optional[str] = None) -> Redis:
    """Return a singleton async Redis client; raises RuntimeError when it cannot connect."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    url = url or REDIS_URL
    if not url:
        raise RuntimeError("REDIS_URL not set")

    client = aioredis.from_url(
        _parse_redis_url(url),
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=2,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    try:
        pong = await client.ping()
    except Exception as e:
        await client.aclose()
        msg = str(e)
        if "WRONGPASS" in msg or "NOAUTH" in msg or "invalid username-password" in msg:
            logger.error(f"Redis auth failure: {msg}")
            raise RuntimeError("Redis authentication failed. Check REDIS_URL credentials.") from e
        logger.error(f"Redis connection failed: {msg}")
        raise RuntimeError(f"Redis connection failed: {msg}") from e
    if not pong:
        await client.aclose()
        raise RuntimeError("Redis PING returned falsy value")

    _redis_client = client
    logger.info(f"✓ Redis connected: {_redacted(url)}")
    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown"""
    global _redis_client
    if _redis_client is not None:
        client, _redis_client = _redis_client, None
        await client.aclose()
        logger.info("✓ Redis connection closed")


async def health_check_redis(client: Optional[Redis] = None) -> dict:
    """
    Health check for Redis.
    Returns connection status and latency
    """
    try:
        client = client or await get_redis()
        start = time.time()
        await client.ping()
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
            "url": _redacted(REDIS_URL),
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
