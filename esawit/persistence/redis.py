from __future__ import annotations

from urllib.parse import urlsplit

from redis.asyncio import Redis


def create_redis(url: str) -> Redis:
    # Decode responses so cache payloads and counters come back as str.
    return Redis.from_url(url, encoding="utf-8", decode_responses=True)


def redis_location(url: str) -> str:
    # Loggable form of a Redis URL: scheme, host, port and db only.
    parts = urlsplit(url)
    if parts.scheme == "unix":
        return f"unix://{parts.path}"
    host = parts.hostname or "localhost"
    port = parts.port or 6379
    return f"{parts.scheme}://{host}:{port}{parts.path}"


async def close_redis(client: Redis) -> None:
    await client.aclose()
