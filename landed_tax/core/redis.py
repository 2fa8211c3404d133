from __future__ import annotations

import redis.asyncio as redis

from landed_tax.core.config import get_settings


class RedisClient:
    def __init__(self, url: str | None = None) -> None:
        self._url = url or get_settings().redis_url
        self._client: redis.Redis | None = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client


redis_client = RedisClient()
