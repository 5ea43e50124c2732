"""
Key-value store used for conversation records, chat sessions and the places
cache. Values are JSON documents written with an expiry.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError

from .config import CONFIG
from .errors import PersistenceError


def create_redis_client() -> redis_async.Redis:
    if CONFIG.redis_url:
        return redis_async.from_url(CONFIG.redis_url, decode_responses=True)
    return redis_async.Redis(
        host=CONFIG.redis_host,
        port=CONFIG.redis_port,
        decode_responses=True,
    )


class KeyValueStore:
    def __init__(self, client: redis_async.Redis) -> None:
        self._client = client

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            raise PersistenceError(f"Store read failed for {key}: {e}") from e
        return self._decode(key, raw)

    async def pop_json(self, key: str) -> Optional[Any]:
        """Atomically read and delete a key."""
        try:
            raw = await self._client.getdel(key)
        except RedisError as e:
            raise PersistenceError(f"Store read failed for {key}: {e}") from e
        return self._decode(key, raw)

    async def set_json(self, key: str, value: Any, ttl_sec: int) -> None:
        try:
            await self._client.set(key, json.dumps(value), ex=ttl_sec)
        except RedisError as e:
            raise PersistenceError(f"Store write failed for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise PersistenceError(f"Store delete failed for {key}: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _decode(key: str, raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logging.warning("Discarding unparseable value stored under %s", key)
            return None
