"""
Key-value persistence for the product catalog and cached features.

The rest of the package only needs get/set/delete over string blobs.
RedisStore backs production; MemoryStore is a process-local stand-in.
"""

import os
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .exceptions import StoreError

logger = logging.getLogger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")


class KeyValueStore(ABC):
    """Async map of string keys to string blobs."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored blob, or None if the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


class MemoryStore(KeyValueStore):
    def __init__(self, data: Dict[str, str] = None):
        self.data = dict(data or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class RedisStore(KeyValueStore):
    def __init__(self, url: str = None, client: redis.Redis = None):
        self.url = url or REDIS_URL
        self.client = client or redis.Redis.from_url(self.url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as e:
            raise StoreError(f"GET {key} failed: {e}") from e

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(key, value)
        except RedisError as e:
            raise StoreError(f"SET {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            raise StoreError(f"DEL {key} failed: {e}") from e

    async def ping(self) -> bool:
        try:
            await self.client.ping()
        except RedisError as e:
            logger.error(f"Failed to connect to Redis at {self.url}: {e}")
            raise StoreError("Database connection failed") from e
        logger.info("Redis connection successful")
        return True

    async def aclose(self) -> None:
        await self.client.aclose()
