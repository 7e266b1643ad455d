"""
Durable watermark: the newest batch id confirmed fully ingested.

The value lives under a single Redis key as the decimal text of the id.
Writing it is the commit point of an ingestion run.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from batchfeed.shared.observability import get_logger

from .errors import StoreError
from .models import BatchId

logger = get_logger(__name__)

DEFAULT_WATERMARK_KEY = "parser:lastParsedTimestamp"

_WATERMARK_RE = re.compile(r"[+-]?[0-9]+")


class WatermarkStore(ABC):
    @abstractmethod
    async def get(self) -> Optional[BatchId]:
        """Return the stored watermark, or None when nothing was ever committed."""

    @abstractmethod
    async def set(self, batch_id: BatchId) -> None:
        """Durably store a new watermark."""


def parse_watermark(raw) -> Optional[BatchId]:
    """Decode a stored watermark value; None stays None."""
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise StoreError(f"Stored watermark is not ASCII text: {raw!r}") from e
    text = str(raw)
    if not _WATERMARK_RE.fullmatch(text):
        raise StoreError(f"Stored watermark is not an integer: {raw!r}")
    return int(text)


class RedisWatermarkStore(WatermarkStore):
    """Watermark kept in one Redis string key (GET / SET)."""

    def __init__(
        self, redis_client: aioredis.Redis, key: str = DEFAULT_WATERMARK_KEY
    ):
        self.redis = redis_client
        self.key = key

    async def get(self) -> Optional[BatchId]:
        try:
            raw = await self.redis.get(self.key)
        except RedisError as e:
            raise StoreError(f"Could not read watermark {self.key}: {e}") from e
        value = parse_watermark(raw)
        logger.debug("Read watermark", key=self.key, watermark=value)
        return value

    async def set(self, batch_id: BatchId) -> None:
        try:
            await self.redis.set(self.key, str(int(batch_id)))
        except RedisError as e:
            raise StoreError(
                f"Could not write watermark {self.key}: {e}", batch_id=batch_id
            ) from e
        logger.info("Watermark saved", key=self.key, watermark=batch_id)
