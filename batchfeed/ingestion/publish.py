"""
Document publishing: walk an extracted batch and append every file to the
outbound Redis list.

Each document is pushed as two consecutive list elements, its file name and
its raw content. Delivery is at-least-once: a batch that is re-ingested after
a failed run pushes its documents again.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterator

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from batchfeed.shared.observability import get_logger

from .errors import PublishError
from .models import Batch, Document

logger = get_logger(__name__)

DEFAULT_QUEUE_NAME = "NEWS_XML"


class OutboundQueue(ABC):
    @abstractmethod
    async def append(self, document: Document) -> None:
        """Append one document to the sink."""


class RedisOutboundQueue(OutboundQueue):
    """Append-only Redis list (RPUSH name, content)."""

    def __init__(
        self, redis_client: aioredis.Redis, queue_name: str = DEFAULT_QUEUE_NAME
    ):
        self.redis = redis_client
        self.queue_name = queue_name

    async def append(self, document: Document) -> None:
        await self.redis.rpush(self.queue_name, document.name, document.content)


def iter_document_paths(root) -> Iterator[Path]:
    """
    Yield every non-directory entry under ``root`` depth-first, visiting the
    entries of each directory in lexical order.
    """
    with os.scandir(root) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from iter_document_paths(entry.path)
        else:
            yield Path(entry.path)


class DocumentPublisher:
    def __init__(self, queue: OutboundQueue):
        self.queue = queue

    async def publish(self, batch: Batch) -> int:
        """
        Publish every file of an extracted batch, stopping at the first failure.

        Returns:
            Number of documents appended

        Raises:
            PublishError: If a file cannot be read or the sink rejects a write
        """
        published = 0
        try:
            paths = list(iter_document_paths(batch.extract_dir))
        except OSError as e:
            raise PublishError(
                f"Could not walk {batch.extract_dir}: {e}", batch_id=batch.batch_id
            ) from e

        for path in paths:
            try:
                content = await asyncio.to_thread(path.read_bytes)
            except OSError as e:
                raise PublishError(
                    f"Could not read {path}: {e}", batch_id=batch.batch_id
                ) from e

            document = Document(name=path.name, content=content)
            try:
                await self.queue.append(document)
            except RedisError as e:
                raise PublishError(
                    f"Could not publish {document.name}: {e}",
                    batch_id=batch.batch_id,
                ) from e
            published += 1

        logger.info(
            "Batch published",
            extract_dir=str(batch.extract_dir),
            documents=published,
        )
        return published
