"""
Batch fetching: stream one archive from the listing host to scratch storage.
"""

import asyncio
import posixpath
from urllib.parse import urlsplit, urlunsplit

import httpx

from batchfeed.shared.observability import get_logger

from .errors import FetchError
from .models import Batch, BatchId

logger = get_logger(__name__)


def archive_url(base_url: str, batch_id: BatchId, archive_ext: str = "zip") -> str:
    """
    Join ``<batch_id>.<archive_ext>`` onto the path of the listing URL.

    The listing path is treated as a directory whether or not it carries a
    trailing slash. The query string is kept and the fragment is dropped.
    """
    parts = urlsplit(base_url)
    path = posixpath.join(parts.path or "/", f"{batch_id}.{archive_ext}")
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


class BatchFetcher:
    """Downloads batch archives. A failed download is not retried."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        archive_ext: str = "zip",
        chunk_size: int = 64 * 1024,
    ):
        self.http = http_client
        self.base_url = base_url
        self.archive_ext = archive_ext
        self.chunk_size = chunk_size

    def source_url(self, batch_id: BatchId) -> str:
        return archive_url(self.base_url, batch_id, self.archive_ext)

    async def fetch(self, batch: Batch) -> int:
        """
        Stream the batch archive into ``batch.archive_path``.

        Returns:
            Number of bytes written

        Raises:
            FetchError: On network failure, non-2xx status or disk write failure
        """
        logger.info("Downloading archive", url=batch.source_url)
        written = 0
        try:
            batch.archive_path.parent.mkdir(parents=True, exist_ok=True)
            async with self.http.stream("GET", batch.source_url) as response:
                response.raise_for_status()
                out = await asyncio.to_thread(open, batch.archive_path, "wb")
                try:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        await asyncio.to_thread(out.write, chunk)
                        written += len(chunk)
                finally:
                    await asyncio.to_thread(out.close)
        except httpx.HTTPError as e:
            raise FetchError(
                f"Could not download {batch.source_url}: {e}",
                batch_id=batch.batch_id,
            ) from e
        except OSError as e:
            raise FetchError(
                f"Could not write {batch.archive_path}: {e}",
                batch_id=batch.batch_id,
            ) from e

        logger.info("Archive downloaded", path=str(batch.archive_path), bytes=written)
        return written
