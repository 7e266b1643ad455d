# Test fixtures: in-memory Redis stand-in, zip builders and a fake listing host.
# No live services are needed.

import io
import os
import zipfile
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Set

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

LISTING_URL = "http://feed.test/mainstream/posts/"

# Keep settings independent of the developer's environment
for _var in ("CONFIG_PATH", "FILES_URL", "REDIS_URI", "REDIS_MAX_CONNECTIONS"):
    os.environ.pop(_var, None)


class FakeRedis:
    """
    Async subset of redis.asyncio.Redis used by the store and the queue.

    Values are kept as bytes like a client without decode_responses.
    ``fail_on`` names commands that raise a connection error, and
    ``fail_rpush_after`` lets that many RPUSH calls through before failing.
    """

    def __init__(self, fail_on: Iterable[str] = ()):
        self.strings: Dict[str, bytes] = {}
        self.lists: Dict[str, list] = {}
        self.fail_on: Set[str] = set(fail_on)
        self.fail_rpush_after: Optional[int] = None
        self.set_calls = 0
        self.rpush_calls = 0

    @staticmethod
    def _encode(value) -> bytes:
        if isinstance(value, bytes):
            return value
        return str(value).encode()

    def _maybe_fail(self, command: str) -> None:
        if command in self.fail_on:
            raise RedisConnectionError(f"{command} failed: connection refused")

    async def get(self, key):
        self._maybe_fail("get")
        return self.strings.get(key)

    async def set(self, key, value):
        self._maybe_fail("set")
        self.set_calls += 1
        self.strings[key] = self._encode(value)
        return True

    async def rpush(self, key, *values):
        self._maybe_fail("rpush")
        limit = self.fail_rpush_after
        if limit is not None and self.rpush_calls >= limit:
            raise RedisConnectionError("rpush failed: connection reset")
        self.rpush_calls += 1
        items = self.lists.setdefault(key, [])
        items.extend(self._encode(v) for v in values)
        return len(items)


def build_zip(
    files: Dict[str, bytes], modes: Optional[Dict[str, int]] = None
) -> bytes:
    """Zip ``files`` (name -> content) in memory; directories end with '/'."""
    modes = modes or {}
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            info = zipfile.ZipInfo(name)
            mode = modes.get(name)
            if name.endswith("/"):
                info.external_attr = ((mode or 0o755) | 0o040000) << 16
                info.external_attr |= 0x10
                archive.writestr(info, b"")
            else:
                if mode is not None:
                    info.external_attr = (mode | 0o100000) << 16
                info.compress_type = zipfile.ZIP_DEFLATED
                archive.writestr(info, content)
    return buffer.getvalue()


def listing_html(hrefs: Iterable[str]) -> str:
    links = "\n".join(f'<li><a href="{href}">{href}</a></li>' for href in hrefs)
    return (
        "<html><head><title>Index</title></head>"
        f"<body><ul>{links}</ul></body></html>"
    )


def archive_href(batch_id: int) -> str:
    return f"{batch_id}.zip"


class FakeListingHost:
    """
    Serves a listing page and zip archives through httpx.MockTransport.

    ``archives`` maps batch id -> zip bytes; ids in ``broken`` answer 500.
    """

    def __init__(self, listing_url: str = LISTING_URL):
        self.listing_url = listing_url
        self.extra_hrefs: list = []
        self.archives: Dict[int, bytes] = {}
        self.broken: Set[int] = set()
        self.listing_status = 200
        self.requested: list = []

    def add_batch(self, batch_id: int, files: Dict[str, bytes]) -> None:
        self.archives[batch_id] = build_zip(files)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url == self.listing_url:
            hrefs = [archive_href(i) for i in sorted(self.archives)] + self.extra_hrefs
            return httpx.Response(self.listing_status, text=listing_html(hrefs))
        for batch_id, payload in self.archives.items():
            if url == f"{self.listing_url}{batch_id}.zip":
                if batch_id in self.broken:
                    return httpx.Response(500, text="internal error")
                return httpx.Response(200, content=payload)
        return httpx.Response(404, text="not found")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def listing_host() -> FakeListingHost:
    return FakeListingHost()


@pytest.fixture
def zip_factory(tmp_path) -> Callable[..., Path]:
    """Write a zip to tmp_path and return its path."""

    def _make(files: Dict[str, bytes], name: str = "batch.zip", modes=None):
        path = tmp_path / name
        path.write_bytes(build_zip(files, modes))
        return path

    return _make


@pytest.fixture
def make_redis() -> Callable[..., FakeRedis]:
    return FakeRedis
