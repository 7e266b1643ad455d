import httpx
import pytest

from batchfeed.ingestion.errors import FetchError
from batchfeed.ingestion.fetch import BatchFetcher, archive_url
from batchfeed.ingestion.models import Batch


@pytest.mark.parametrize(
    "base_url, expected",
    [
        ("http://feed.test/posts/", "http://feed.test/posts/42.zip"),
        ("http://feed.test/posts", "http://feed.test/posts/42.zip"),
        ("https://feed.test", "https://feed.test/42.zip"),
        (
            "http://feed.test/posts/?token=abc&sort=desc",
            "http://feed.test/posts/42.zip?token=abc&sort=desc",
        ),
        ("http://feed.test/posts/#latest", "http://feed.test/posts/42.zip"),
    ],
)
def test_archive_url_joins_onto_listing_path(base_url, expected):
    assert archive_url(base_url, 42, "zip") == expected


def _batch(tmp_path, fetcher, batch_id):
    return Batch.in_scratch(batch_id, fetcher.source_url(batch_id), tmp_path, "zip")


@pytest.mark.asyncio
async def test_streams_archive_to_scratch(tmp_path, listing_host):
    listing_host.add_batch(7, {"doc.xml": b"<doc/>"})

    async with listing_host.client() as client:
        fetcher = BatchFetcher(client, listing_host.listing_url, chunk_size=16)
        batch = _batch(tmp_path, fetcher, 7)
        written = await fetcher.fetch(batch)

    assert batch.archive_path == tmp_path / "7" / "7.zip"
    assert batch.archive_path.read_bytes() == listing_host.archives[7]
    assert written == len(listing_host.archives[7])


@pytest.mark.asyncio
async def test_non_ok_status_fails(tmp_path, listing_host):
    listing_host.add_batch(8, {"doc.xml": b"<doc/>"})
    listing_host.broken.add(8)

    async with listing_host.client() as client:
        fetcher = BatchFetcher(client, listing_host.listing_url)
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(_batch(tmp_path, fetcher, 8))

    assert excinfo.value.batch_id == 8


@pytest.mark.asyncio
async def test_missing_archive_fails(tmp_path, listing_host):
    async with listing_host.client() as client:
        fetcher = BatchFetcher(client, listing_host.listing_url)
        with pytest.raises(FetchError, match="404"):
            await fetcher.fetch(_batch(tmp_path, fetcher, 9))


@pytest.mark.asyncio
async def test_network_failure_fails(tmp_path):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        fetcher = BatchFetcher(client, "http://feed.test/")
        with pytest.raises(FetchError, match="Could not download"):
            await fetcher.fetch(_batch(tmp_path, fetcher, 1))


@pytest.mark.asyncio
async def test_disk_write_failure_fails(tmp_path, listing_host):
    listing_host.add_batch(3, {"doc.xml": b"<doc/>"})
    # A regular file where the batch directory should go
    (tmp_path / "3").write_text("in the way")

    async with listing_host.client() as client:
        fetcher = BatchFetcher(client, listing_host.listing_url)
        with pytest.raises(FetchError, match="Could not write"):
            await fetcher.fetch(_batch(tmp_path, fetcher, 3))
