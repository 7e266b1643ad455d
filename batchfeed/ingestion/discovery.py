"""
Listing discovery: find the batch ids published on a remote directory page.

The listing is an HTML document whose anchors point at archives named
``<batch_id>.<archive_ext>``. Only anchors whose target ends with the archive
suffix are considered; every one of those must carry an integer id.
"""

import posixpath
import re
from typing import Iterable, List, Optional, Set
from urllib.parse import unquote, urlsplit

import httpx
from bs4 import BeautifulSoup

from batchfeed.shared.observability import get_logger

from .errors import DiscoveryError
from .models import BatchId

logger = get_logger(__name__)

_BATCH_ID_RE = re.compile(r"[+-]?[0-9]+")


def _iter_hrefs(markup: str) -> Iterable[str]:
    soup = BeautifulSoup(markup, "html.parser")
    for anchor in soup.find_all("a", href=True):
        yield anchor["href"]


def batch_id_from_href(href: str, archive_ext: str) -> Optional[str]:
    """
    Return the id segment of an archive link, or None if the link does not
    point at an archive.
    """
    suffix = f".{archive_ext}"
    path = unquote(urlsplit(href.strip()).path)
    name = posixpath.basename(path)
    if not name.endswith(suffix):
        return None
    return name[: -len(suffix)]


def parse_batch_ids(
    markup: str, archive_ext: str = "zip", strict: bool = True
) -> List[BatchId]:
    """
    Extract sorted, deduplicated batch ids from listing markup.

    Args:
        markup: Listing page content
        archive_ext: Archive extension without the leading dot
        strict: Raise on a non-integer id instead of skipping the link

    Raises:
        DiscoveryError: If the markup cannot be parsed, or (strict) an archive
            link does not carry an integer id
    """
    ids: Set[BatchId] = set()
    try:
        hrefs = list(_iter_hrefs(markup))
    except Exception as e:
        raise DiscoveryError(f"Could not parse listing: {e}") from e

    for href in hrefs:
        segment = batch_id_from_href(href, archive_ext)
        if segment is None:
            continue
        if not _BATCH_ID_RE.fullmatch(segment):
            if strict:
                raise DiscoveryError(
                    f"Archive link {href!r} does not carry an integer batch id"
                )
            logger.warning("Skipping archive link with invalid id", href=href)
            continue
        ids.add(int(segment))

    return sorted(ids)


class ListingDiscoverer:
    """Fetches the listing page and returns the batch ids it advertises."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        archive_ext: str = "zip",
        strict: bool = True,
    ):
        self.http = http_client
        self.archive_ext = archive_ext
        self.strict = strict

    async def discover(self, listing_url: str) -> List[BatchId]:
        logger.info("Discovering batches", listing_url=listing_url)
        try:
            response = await self.http.get(listing_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Could not fetch listing {listing_url}: {e}") from e

        ids = parse_batch_ids(response.text, self.archive_ext, strict=self.strict)
        logger.info(
            "Discovered batches",
            count=len(ids),
            newest=ids[-1] if ids else None,
        )
        return ids
