"""
Error taxonomy for ingestion runs.

DiscoveryError and StoreError abort a run before any batch is processed.
FetchError, ExtractError and PublishError fail a single batch task, which in
turn prevents the run from advancing the watermark.
"""

from typing import Optional


class IngestionError(RuntimeError):
    """Base class for every ingestion failure."""

    def __init__(self, message: str, batch_id: Optional[int] = None):
        super().__init__(message)
        self.batch_id = batch_id


class DiscoveryError(IngestionError):
    """The listing could not be fetched or yielded an invalid batch id."""


class StoreError(IngestionError):
    """The watermark store is unreachable or holds a malformed value."""


class FetchError(IngestionError):
    """A batch archive could not be downloaded to scratch storage."""


class ExtractError(IngestionError):
    """A batch archive is malformed or could not be written out."""


class PublishError(IngestionError):
    """A document could not be read or appended to the outbound queue."""
