"""
Incremental batch ingestion.

Batches are zip archives advertised on a listing page and named by an integer
id. A durable watermark records the newest batch fully ingested; each run
publishes the documents of every newer batch to an outbound Redis list and
advances the watermark only when all of them succeeded.
"""

from .discovery import ListingDiscoverer, parse_batch_ids
from .errors import (
    DiscoveryError,
    ExtractError,
    FetchError,
    IngestionError,
    PublishError,
    StoreError,
)
from .extract import extract_archive
from .fetch import BatchFetcher, archive_url
from .models import Batch, BatchResult, Document, RunOutcome, RunReport, TaskStage
from .orchestrator import IngestionOrchestrator, build_orchestrator, compute_pending
from .publish import DocumentPublisher, OutboundQueue, RedisOutboundQueue
from .watermark import RedisWatermarkStore, WatermarkStore

__all__ = [
    "Batch",
    "BatchFetcher",
    "BatchResult",
    "DiscoveryError",
    "Document",
    "DocumentPublisher",
    "ExtractError",
    "FetchError",
    "IngestionError",
    "IngestionOrchestrator",
    "ListingDiscoverer",
    "OutboundQueue",
    "PublishError",
    "RedisOutboundQueue",
    "RedisWatermarkStore",
    "RunOutcome",
    "RunReport",
    "StoreError",
    "TaskStage",
    "WatermarkStore",
    "archive_url",
    "build_orchestrator",
    "compute_pending",
    "extract_archive",
    "parse_batch_ids",
]
