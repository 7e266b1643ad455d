"""
Orchestrator for incremental batch ingestion.

One run:
1. read the watermark and discover the batch ids on the listing page
2. select the pending ids (strictly newer than the watermark)
3. fetch, extract and publish every pending batch concurrently, through a
   bounded pool of tasks sharing one scratch directory
4. advance the watermark to the newest pending id only when every batch
   succeeded

A failed run leaves the watermark untouched, so the next run retries the same
range. Documents of batches that did succeed are not rolled back; the sink
sees them again on the retry.
"""

import asyncio
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Iterable, List, Optional

import structlog

from batchfeed.shared.config import Config, Settings
from batchfeed.shared.connections import ConnectionManager
from batchfeed.shared.observability import get_logger, set_run_id

from .discovery import ListingDiscoverer
from .errors import ExtractError, IngestionError
from .extract import extract_archive
from .fetch import BatchFetcher
from .models import Batch, BatchId, BatchResult, RunOutcome, RunReport, TaskStage
from .publish import DocumentPublisher, RedisOutboundQueue
from .watermark import RedisWatermarkStore, WatermarkStore

logger = get_logger(__name__)


def compute_pending(
    discovered: Iterable[BatchId], cursor: Optional[BatchId]
) -> List[BatchId]:
    """Ids newer than the watermark, deduplicated and ascending."""
    return sorted({i for i in discovered if cursor is None or i > cursor})


class IngestionOrchestrator:
    """
    Runs ingestion passes against injected collaborators.

    The Redis-backed store and queue, and the HTTP client behind the
    discoverer and fetcher, are owned by the caller; see
    ``build_orchestrator`` for the production wiring.
    """

    def __init__(
        self,
        discoverer: ListingDiscoverer,
        store: WatermarkStore,
        fetcher: BatchFetcher,
        publisher: DocumentPublisher,
        listing_url: str,
        max_concurrency: int = 10,
        scratch_root: Optional[str] = None,
        scratch_prefix: str = "batchfeed-",
        extractor: Callable[..., List[Path]] = extract_archive,
    ):
        if max_concurrency < 1:
            raise ValueError(
                f"max_concurrency must be positive, got {max_concurrency}"
            )
        self.discoverer = discoverer
        self.store = store
        self.fetcher = fetcher
        self.publisher = publisher
        self.listing_url = listing_url
        self.max_concurrency = max_concurrency
        self.scratch_root = scratch_root
        self.scratch_prefix = scratch_prefix
        self.extractor = extractor

    async def run(self, dry_run: bool = False) -> RunReport:
        """
        Execute one ingestion pass.

        Raises:
            StoreError: If the watermark cannot be read or written
            DiscoveryError: If the listing cannot be discovered

        Returns:
            RunReport; ``outcome`` is FAILED when any batch failed
        """
        run_id = uuid.uuid4().hex
        set_run_id(run_id)

        cursor = await self.store.get()
        logger.info("Last ingested batch", watermark=cursor)

        discovered = await self.discoverer.discover(self.listing_url)
        pending = compute_pending(discovered, cursor)
        report = RunReport(
            run_id=run_id, cursor=cursor, discovered=discovered, pending=pending
        )

        if not pending:
            logger.info("No new batches found", discovered=len(discovered))
            return report

        if dry_run:
            report.outcome = RunOutcome.DRY_RUN
            logger.info("Dry run, not ingesting", pending=pending)
            return report

        logger.info("Ingesting batches", pending=len(pending), first=pending[0])

        with tempfile.TemporaryDirectory(
            prefix=self.scratch_prefix,
            dir=self.scratch_root,
            ignore_cleanup_errors=True,
        ) as scratch:
            report.results = await self._ingest_all(pending, Path(scratch))
            logger.debug("Removing scratch directory", path=scratch)

        if report.failed:
            report.outcome = RunOutcome.FAILED
            logger.error(
                "Run failed, watermark not advanced",
                failed=[r.batch_id for r in report.failed],
                watermark=cursor,
            )
            return report

        # Reduced after the join, from confirmed results only
        new_watermark = max(r.batch_id for r in report.results)
        await self.store.set(new_watermark)
        report.committed_watermark = new_watermark
        report.outcome = RunOutcome.COMMITTED
        logger.info(
            "Run committed",
            watermark=new_watermark,
            batches=len(report.results),
            documents=report.documents_published,
        )
        return report

    async def _ingest_all(
        self, pending: List[BatchId], scratch: Path
    ) -> List[BatchResult]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._ingest_batch(batch_id, scratch, semaphore) for batch_id in pending),
            return_exceptions=True,
        )

        results: List[BatchResult] = []
        for batch_id, outcome in zip(pending, outcomes):
            if isinstance(outcome, BatchResult):
                results.append(outcome)
                continue
            logger.error(
                "Batch task crashed",
                batch_id=batch_id,
                error=repr(outcome),
            )
            results.append(
                BatchResult(
                    batch_id=batch_id,
                    stage=TaskStage.FAILED,
                    error=repr(outcome),
                )
            )
        return results

    async def _ingest_batch(
        self, batch_id: BatchId, scratch: Path, semaphore: asyncio.Semaphore
    ) -> BatchResult:
        """Fetch, extract and publish one batch, stopping at the first failure."""
        batch = Batch.in_scratch(
            batch_id,
            self.fetcher.source_url(batch_id),
            scratch,
            self.fetcher.archive_ext,
        )
        stage = TaskStage.CREATED

        async with semaphore:
            with structlog.contextvars.bound_contextvars(batch_id=batch_id):
                try:
                    stage = TaskStage.FETCHING
                    await self.fetcher.fetch(batch)

                    stage = TaskStage.EXTRACTING
                    try:
                        await asyncio.to_thread(
                            self.extractor, batch.archive_path, batch.extract_dir
                        )
                    except ExtractError as e:
                        e.batch_id = batch_id
                        raise

                    stage = TaskStage.PUBLISHING
                    documents = await self.publisher.publish(batch)
                except IngestionError as e:
                    logger.error(
                        "Batch failed",
                        stage=stage.value,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    return BatchResult(
                        batch_id=batch_id,
                        stage=TaskStage.FAILED,
                        failed_stage=stage,
                        error=str(e),
                    )

                logger.info("Batch succeeded", documents=documents)
                return BatchResult(
                    batch_id=batch_id,
                    stage=TaskStage.SUCCEEDED,
                    documents=documents,
                )


async def build_orchestrator(
    connections: ConnectionManager,
    config: Config,
    settings: Settings,
    listing_url: Optional[str] = None,
    max_concurrency: Optional[int] = None,
) -> IngestionOrchestrator:
    """Wire an orchestrator to Redis and HTTP through a connection manager."""
    redis_client = await connections.get_redis_client()
    http_client = connections.get_http_client()
    url = listing_url or settings.files_url

    return IngestionOrchestrator(
        discoverer=ListingDiscoverer(
            http_client,
            archive_ext=config.listing.archive_ext,
            strict=config.listing.strict_ids,
        ),
        store=RedisWatermarkStore(redis_client, key=config.store.watermark_key),
        fetcher=BatchFetcher(
            http_client,
            base_url=url,
            archive_ext=config.listing.archive_ext,
            chunk_size=config.ingestion.chunk_size,
        ),
        publisher=DocumentPublisher(
            RedisOutboundQueue(redis_client, queue_name=config.queue.name)
        ),
        listing_url=url,
        max_concurrency=(
            max_concurrency
            if max_concurrency is not None
            else config.ingestion.max_concurrency
        ),
        scratch_root=config.ingestion.scratch_root,
        scratch_prefix=config.ingestion.scratch_prefix,
    )
