"""
Data model for ingestion runs: batches, documents and the per-task and
per-run results the orchestrator reports.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

BatchId = int


class TaskStage(str, Enum):
    """Per-batch task stages in execution order."""

    CREATED = "CREATED"
    FETCHING = "FETCHING"
    EXTRACTING = "EXTRACTING"
    PUBLISHING = "PUBLISHING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class RunOutcome(str, Enum):
    NO_NEW_BATCHES = "no_new_batches"
    DRY_RUN = "dry_run"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class Batch:
    """One archive's worth of work, owned by a single task for a run."""

    batch_id: BatchId
    source_url: str
    archive_path: Path
    extract_dir: Path

    @classmethod
    def in_scratch(
        cls, batch_id: BatchId, source_url: str, scratch_dir: Path, archive_ext: str
    ) -> "Batch":
        # Each batch gets its own subdirectory so tasks never share files
        work_dir = Path(scratch_dir) / str(batch_id)
        return cls(
            batch_id=batch_id,
            source_url=source_url,
            archive_path=work_dir / f"{batch_id}.{archive_ext}",
            extract_dir=work_dir / "extracted",
        )


@dataclass(frozen=True)
class Document:
    name: str
    content: bytes


@dataclass
class BatchResult:
    batch_id: BatchId
    stage: TaskStage
    documents: int = 0
    failed_stage: Optional[TaskStage] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.stage == TaskStage.SUCCEEDED

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["stage"] = self.stage.value
        if self.failed_stage is not None:
            data["failed_stage"] = self.failed_stage.value
        return data


@dataclass
class RunReport:
    """Summary of one orchestrator run."""

    run_id: str
    cursor: Optional[BatchId]
    discovered: List[BatchId] = field(default_factory=list)
    pending: List[BatchId] = field(default_factory=list)
    results: List[BatchResult] = field(default_factory=list)
    committed_watermark: Optional[BatchId] = None
    outcome: RunOutcome = RunOutcome.NO_NEW_BATCHES

    @property
    def failed(self) -> List[BatchResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def documents_published(self) -> int:
        return sum(r.documents for r in self.results)

    def to_dict(self) -> Dict:
        return {
            "run_id": self.run_id,
            "cursor": self.cursor,
            "discovered": list(self.discovered),
            "pending": list(self.pending),
            "results": [r.to_dict() for r in self.results],
            "committed_watermark": self.committed_watermark,
            "documents_published": self.documents_published,
            "outcome": self.outcome.value,
        }
