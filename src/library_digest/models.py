"""Core enums, constants, and record types for the ingestion pipeline.

Enums:
    ContentClass   -- Content type of a fetched item (document, image, unrecognized).
                      Decides which lane processes the item.
    ItemState      -- Lane state machine (queued, in_progress, completed, skipped, failed).
    ResultStatus   -- Terminal outcome recorded on a ProcessingResult (ok, skipped, failed).
    ErrorCategory  -- Error classification for retry logic (transient, permanent).
    EnqueuePolicy  -- What a full lane queue does to its producer (block, reject).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path, PurePosixPath


class ContentClass(StrEnum):
    DOCUMENT = "document"
    IMAGE = "image"
    UNRECOGNIZED = "unrecognized"


class ItemState(StrEnum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ResultStatus(StrEnum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class ErrorCategory(StrEnum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class EnqueuePolicy(StrEnum):
    BLOCK = "block"
    REJECT = "reject"


# Terminal lane state for each result status
TERMINAL_STATE: dict[ResultStatus, ItemState] = {
    ResultStatus.OK: ItemState.COMPLETED,
    ResultStatus.SKIPPED: ItemState.SKIPPED,
    ResultStatus.FAILED: ItemState.FAILED,
}

BLANK_DOCUMENT_REASON = "blank document"

DEFAULT_IMAGE_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png"})

# Archives, OS marker files, in-progress transfers
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    r"\.zip$",
    r"^\.DS_Store$",
    r"^\._",
    r"\.(part|filepart|tmp)$",
)


@dataclass(frozen=True)
class RemoteEntry:
    """One file or directory reported by the remote listing."""

    path: str
    is_directory: bool = False
    modified_at: datetime | None = None
    size: int | None = None

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name


@dataclass(frozen=True)
class FetchedItem:
    """A remote file whose bytes are complete on local disk."""

    remote_path: str
    local_path: Path
    modified_at: datetime | None
    content_class: ContentClass
    size: int | None = None

    @property
    def name(self) -> str:
        return PurePosixPath(self.remote_path).name


@dataclass
class ProcessingResult:
    """Outcome of one attempted item (fetch or lane processing)."""

    source_path: str
    status: ResultStatus
    summary: str = ""
    reason: str = ""
    error: str = ""
    category: ErrorCategory | None = None

    @classmethod
    def ok(cls, source_path: str, summary: str) -> ProcessingResult:
        return cls(source_path=source_path, status=ResultStatus.OK, summary=summary)

    @classmethod
    def skipped(cls, source_path: str, reason: str) -> ProcessingResult:
        return cls(source_path=source_path, status=ResultStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(
        cls,
        source_path: str,
        error: str,
        category: ErrorCategory = ErrorCategory.PERMANENT,
    ) -> ProcessingResult:
        return cls(
            source_path=source_path,
            status=ResultStatus.FAILED,
            error=error,
            category=category,
        )

    @property
    def is_final(self) -> bool:
        """True unless this is a failure worth retrying on a later run."""
        return not (
            self.status == ResultStatus.FAILED
            and self.category == ErrorCategory.TRANSIENT
        )


@dataclass
class RunSummary:
    """Counters and results from one pipeline run."""

    listed: int = 0
    excluded: int = 0
    already_done: int = 0
    fetched: int = 0
    fetch_failed: int = 0
    routed: int = 0
    listing_error: str | None = None
    aborted: bool = False
    results: list[ProcessingResult] = field(default_factory=list)

    def count(self, status: ResultStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def completed(self) -> int:
        return self.count(ResultStatus.OK)

    @property
    def skipped(self) -> int:
        return self.count(ResultStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(ResultStatus.FAILED)
