"""
Data model of a migration run.

MigrationTask is the serializable state machine value the sequencer
advances; BatchJob and LogEntry are the queue and log stream values; the
counter models keep per-call and cumulative counts in separate types so
they can never be mixed up.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    """Stage identifiers an adapter may declare, in their usual order."""

    IMPORT_DIRECTORIES = "import_directories"
    IMPORT_CATEGORIES = "import_categories"
    IMPORT_TAGS = "import_tags"
    IMPORT_FIELDS = "import_fields"
    IMPORT_PACKAGES = "import_packages"
    PARSE_LISTINGS = "parse_listings"
    PARSE_REVIEWS = "parse_reviews"
    PARSE_INVOICES = "parse_invoices"

    @property
    def label(self) -> str:
        """Human-readable name used in log messages."""
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    Stage.IMPORT_DIRECTORIES: "Directories",
    Stage.IMPORT_CATEGORIES: "Categories",
    Stage.IMPORT_TAGS: "Tags",
    Stage.IMPORT_FIELDS: "Fields",
    Stage.IMPORT_PACKAGES: "Packages",
    Stage.PARSE_LISTINGS: "Listings",
    Stage.PARSE_REVIEWS: "Reviews",
    Stage.PARSE_INVOICES: "Invoices",
}


class ImportStatus(int, Enum):
    """Outcome of importing a single item."""

    FAILED = 0
    CREATED = 1
    SKIPPED = 2
    UPDATED = 3


class Severity(str, Enum):
    """Severity of an import log entry."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class CounterKind(str, Enum):
    """Cumulative counters tracked by the progress aggregator."""

    TOTAL = "total"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class CallCounters(BaseModel):
    """Item outcomes of a single sequencer call. Zeroed before every dispatch."""

    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, status: ImportStatus, count: int = 1) -> None:
        """Count ``count`` items with the given outcome."""
        if status is ImportStatus.CREATED:
            self.imported += count
        elif status is ImportStatus.UPDATED:
            self.updated += count
        elif status is ImportStatus.SKIPPED:
            self.skipped += count
        else:
            self.failed += count

    @property
    def processed(self) -> int:
        return self.imported + self.updated + self.skipped + self.failed


class CumulativeCounters(BaseModel):
    """Item outcomes of the sequencer's direct work over the whole run.

    Only grows; a fresh instance is created on start and discarded on abort.
    """

    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, status: ImportStatus, count: int = 1) -> None:
        """Count ``count`` items with the given outcome."""
        if count < 0:
            raise ValueError("Cumulative counters cannot decrease")
        if status is ImportStatus.CREATED:
            self.imported += count
        elif status is ImportStatus.UPDATED:
            self.updated += count
        elif status is ImportStatus.SKIPPED:
            self.skipped += count
        else:
            self.failed += count

    @property
    def processed(self) -> int:
        return self.imported + self.updated + self.skipped + self.failed


class ImportStats(BaseModel):
    """Run-wide counters shared by the sequencer and the batch queue."""

    total: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    total_counted: bool = False

    @property
    def processed(self) -> int:
        return self.succeeded + self.skipped + self.failed


class MigrationTask(BaseModel):
    """Persisted state of one migration run."""

    adapter_id: str
    stage: Stage
    offset: int = Field(default=0, ge=0)
    call_counters: CallCounters = Field(default_factory=CallCounters)
    cumulative: CumulativeCounters = Field(default_factory=CumulativeCounters)
    # Adapter-owned values carried between calls (total_item_count, cursors, ...)
    extra: dict[str, Any] = Field(default_factory=dict)

    def record(self, status: ImportStatus, count: int = 1) -> None:
        """Count items processed directly by the current stage handler."""
        self.call_counters.record(status, count)
        self.cumulative.record(status, count)


class BatchJob(BaseModel):
    """A bounded unit of deferred per-item work."""

    action: str
    payload: list[Any]
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    id: int | None = None
    attempts: int = 0

    def __len__(self) -> int:
        return len(self.payload)


def format_elapsed(seconds: int) -> str:
    """Format elapsed seconds as HH:MM:SS."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


class LogEntry(BaseModel):
    """An entry of the append-only import log."""

    sequence: int
    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime
    elapsed_seconds: int = 0

    def render(self) -> str:
        """Render the entry the way the polling UI shows it."""
        return f"{format_elapsed(self.elapsed_seconds)} – {self.message}"

    def to_display(self) -> dict[str, str]:
        return {"message": self.render(), "status": self.severity.value}


class UploadedFile(BaseModel):
    """Metadata of a file uploaded alongside the import settings."""

    name: str
    content_type: str = ""
    size: int = Field(default=0, ge=0)
    extension: str = ""
    row_count: int | None = None
    path: str | None = None


class ImportSettings(BaseModel):
    """Settings of one adapter run. Adapters may subclass to add typed fields."""

    model_config = ConfigDict(extra="allow")

    destination_type: str = "gd_place"
    author_id: int | None = None
    dry_run: bool = False
    filters: dict[str, Any] = Field(default_factory=dict)
