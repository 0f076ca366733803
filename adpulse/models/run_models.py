"""AdPulse - Collection Run Reports."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


class TaskState(str, Enum):
    """Lifecycle of one (tenant, platform, period) collection."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"


class TaskOutcome(BaseModel):
    """Result of a single collection task."""

    tenant_id: str
    platform: str
    period_id: str
    state: TaskState
    attempts: int = 0
    tier: str = ""  # "current" | "archive" | ""
    skipped: bool = False  # Fresh cache or already archived; no upstream call
    deduplicated: bool = False  # Joined an in-flight collection for the same key
    error_type: Optional[str] = None
    error: Optional[str] = None
    history: List[TaskState] = []

    @property
    def ok(self) -> bool:
        return self.state is TaskState.SUCCEEDED


class MigrationResult(BaseModel):
    """Current → archive transition counts for one run."""

    archived: int = 0
    archived_from_cache: int = 0
    already_archived: int = 0
    errors: int = 0


class RunReport(BaseModel):
    """Summary of a refresh_all or backfill run."""

    kind: str = "refresh"  # "refresh" | "backfill"
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    tenants_processed: int = 0
    outcomes: List[TaskOutcome] = []
    tenant_errors: List[str] = []
    migration: MigrationResult = Field(default_factory=MigrationResult)
    archive_purged: int = 0
    raw_payloads_purged: int = 0
    cancelled: bool = False
    skipped_overlapping_run: bool = False

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok and not o.skipped)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @computed_field
    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.ok and o.skipped)
