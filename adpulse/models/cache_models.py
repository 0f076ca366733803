"""AdPulse - Cache Tier Tables.

Two tiers with different rules:
  current_period_cache  mutable, one row per (tenant, platform, period_id)
  period_archive        write-once per (tenant, platform, summary_type, summary_date)

Both store the whole MetricSnapshot as JSON in one column so a write always
replaces a complete snapshot, never merges two.
"""

from datetime import date, datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field, UniqueConstraint

from adpulse.models.snapshot_models import MetricSnapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CurrentPeriodCache(SQLModel, table=True):
    """Latest snapshot of an in-progress month or week."""

    __tablename__ = "current_period_cache"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "platform", "period_id", name="uq_current_period_cache"
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    platform: str = Field(index=True, description="meta | google")
    period_id: str = Field(index=True, description="YYYY-MM or YYYY-Www")
    period_kind: str = Field(description="monthly | weekly")
    period_start: date
    period_end: date
    snapshot_json: str = Field(description="Full MetricSnapshot as JSON")
    last_updated: datetime = Field(default_factory=_utcnow)

    @property
    def snapshot(self) -> MetricSnapshot:
        return MetricSnapshot.model_validate_json(self.snapshot_json)


class PeriodArchive(SQLModel, table=True):
    """Finalized snapshot of a closed month or week."""

    __tablename__ = "period_archive"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "platform",
            "summary_type",
            "summary_date",
            name="uq_period_archive",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    platform: str = Field(index=True)
    summary_type: str = Field(index=True, description="monthly | weekly")
    summary_date: date = Field(index=True, description="First day of the period")
    snapshot_json: str = Field(description="Full MetricSnapshot as JSON")
    data_source: str = Field(
        default="collector",
        description="collector | period_transition | period_transition_cache | recollection",
    )
    collected_at: datetime = Field(default_factory=_utcnow)
    recollection_count: int = Field(default=0)

    @property
    def snapshot(self) -> MetricSnapshot:
        return MetricSnapshot.model_validate_json(self.snapshot_json)


class ArchiveRecollection(SQLModel, table=True):
    """Audit row written whenever an archive record is overwritten."""

    __tablename__ = "archive_recollections"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    platform: str
    summary_type: str
    summary_date: date
    reason: str = Field(default="")
    previous_snapshot_json: str
    new_snapshot_json: str
    created_at: datetime = Field(default_factory=_utcnow)
