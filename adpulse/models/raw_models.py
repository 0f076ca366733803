"""AdPulse - Raw Payload Models (Immutable)."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


class RawPayload(SQLModel, table=True):
    """Immutable upstream payload captured by a collection.

    Never modify this data: it's the audit trail, and recollection
    re-parses it instead of calling the platform again.
    """

    __tablename__ = "raw_payloads"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True)
    platform: str = Field(index=True)
    period_id: str = Field(index=True, description="Canonical period id")
    date_start: str = Field(description="Upstream query start (YYYY-MM-DD)")
    date_stop: str = Field(description="Upstream query stop (YYYY-MM-DD)")
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload_json: str = Field(description="UpstreamPayload as JSON")
