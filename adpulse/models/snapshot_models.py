"""AdPulse - Snapshot Schemas.

Pydantic models shared by the collector, the cache store and the API.
Rates (ctr, cpc, roas, cost_per_reservation) are computed fields: they are
derived from their inputs on every read and never stored on their own.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, NamedTuple, Optional

from pydantic import BaseModel, Field, computed_field


class SnapshotSource(str, Enum):
    """Where a served snapshot came from."""

    CURRENT_CACHE = "current-cache"
    ARCHIVE = "archive"
    LIVE = "live"
    AGGREGATED_CUSTOM = "aggregated-custom"


class RawEvent(NamedTuple):
    """One upstream action row: (event type, count, value)."""

    type: str
    count: float = 0
    value: float = 0


def _ratio(numerator, denominator) -> float:
    if not denominator:
        return 0.0
    return round(float(numerator) / float(denominator), 6)


class FunnelMetrics(BaseModel):
    """Canonical conversion funnel."""

    click_to_call: int = Field(default=0, ge=0)
    email_contacts: int = Field(default=0, ge=0)
    booking_step_1: int = Field(default=0, ge=0)
    booking_step_2: int = Field(default=0, ge=0)
    booking_step_3: int = Field(default=0, ge=0)
    reservations: int = Field(default=0, ge=0)
    reservation_value: Decimal = Field(default=Decimal("0"), ge=0)

    def roas(self, spend: Decimal) -> float:
        """Reservation value / spend, 0 when nothing was spent."""
        return _ratio(self.reservation_value, spend)

    def cost_per_reservation(self, spend: Decimal) -> float:
        """Spend / reservations, 0 when there were no reservations."""
        return _ratio(spend, self.reservations)


class CampaignRow(BaseModel):
    """Per-campaign totals for one period."""

    campaign_id: str
    campaign_name: str = ""
    status: str = ""
    spend: Decimal = Decimal("0")
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    funnel: FunnelMetrics = Field(default_factory=FunnelMetrics)

    @computed_field
    @property
    def ctr(self) -> float:
        return _ratio(self.clicks * 100, self.impressions)

    @computed_field
    @property
    def cpc(self) -> float:
        return _ratio(self.spend, self.clicks)


class MetricSnapshot(BaseModel):
    """Aggregated metrics for one tenant, platform and period."""

    tenant_id: str
    platform: str
    period_id: Optional[str] = None
    period_kind: str
    start: date
    end: date
    spend: Decimal = Decimal("0")
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    campaigns: List[CampaignRow] = []
    funnel: FunnelMetrics = Field(default_factory=FunnelMetrics)
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: SnapshotSource = SnapshotSource.LIVE

    @computed_field
    @property
    def ctr(self) -> float:
        """Click-through rate in percent."""
        return _ratio(self.clicks * 100, self.impressions)

    @computed_field
    @property
    def cpc(self) -> float:
        return _ratio(self.spend, self.clicks)

    @computed_field
    @property
    def roas(self) -> float:
        return self.funnel.roas(self.spend)

    @computed_field
    @property
    def cost_per_reservation(self) -> float:
        return self.funnel.cost_per_reservation(self.spend)

    def served_from(self, source: SnapshotSource) -> "MetricSnapshot":
        return self.model_copy(update={"source": source})


class UpstreamPayload(BaseModel):
    """What a MetricsSource returns for one account and date range."""

    campaigns: List[CampaignRow] = []
    raw_events: List[RawEvent] = []
