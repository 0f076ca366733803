"""AdPulse - Snapshot Builder.

Turns an UpstreamPayload into a MetricSnapshot and sums snapshots for
custom ranges. Totals always come from the campaign rows so that
``spend == sum(campaign.spend)`` holds for every stored snapshot.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Sequence

from adpulse.core import funnel
from adpulse.core.periods import Period
from adpulse.models.snapshot_models import (
    CampaignRow,
    MetricSnapshot,
    SnapshotSource,
    UpstreamPayload,
)


def build_snapshot(
    tenant_id: str,
    platform: str,
    period: Period,
    payload: UpstreamPayload,
    collected_at: datetime | None = None,
) -> MetricSnapshot:
    campaigns = payload.campaigns
    return MetricSnapshot(
        tenant_id=tenant_id,
        platform=platform,
        period_id=period.id,
        period_kind=period.kind.value,
        start=period.start,
        end=period.end,
        spend=sum((c.spend for c in campaigns), Decimal("0")),
        impressions=sum(c.impressions for c in campaigns),
        clicks=sum(c.clicks for c in campaigns),
        conversions=sum(c.conversions for c in campaigns),
        campaigns=campaigns,
        funnel=funnel.parse(payload.raw_events),
        collected_at=collected_at or datetime.now(timezone.utc),
        source=SnapshotSource.LIVE,
    )


def _merge_campaigns(parts: Sequence[MetricSnapshot]) -> List[CampaignRow]:
    """One row per campaign id, summed across periods."""
    merged: Dict[str, CampaignRow] = {}
    for part in parts:
        for row in part.campaigns:
            seen = merged.get(row.campaign_id)
            if seen is None:
                merged[row.campaign_id] = row.model_copy()
                continue
            merged[row.campaign_id] = seen.model_copy(
                update={
                    "spend": seen.spend + row.spend,
                    "impressions": seen.impressions + row.impressions,
                    "clicks": seen.clicks + row.clicks,
                    "conversions": seen.conversions + row.conversions,
                    "funnel": funnel.combine([seen.funnel, row.funnel]),
                }
            )
    return list(merged.values())


def aggregate_snapshots(
    tenant_id: str,
    platform: str,
    start: date,
    end: date,
    parts: Sequence[MetricSnapshot],
) -> MetricSnapshot:
    """Sum per-period snapshots into one ``aggregated-custom`` snapshot.

    ``start``/``end`` are the span actually covered by ``parts``;
    ``collected_at`` is the oldest part's, so freshness is never overstated.
    """
    campaigns = _merge_campaigns(parts)

    return MetricSnapshot(
        tenant_id=tenant_id,
        platform=platform,
        period_id=None,
        period_kind="custom",
        start=start,
        end=end,
        spend=sum((p.spend for p in parts), Decimal("0")),
        impressions=sum(p.impressions for p in parts),
        clicks=sum(p.clicks for p in parts),
        conversions=sum(p.conversions for p in parts),
        campaigns=campaigns,
        funnel=funnel.combine(p.funnel for p in parts),
        collected_at=min(
            (p.collected_at for p in parts), default=datetime.now(timezone.utc)
        ),
        source=SnapshotSource.AGGREGATED_CUSTOM,
    )
