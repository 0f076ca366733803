"""AdPulse - Google Ads Rows → Campaign Rows Transformer.

Google reports campaign metrics and conversions in two separate queries:
one row per campaign with cost and traffic, and one row per (campaign,
conversion action) with conversion counts. Conversion action names become
raw funnel events, lowercased so they match the alias table.
"""

import math
from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Tuple

from adpulse.core import funnel
from adpulse.core.logging import get_logger
from adpulse.models.snapshot_models import CampaignRow, RawEvent, UpstreamPayload

logger = get_logger("google.transformer")

MICROS = Decimal("1000000")


def _safe_float(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _micros_to_currency(value: Any) -> Decimal:
    try:
        micros = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")
    if not micros.is_finite():
        return Decimal("0")
    return micros / MICROS


def _round_count(count: float) -> int:
    """Data-driven attribution yields fractional conversions; report whole ones."""
    return int(math.floor(count + 0.5)) if count > 0 else 0


def _events_by_campaign(
    conversion_rows: List[Dict[str, Any]],
) -> Dict[str, Dict[str, Tuple[float, float]]]:
    events: Dict[str, Dict[str, Tuple[float, float]]] = {}
    for row in conversion_rows:
        campaign_id = str((row.get("campaign") or {}).get("id", ""))
        name = str((row.get("segments") or {}).get("conversionActionName", "")).strip().lower()
        if not name:
            continue
        metrics = row.get("metrics") or {}
        per_campaign = events.setdefault(campaign_id, OrderedDict())
        count, value = per_campaign.get(name, (0.0, 0.0))
        per_campaign[name] = (
            count + _safe_float(metrics.get("conversions", 0)),
            value + _safe_float(metrics.get("conversionsValue", 0)),
        )
    return events


def _as_raw_events(totals: Dict[str, Tuple[float, float]]) -> List[RawEvent]:
    return [RawEvent(name, _round_count(c), v) for name, (c, v) in totals.items()]


def to_campaign_row(row: Dict[str, Any], events: List[RawEvent]) -> CampaignRow:
    """Transform one campaign row plus its conversion events."""
    campaign = row.get("campaign") or {}
    metrics = row.get("metrics") or {}
    campaign_funnel = funnel.parse(events)
    return CampaignRow(
        campaign_id=str(campaign.get("id", "")),
        campaign_name=campaign.get("name", ""),
        status=campaign.get("status", ""),
        spend=_micros_to_currency(metrics.get("costMicros", 0)),
        impressions=int(_safe_float(metrics.get("impressions", 0))),
        clicks=int(_safe_float(metrics.get("clicks", 0))),
        conversions=campaign_funnel.reservations,
        funnel=campaign_funnel,
    )


def transform_search_results(
    campaign_rows: List[Dict[str, Any]],
    conversion_rows: List[Dict[str, Any]],
) -> UpstreamPayload:
    """Combine both query results into an UpstreamPayload.

    Raw events are totalled per conversion action across campaigns and
    rounded once, after totalling.
    """
    by_campaign = _events_by_campaign(conversion_rows)
    campaigns: List[CampaignRow] = []
    totals: Dict[str, Tuple[float, float]] = OrderedDict()

    for row in campaign_rows:
        campaign_id = str((row.get("campaign") or {}).get("id", ""))
        campaign_events = by_campaign.get(campaign_id, {})
        campaigns.append(to_campaign_row(row, _as_raw_events(campaign_events)))

    for campaign_events in by_campaign.values():
        for name, (count, value) in campaign_events.items():
            total_count, total_value = totals.get(name, (0.0, 0.0))
            totals[name] = (total_count + count, total_value + value)

    raw_events = _as_raw_events(totals)
    logger.info(
        f"Transformed {len(campaigns)} campaign rows into {len(raw_events)} conversion actions"
    )
    return UpstreamPayload(campaigns=campaigns, raw_events=raw_events)
