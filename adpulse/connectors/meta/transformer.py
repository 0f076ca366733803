"""AdPulse - Meta Raw → Campaign Rows Transformer.

Converts campaign-level insight rows into CampaignRow models and flattens
their ``actions`` / ``action_values`` arrays into raw funnel events.
"""

import math
from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Tuple

from adpulse.core import funnel
from adpulse.core.logging import get_logger
from adpulse.models.snapshot_models import CampaignRow, RawEvent, UpstreamPayload

logger = get_logger("meta.transformer")


def _safe_float(value: Any) -> float:
    """Safely convert a value to a finite float."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _safe_decimal(value: Any) -> Decimal:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")
    return number if number.is_finite() else Decimal("0")


def extract_events(row: Dict[str, Any]) -> List[RawEvent]:
    """Merge ``actions`` counts and ``action_values`` values by action type."""
    merged: Dict[str, Tuple[float, float]] = OrderedDict()

    for action in row.get("actions") or []:
        action_type = str(action.get("action_type", "")).lower()
        count, value = merged.get(action_type, (0.0, 0.0))
        merged[action_type] = (count + _safe_float(action.get("value", 0)), value)

    for av in row.get("action_values") or []:
        action_type = str(av.get("action_type", "")).lower()
        count, value = merged.get(action_type, (0.0, 0.0))
        merged[action_type] = (count, value + _safe_float(av.get("value", 0)))

    return [RawEvent(t, c, v) for t, (c, v) in merged.items() if t]


def to_campaign_row(row: Dict[str, Any]) -> CampaignRow:
    """Transform one campaign insight row."""
    events = extract_events(row)
    campaign_funnel = funnel.parse(events)
    return CampaignRow(
        campaign_id=str(row.get("campaign_id", "")),
        campaign_name=row.get("campaign_name", ""),
        status=row.get("effective_status", row.get("status", "")),
        spend=_safe_decimal(row.get("spend", 0)),
        impressions=int(_safe_float(row.get("impressions", 0))),
        clicks=int(_safe_float(row.get("clicks", 0))),
        conversions=campaign_funnel.reservations,
        funnel=campaign_funnel,
    )


def transform_insights(raw_data: List[Dict[str, Any]]) -> UpstreamPayload:
    """Transform raw campaign insight rows into an UpstreamPayload.

    Raw events are totalled per action type across campaigns, which matches
    what Meta reports at account level.
    """
    campaigns: List[CampaignRow] = []
    totals: Dict[str, Tuple[float, float]] = OrderedDict()

    for row in raw_data:
        campaigns.append(to_campaign_row(row))
        for event in extract_events(row):
            count, value = totals.get(event.type, (0.0, 0.0))
            totals[event.type] = (count + event.count, value + event.value)

    raw_events = [RawEvent(t, c, v) for t, (c, v) in totals.items()]
    logger.info(
        f"Transformed {len(campaigns)} campaign rows into {len(raw_events)} event types"
    )
    return UpstreamPayload(campaigns=campaigns, raw_events=raw_events)
