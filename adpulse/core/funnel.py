"""AdPulse - Funnel Parser.

Maps raw (event type, count, value) rows into canonical FunnelMetrics using
the alias table in ``metric_registry``. Platforms report the same event under
several labels, so each step takes only the first alias present (in
priority order) and never sums across synonyms.

Pure and deterministic: the same raw payload always yields the same funnel.
"""

import math
from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Sequence

from adpulse.core.errors import ParseAnomaly
from adpulse.core.metric_registry import (
    FUNNEL_ALIASES,
    FUNNEL_ORDER,
    IGNORED_EVENT_TYPES,
    step_for_event,
)
from adpulse.models.snapshot_models import FunnelMetrics, RawEvent


def _safe_int(value: Any) -> int:
    """Non-negative integer, 0 for anything unparseable or non-finite."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def _safe_decimal(value: Any) -> Decimal:
    """Non-negative Decimal, 0 for anything unparseable."""
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")
    if not number.is_finite() or number < 0:
        return Decimal("0")
    return number


def _as_event(row: Sequence[Any]) -> RawEvent:
    event_type = str(row[0] if len(row) > 0 else "").strip().lower()
    count = row[1] if len(row) > 1 else 0
    value = row[2] if len(row) > 2 else 0
    return RawEvent(event_type, count, value)


def _totals_by_type(events: Iterable[Sequence[Any]]) -> Dict[str, tuple[int, Decimal]]:
    totals: Dict[str, tuple[int, Decimal]] = OrderedDict()
    for row in events:
        event = _as_event(row)
        if not event.type:
            continue
        count, value = totals.get(event.type, (0, Decimal("0")))
        totals[event.type] = (
            count + _safe_int(event.count),
            value + _safe_decimal(event.value),
        )
    return totals


def parse(events: Iterable[Sequence[Any]]) -> FunnelMetrics:
    """Parse raw events into FunnelMetrics.

    Rows that repeat the *same* event type are summed; rows for a lower
    priority synonym of a step already matched are ignored.
    """
    totals = _totals_by_type(events)
    fields: Dict[str, Any] = {}

    for step, aliases in FUNNEL_ALIASES.items():
        for alias in aliases:
            if alias in totals:
                count, value = totals[alias]
                fields[step] = count
                if step == "reservations":
                    fields["reservation_value"] = value
                break

    return FunnelMetrics(**fields)


def find_anomalies(events: Iterable[Sequence[Any]]) -> List[ParseAnomaly]:
    """Event types that match no alias and are not known noise."""
    anomalies: List[ParseAnomaly] = []
    for event_type, (count, value) in _totals_by_type(events).items():
        if step_for_event(event_type) or event_type in IGNORED_EVENT_TYPES:
            continue
        anomalies.append(ParseAnomaly(event_type, count, float(value)))
    return anomalies


def funnel_inversions(metrics: FunnelMetrics) -> List[str]:
    """Adjacent funnel steps where the later step exceeds a non-zero earlier one."""
    inversions = []
    for earlier, later in zip(FUNNEL_ORDER, FUNNEL_ORDER[1:]):
        before = getattr(metrics, earlier)
        after = getattr(metrics, later)
        if before > 0 and after > before:
            inversions.append(f"{later} ({after}) > {earlier} ({before})")
    return inversions


def combine(funnels: Iterable[FunnelMetrics]) -> FunnelMetrics:
    """Sum funnels across campaigns or periods."""
    total = FunnelMetrics()
    for funnel in funnels:
        total = FunnelMetrics(
            **{
                name: getattr(total, name) + getattr(funnel, name)
                for name in FunnelMetrics.model_fields
            }
        )
    return total
