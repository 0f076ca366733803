"""AdPulse - Unified Metric Registry.

Defines the canonical snapshot metrics and the funnel alias table.
When a platform starts reporting a funnel event under a new spelling, add the
spelling to ``FUNNEL_ALIASES`` here; the parser needs no code change.
"""

from enum import Enum
from typing import Dict, List, Tuple


class MetricType(str, Enum):
    """How a metric is categorised."""

    VOLUME = "volume"  # Raw counts: impressions, clicks
    COST = "cost"  # Monetary: spend
    REVENUE = "revenue"  # Income: reservation_value
    FUNNEL = "funnel"  # Conversion funnel step counts
    DERIVED = "derived"  # Computed from inputs, never stored: ctr, cpc, roas


class MetricDefinition:
    """Describes a single metric."""

    def __init__(
        self, name: str, metric_type: MetricType, unit: str = "", description: str = ""
    ):
        self.name = name
        self.metric_type = metric_type
        self.unit = unit
        self.description = description

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.metric_type.value})>"


# ─────────────────────────────────────────────
# SNAPSHOT METRICS: summed across campaigns and periods
# ─────────────────────────────────────────────

SNAPSHOT_METRICS: Dict[str, MetricDefinition] = {
    "spend": MetricDefinition(
        "spend", MetricType.COST, "currency", "Total amount spent"
    ),
    "impressions": MetricDefinition(
        "impressions", MetricType.VOLUME, "count", "Number of times ads were shown"
    ),
    "clicks": MetricDefinition("clicks", MetricType.VOLUME, "count", "Total clicks"),
    "conversions": MetricDefinition(
        "conversions", MetricType.VOLUME, "count", "Completed conversions"
    ),
}


# ─────────────────────────────────────────────
# FUNNEL METRICS: produced by the funnel parser
# ─────────────────────────────────────────────

FUNNEL_METRICS: Dict[str, MetricDefinition] = {
    "click_to_call": MetricDefinition(
        "click_to_call", MetricType.FUNNEL, "count", "Phone contacts"
    ),
    "email_contacts": MetricDefinition(
        "email_contacts", MetricType.FUNNEL, "count", "Email / lead contacts"
    ),
    "booking_step_1": MetricDefinition(
        "booking_step_1", MetricType.FUNNEL, "count", "Booking engine search"
    ),
    "booking_step_2": MetricDefinition(
        "booking_step_2", MetricType.FUNNEL, "count", "Booking engine view details"
    ),
    "booking_step_3": MetricDefinition(
        "booking_step_3", MetricType.FUNNEL, "count", "Booking engine begin booking"
    ),
    "reservations": MetricDefinition(
        "reservations", MetricType.FUNNEL, "count", "Completed reservations"
    ),
    "reservation_value": MetricDefinition(
        "reservation_value",
        MetricType.REVENUE,
        "currency",
        "Value of completed reservations",
    ),
}


# ─────────────────────────────────────────────
# DERIVED METRICS: computed on read, never persisted on their own
# ─────────────────────────────────────────────

DERIVED_METRICS: Dict[str, MetricDefinition] = {
    "ctr": MetricDefinition("ctr", MetricType.DERIVED, "%", "Clicks / Impressions"),
    "cpc": MetricDefinition("cpc", MetricType.DERIVED, "currency", "Spend / Clicks"),
    "roas": MetricDefinition(
        "roas", MetricType.DERIVED, "ratio", "Reservation value / Spend"
    ),
    "cost_per_reservation": MetricDefinition(
        "cost_per_reservation",
        MetricType.DERIVED,
        "currency",
        "Spend / Reservations",
    ),
}


# ─────────────────────────────────────────────
# FUNNEL ALIASES: canonical step → raw event types, highest priority first
# ─────────────────────────────────────────────

FUNNEL_ALIAS_VERSION = "3"

FUNNEL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "click_to_call": (
        "click_to_call_call_confirm",
        "click_to_call_native_call_placed",
        "click_to_call",
        "phone_call",
        # Google Ads conversion action names
        "telefon",
        "kliknięcie w telefon",
        "phone_click",
    ),
    "email_contacts": (
        "onsite_conversion.lead_grouped",
        "lead",
        "offsite_conversion.fb_pixel_lead",
        "email_contact",
        "kliknięcie w e-mail",
        "klik w mail",
        "e-mail",
        "email",
    ),
    "booking_step_1": (
        "omni_search",
        "offsite_conversion.fb_pixel_search",
        "search",
        "link_click",
        "step 1 w be",
    ),
    "booking_step_2": (
        "omni_view_content",
        "offsite_conversion.fb_pixel_view_content",
        "view_content",
        "step 2 w be",
    ),
    "booking_step_3": (
        "omni_initiated_checkout",
        "offsite_conversion.fb_pixel_initiate_checkout",
        "initiate_checkout",
        "initiated_checkout",
        "step 3 w be",
    ),
    "reservations": (
        "omni_purchase",
        "offsite_conversion.fb_pixel_purchase",
        "purchase",
        "onsite_web_purchase",
        "rezerwacja",
        "zakup",
    ),
}

# Funnel order used for inversion checks
FUNNEL_ORDER: List[str] = [
    "booking_step_1",
    "booking_step_2",
    "booking_step_3",
    "reservations",
]

# Reported by the platforms but irrelevant to the funnel; not anomalies
IGNORED_EVENT_TYPES = frozenset(
    {
        "post_engagement",
        "page_engagement",
        "post_reaction",
        "like",
        "comment",
        "post",
        "onsite_conversion.post_save",
        "photo_view",
        "video_view",
        "landing_page_view",
        "omni_landing_page_view",
    }
)


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────

ALL_METRICS = {**SNAPSHOT_METRICS, **FUNNEL_METRICS, **DERIVED_METRICS}

_ALIAS_INDEX: Dict[str, str] = {
    alias: step for step, aliases in FUNNEL_ALIASES.items() for alias in aliases
}


def get_metric(name: str) -> MetricDefinition | None:
    """Look up a metric by name."""
    return ALL_METRICS.get(name)


def metrics_by_type(metric_type: MetricType) -> list[MetricDefinition]:
    """Return all metrics of a given type."""
    return [m for m in ALL_METRICS.values() if m.metric_type == metric_type]


def step_for_event(event_type: str) -> str | None:
    """Canonical funnel step a raw event type belongs to, if any."""
    return _ALIAS_INDEX.get(event_type.lower())
