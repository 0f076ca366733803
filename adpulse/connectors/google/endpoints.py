"""AdPulse - Google Ads Source.

MetricsSource implementation over GAQL: one campaign query and one
conversion-action breakdown query per (customer, date range).
"""

from datetime import date

from adpulse.connectors.base import MetricsSource
from adpulse.connectors.google.client import GoogleAdsClient, normalise_customer_id
from adpulse.connectors.google.transformer import transform_search_results
from adpulse.core.errors import AuthError
from adpulse.core.logging import get_logger
from adpulse.models.snapshot_models import UpstreamPayload

logger = get_logger("google.endpoints")

CAMPAIGN_QUERY = (
    "SELECT campaign.id, campaign.name, campaign.status, "
    "metrics.cost_micros, metrics.impressions, metrics.clicks "
    "FROM campaign "
    "WHERE segments.date BETWEEN '{start}' AND '{end}'"
)

CONVERSION_QUERY = (
    "SELECT campaign.id, segments.conversion_action_name, "
    "metrics.conversions, metrics.conversions_value "
    "FROM campaign "
    "WHERE segments.date BETWEEN '{start}' AND '{end}' "
    "AND metrics.conversions > 0"
)


class GoogleAdsSource(MetricsSource):
    """Fetch campaign metrics and conversion actions for a whole period."""

    platform = "google"

    def __init__(self, client_factory=GoogleAdsClient):
        self.client_factory = client_factory

    async def fetch_metrics(
        self,
        account_ref: str,
        credentials: str,
        start: date,
        end: date,
    ) -> UpstreamPayload:
        if not account_ref or not credentials:
            raise AuthError("Tenant has no Google Ads customer id or refresh token")

        customer_id = normalise_customer_id(account_ref)
        dates = {"start": start.isoformat(), "end": end.isoformat()}

        client = self.client_factory(credentials)
        try:
            campaign_rows = await client.search(customer_id, CAMPAIGN_QUERY.format(**dates))
            conversion_rows = await client.search(customer_id, CONVERSION_QUERY.format(**dates))
        finally:
            await client.close()

        logger.info(
            f"Fetched {len(campaign_rows)} campaigns and {len(conversion_rows)} "
            f"conversion rows for customer {customer_id}"
        )
        return transform_search_results(campaign_rows, conversion_rows)
