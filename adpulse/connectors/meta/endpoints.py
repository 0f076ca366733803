"""AdPulse - Meta Insights Source.

MetricsSource implementation over the Meta Marketing API campaign insights
endpoint: one paginated query per (account, date range).
"""

import json
from datetime import date

from adpulse.connectors.base import MetricsSource
from adpulse.connectors.meta.client import META_BASE, MetaClient
from adpulse.connectors.meta.transformer import transform_insights
from adpulse.core.errors import AuthError
from adpulse.core.logging import get_logger
from adpulse.models.snapshot_models import UpstreamPayload

logger = get_logger("meta.endpoints")

# Fields requested from Meta
INSIGHT_FIELDS = (
    "campaign_name,campaign_id,"
    "impressions,clicks,spend,"
    "actions,action_values"
)


def _normalise_account(ad_account_id: str) -> str:
    return ad_account_id if ad_account_id.startswith("act_") else f"act_{ad_account_id}"


class MetaInsightsSource(MetricsSource):
    """Fetch campaign-level insights for a whole period in one query."""

    platform = "meta"

    def __init__(self, client_factory=MetaClient):
        self.client_factory = client_factory

    async def fetch_metrics(
        self,
        account_ref: str,
        credentials: str,
        start: date,
        end: date,
    ) -> UpstreamPayload:
        if not account_ref or not credentials:
            raise AuthError("Tenant has no Meta ad account or access token")

        account = _normalise_account(account_ref)
        url = f"{META_BASE}/{account}/insights"
        params = {
            "fields": INSIGHT_FIELDS,
            "time_range": json.dumps(
                {"since": start.isoformat(), "until": end.isoformat()}
            ),
            "time_increment": "all_days",
            "level": "campaign",
            "limit": 500,
        }

        client = self.client_factory(credentials)
        try:
            rows = await client.paginated_get(url, params)
        finally:
            await client.close()

        logger.info(f"Fetched {len(rows)} campaign insight rows for {account}")
        return transform_insights(rows)
