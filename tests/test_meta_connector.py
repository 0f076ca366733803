"""
tests/test_meta_connector.py

Meta connector: error classification, insight transformation and the
insights source over a mocked HTTP transport.
"""

import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from adpulse.connectors.meta.client import MetaClient, classify_error
from adpulse.connectors.meta.endpoints import MetaInsightsSource
from adpulse.connectors.meta.transformer import extract_events, to_campaign_row, transform_insights
from adpulse.core.errors import (
    AuthError,
    RateLimited,
    TransientError,
    UpstreamError,
    UpstreamPermissionError,
)
from conftest import run

ROW = {
    "campaign_id": "120",
    "campaign_name": "Spring Rooms",
    "spend": "123.45",
    "impressions": "10000",
    "clicks": "250",
    "actions": [
        {"action_type": "omni_search", "value": "40"},
        {"action_type": "offsite_conversion.fb_pixel_search", "value": "40"},
        {"action_type": "omni_purchase", "value": "3"},
        {"action_type": "link_click", "value": "250"},
    ],
    "action_values": [
        {"action_type": "omni_purchase", "value": "900.50"},
    ],
}


class TestClassifyError:
    @pytest.mark.parametrize(
        "status, code, expected",
        [
            (429, 0, RateLimited),
            (400, 17, RateLimited),
            (400, 80004, RateLimited),
            (401, 0, AuthError),
            (400, 190, AuthError),
            (403, 0, UpstreamPermissionError),
            (400, 200, UpstreamPermissionError),
            (503, 0, TransientError),
            (400, 100, UpstreamError),
        ],
    )
    def test_mapping(self, status, code, expected):
        err = classify_error(status, code, "boom")
        assert type(err) is expected
        assert err.status_code == status

    def test_retryable_flags(self):
        assert classify_error(429, 0, "").retryable
        assert classify_error(502, 0, "").retryable
        assert not classify_error(401, 0, "").retryable
        assert not classify_error(403, 0, "").retryable
        assert not classify_error(400, 100, "").retryable


class TestTransformer:
    def test_extract_events_merges_counts_and_values(self):
        events = {e.type: e for e in extract_events(ROW)}
        assert events["omni_purchase"].count == 3
        assert events["omni_purchase"].value == 900.50
        assert events["omni_search"].value == 0

    def test_campaign_row(self):
        row = to_campaign_row(ROW)
        assert row.campaign_id == "120"
        assert row.spend == Decimal("123.45")
        assert row.impressions == 10000
        assert row.conversions == 3
        # omni_search wins over its synonyms; never summed
        assert row.funnel.booking_step_1 == 40
        assert row.funnel.reservation_value == Decimal("900.5")

    def test_garbage_numbers_become_zero(self):
        row = to_campaign_row({"campaign_id": 7, "spend": "n/a", "impressions": None})
        assert row.campaign_id == "7"
        assert row.spend == Decimal("0")
        assert row.impressions == 0

    def test_non_finite_numbers_become_zero(self):
        row = to_campaign_row(
            {
                "campaign_id": "8",
                "spend": "inf",
                "impressions": "1e400",
                "clicks": "nan",
                "actions": [{"action_type": "omni_purchase", "value": "inf"}],
            }
        )
        assert row.spend == Decimal("0")
        assert row.impressions == 0
        assert row.clicks == 0
        assert row.conversions == 0

    def test_events_totalled_across_campaigns(self):
        second = {**ROW, "campaign_id": "121", "actions": [{"action_type": "omni_purchase", "value": "1"}], "action_values": []}
        payload = transform_insights([ROW, second])
        totals = {e.type: e for e in payload.raw_events}
        assert len(payload.campaigns) == 2
        assert totals["omni_purchase"].count == 4
        assert totals["omni_purchase"].value == 900.50

    def test_empty(self):
        payload = transform_insights([])
        assert payload.campaigns == []
        assert payload.raw_events == []


def _factory(handler, requests):
    """client_factory that routes MetaClient traffic through a MockTransport."""

    def _recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    def _make(access_token):
        client = MetaClient(access_token)
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(_recording))
        return client

    return _make


class TestMetaInsightsSource:
    def test_single_query_for_whole_period(self):
        requests = []
        source = MetaInsightsSource(
            client_factory=_factory(lambda r: httpx.Response(200, json={"data": [ROW]}), requests)
        )

        payload = run(source.fetch_metrics("1234", "tok", date(2025, 3, 1), date(2025, 3, 31)))

        assert len(requests) == 1
        params = requests[0].url.params
        assert "/act_1234/insights" in requests[0].url.path
        assert params["access_token"] == "tok"
        assert params["level"] == "campaign"
        assert params["time_increment"] == "all_days"
        assert json.loads(params["time_range"]) == {"since": "2025-03-01", "until": "2025-03-31"}
        assert payload.campaigns[0].spend == Decimal("123.45")

    def test_follows_pagination(self):
        requests = []
        pages = {
            "first": {"data": [ROW], "paging": {"next": "https://graph.facebook.com/v21.0/next-page"}},
            "second": {"data": [{**ROW, "campaign_id": "121"}]},
        }

        def handler(request):
            return httpx.Response(200, json=pages["second" if "next-page" in request.url.path else "first"])

        source = MetaInsightsSource(client_factory=_factory(handler, requests))
        payload = run(source.fetch_metrics("act_1", "tok", date(2025, 3, 1), date(2025, 3, 31)))

        assert len(requests) == 2
        assert [c.campaign_id for c in payload.campaigns] == ["120", "121"]

    def test_error_body_is_classified(self):
        body = {"error": {"message": "Invalid OAuth access token", "code": 190}}
        source = MetaInsightsSource(
            client_factory=_factory(lambda r: httpx.Response(400, json=body), [])
        )
        with pytest.raises(AuthError) as exc:
            run(source.fetch_metrics("act_1", "tok", date(2025, 3, 1), date(2025, 3, 31)))
        assert exc.value.error_code == 190

    def test_server_error_is_transient(self):
        source = MetaInsightsSource(
            client_factory=_factory(lambda r: httpx.Response(500, text="oops"), [])
        )
        with pytest.raises(TransientError):
            run(source.fetch_metrics("act_1", "tok", date(2025, 3, 1), date(2025, 3, 31)))

    def test_connection_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        source = MetaInsightsSource(client_factory=_factory(handler, []))
        with pytest.raises(TransientError):
            run(source.fetch_metrics("act_1", "tok", date(2025, 3, 1), date(2025, 3, 31)))

    def test_missing_credentials(self):
        source = MetaInsightsSource(client_factory=_factory(lambda r: httpx.Response(200), []))
        with pytest.raises(AuthError):
            run(source.fetch_metrics("", None, date(2025, 3, 1), date(2025, 3, 31)))
