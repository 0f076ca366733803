"""AdPulse - Google Ads API Client.

Exchanges a tenant's OAuth refresh token for an access token, runs GAQL
queries against the REST ``googleAds:search`` endpoint and maps HTTP
failures onto the upstream error taxonomy. As with the Meta client, retries
belong to the refresh state machine.
"""

from typing import Any, Dict, List, Optional

import httpx

from adpulse.config import settings
from adpulse.core.errors import (
    AuthError,
    RateLimited,
    TransientError,
    UpstreamError,
    UpstreamPermissionError,
)
from adpulse.core.logging import get_logger

logger = get_logger("google.client")

GOOGLE_ADS_BASE = f"{settings.google_ads_base_url}/{settings.google_ads_api_version}"

# google.rpc.Code names as returned in ``error.status``
AUTH_STATUSES = {"UNAUTHENTICATED"}
PERMISSION_STATUSES = {"PERMISSION_DENIED"}
RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED"}
TRANSIENT_STATUSES = {"UNAVAILABLE", "DEADLINE_EXCEEDED", "INTERNAL"}


def classify_error(status_code: int, status: str, message: str) -> UpstreamError:
    """Map an HTTP status / RPC status name onto an UpstreamError subclass."""
    if status_code == 429 or status in RATE_LIMIT_STATUSES:
        return RateLimited(message, status_code)
    if status_code == 401 or status in AUTH_STATUSES:
        return AuthError(message, status_code)
    if status_code == 403 or status in PERMISSION_STATUSES:
        return UpstreamPermissionError(message, status_code)
    if status_code >= 500 or status in TRANSIENT_STATUSES:
        return TransientError(message, status_code)
    return UpstreamError(message, status_code)


def normalise_customer_id(customer_id: str) -> str:
    """``123-456-7890`` → ``1234567890``."""
    return customer_id.replace("-", "").strip()


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    if not response.headers.get("content-type", "").startswith("application/json"):
        return {}
    body = response.json()
    if isinstance(body, list):
        # Some error responses arrive wrapped in a one-element array
        body = body[0] if body else {}
    return body if isinstance(body, dict) else {}


class GoogleAdsClient:
    """Async HTTP client for the Google Ads REST API."""

    def __init__(
        self,
        refresh_token: str,
        developer_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        login_customer_id: str | None = None,
        timeout: float | None = None,
    ):
        self.refresh_token = refresh_token
        self.developer_token = developer_token or settings.google_ads_developer_token
        self.client_id = client_id or settings.google_ads_client_id
        self.client_secret = client_secret or settings.google_ads_client_secret
        self.login_customer_id = normalise_customer_id(
            login_customer_id or settings.google_ads_manager_customer_id
        )
        self.timeout = timeout or settings.google_ads_request_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None
        self._access_token: str | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── OAuth ──

    async def access_token(self) -> str:
        """Access token for this client's lifetime, refreshed on first use."""
        if self._access_token:
            return self._access_token

        if not (self.developer_token and self.client_id and self.client_secret):
            raise AuthError("Google Ads developer token or OAuth client is not configured")

        client = await self._get_client()
        try:
            resp = await client.post(
                settings.google_oauth_token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = _json_body(e.response)
            error = str(body.get("error", ""))
            message = body.get("error_description") or error or str(e)
            logger.warning(
                f"Google OAuth error {e.response.status_code} ({error}): {message}",
                extra={"status_code": e.response.status_code},
            )
            if error in {"invalid_grant", "invalid_client", "unauthorized_client"}:
                raise AuthError(message, e.response.status_code) from e
            raise classify_error(e.response.status_code, "", message) from e
        except httpx.RequestError as e:
            raise TransientError(f"Connection to Google OAuth failed: {e}") from e

        token = resp.json().get("access_token")
        if not token:
            raise AuthError("Google OAuth response carried no access token")
        self._access_token = token
        return token

    # ── Core Request Method ──

    async def _search_page(
        self, customer_id: str, query: str, page_token: str | None
    ) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {await self.access_token()}",
            "developer-token": self.developer_token,
        }
        if self.login_customer_id:
            headers["login-customer-id"] = self.login_customer_id

        body: Dict[str, Any] = {"query": query}
        if page_token:
            body["pageToken"] = page_token

        client = await self._get_client()
        url = f"{GOOGLE_ADS_BASE}/customers/{customer_id}/googleAds:search"
        try:
            resp = await client.post(url, json=body, headers=headers)
            resp.raise_for_status()
            return resp.json()

        except httpx.HTTPStatusError as e:
            error = _json_body(e.response).get("error", {})
            error = error if isinstance(error, dict) else {}
            status = str(error.get("status", ""))
            error_msg = error.get("message", str(e))
            logger.warning(
                f"Google Ads API error {e.response.status_code} ({status}): {error_msg}",
                extra={"status_code": e.response.status_code},
            )
            raise classify_error(e.response.status_code, status, error_msg) from e

        except httpx.RequestError as e:
            raise TransientError(f"Connection to Google Ads failed: {e}") from e

    # ── Pagination ──

    async def search(
        self, customer_id: str, query: str, max_pages: int = 50
    ) -> List[Dict[str, Any]]:
        """Run a GAQL query and return the rows from every page."""
        customer_id = normalise_customer_id(customer_id)
        rows: List[Dict[str, Any]] = []
        page_token = None

        for _ in range(max_pages):
            result = await self._search_page(customer_id, query, page_token)
            rows.extend(result.get("results", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"Fetched {len(rows)} rows for customer {customer_id}")
        return rows
