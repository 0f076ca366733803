"""AdPulse - Meta API Client.

Handles authentication, pagination and mapping of HTTP failures onto the
upstream error taxonomy. Retries are not done here: the refresh state machine
owns backoff so that "give up" is a declared policy.
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

logger = get_logger("meta.client")

META_BASE = f"{settings.meta_base_url}/{settings.meta_api_version}"

# Graph API error codes
AUTH_ERROR_CODES = {102, 190, 463, 467}
PERMISSION_ERROR_CODES = {10, 200, 270, 294}
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613, 80000, 80004}


def classify_error(
    status_code: int, error_code: int, message: str
) -> UpstreamError:
    """Map an HTTP status / Graph error code onto an UpstreamError subclass."""
    if status_code == 429 or error_code in RATE_LIMIT_ERROR_CODES:
        return RateLimited(message, status_code, error_code)
    if status_code == 401 or error_code in AUTH_ERROR_CODES:
        return AuthError(message, status_code, error_code)
    if status_code == 403 or error_code in PERMISSION_ERROR_CODES:
        return UpstreamPermissionError(message, status_code, error_code)
    if status_code >= 500:
        return TransientError(message, status_code, error_code)
    return UpstreamError(message, status_code, error_code)


class MetaClient:
    """Async HTTP client for Meta Marketing API."""

    def __init__(self, access_token: str, timeout: float | None = None):
        self.access_token = access_token
        self.timeout = timeout or settings.meta_request_timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        url: str,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Make a single request; failures surface as UpstreamError subclasses."""
        params = dict(params or {})
        params["access_token"] = self.access_token

        client = await self._get_client()

        try:
            resp = await client.request(method, url, params=params)
            resp.raise_for_status()
            return resp.json()

        except httpx.HTTPStatusError as e:
            body = (
                e.response.json()
                if e.response.headers.get("content-type", "").startswith(
                    "application/json"
                )
                else {}
            )
            error = body.get("error", {}) if isinstance(body, dict) else {}
            error_msg = error.get("message", str(e))
            error_code = int(error.get("code", 0) or 0)
            logger.warning(
                f"Meta API error {e.response.status_code} (code {error_code}): {error_msg}",
                extra={"status_code": e.response.status_code},
            )
            raise classify_error(
                e.response.status_code, error_code, error_msg
            ) from e

        except httpx.RequestError as e:
            raise TransientError(f"Connection to Meta failed: {e}") from e

    # ── Pagination ──

    async def paginated_get(
        self,
        url: str,
        params: Dict[str, Any] | None = None,
        max_pages: int = 50,
    ) -> List[Dict[str, Any]]:
        """Fetch all pages of a paginated endpoint."""
        all_data: List[Dict[str, Any]] = []
        current_url = url

        for page in range(max_pages):
            result = await self._request(
                "GET", current_url, params if page == 0 else None
            )
            all_data.extend(result.get("data", []))

            # Check for next page
            next_url = result.get("paging", {}).get("next")
            if not next_url:
                break
            current_url = next_url

        logger.info(f"Fetched {len(all_data)} records from {url}")
        return all_data
