"""AdPulse - Upstream Source Contract.

A MetricsSource answers "campaign metrics for account X between A and B".
Implementations raise the upstream errors from ``adpulse.core.errors``
(AuthError, UpstreamPermissionError, RateLimited, TransientError) so the
refresh state machine can tell retryable failures from terminal ones.
"""

from abc import ABC, abstractmethod
from datetime import date

from adpulse.models.snapshot_models import UpstreamPayload


class MetricsSource(ABC):
    """Abstract upstream ad-platform query capability."""

    platform: str = ""

    @abstractmethod
    async def fetch_metrics(
        self,
        account_ref: str,
        credentials: str,
        start: date,
        end: date,
    ) -> UpstreamPayload:
        """Return campaign rows and raw funnel events for the date range."""
        ...

    async def close(self) -> None:
        """Release any pooled connections."""
