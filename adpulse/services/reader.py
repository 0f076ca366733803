"""AdPulse - Read Orchestrator.

Database-first reads:
  current month/week  fresh cache row → on-demand collection → stale row
  closed month/week   archive record → on-demand archive backfill → unmigrated
                      current-tier row
  custom range        sum of the canonical periods it overlaps

A closed period is never fetched live just because a read missed: the miss
is filled by an archive collection through the refresh orchestrator, which
also guarantees a single in-flight upstream call per period.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, List

from adpulse.config import settings
from adpulse.core.errors import CollectionFailed, TenantNotFound
from adpulse.core.logging import get_logger
from adpulse.core.periods import Period, decompose, is_closed, validate
from adpulse.models.snapshot_models import MetricSnapshot, SnapshotSource
from adpulse.models.tenant_models import Tenant
from adpulse.services.collector import RefreshOrchestrator
from adpulse.services.snapshots import aggregate_snapshots
from adpulse.services.tenants import TenantDirectory
from adpulse.store.cache_store import CacheStore

logger = get_logger("reader")


class ReadOrchestrator:
    """Read-only access to the cache tiers; collection is delegated."""

    def __init__(
        self,
        store: CacheStore,
        tenants: TenantDirectory,
        collector: RefreshOrchestrator,
        staleness: timedelta | None = None,
        retention_months: int | None = None,
        allow_on_demand: bool | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.tenants = tenants
        self.collector = collector
        self.staleness = staleness or timedelta(hours=settings.staleness_hours)
        self.retention_months = retention_months or settings.retention_months
        self.allow_on_demand = (
            settings.allow_on_demand_collection if allow_on_demand is None else allow_on_demand
        )
        self.clock = clock

    async def fetch(
        self,
        tenant_id: str,
        platform: str,
        start: date,
        end: date,
        now: datetime | None = None,
    ) -> MetricSnapshot:
        """Snapshot for ``start``..``end`` with ``source`` and ``collected_at`` set.

        Raises InvalidRange for bad ranges, TenantNotFound for unknown
        tenants and CollectionFailed only when nothing is cached and the
        on-demand collection failed.
        """
        now = now or self.clock()
        period = validate(start, end, now.date(), self.retention_months)

        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFound(f"Unknown tenant {tenant_id!r}")

        if period.is_canonical:
            return await self._fetch_canonical(tenant, platform, period, now)
        return await self._fetch_custom(tenant, platform, period, now)

    async def _fetch_canonical(
        self, tenant: Tenant, platform: str, period: Period, now: datetime
    ) -> MetricSnapshot:
        if is_closed(period, now.date()):
            return await self._fetch_closed(tenant, platform, period, now)
        return await self._fetch_current(tenant, platform, period, now)

    async def _fetch_current(
        self, tenant: Tenant, platform: str, period: Period, now: datetime
    ) -> MetricSnapshot:
        extra = {"tenant_id": tenant.tenant_id, "platform": platform, "period_id": period.id}
        entry = self.store.get_current(tenant.tenant_id, platform, period.id)
        if entry is not None and not self.store.is_stale(entry, now, self.staleness):
            logger.debug(f"Cache hit for {period.id}", extra={**extra, "source": "current-cache"})
            return entry.snapshot.served_from(SnapshotSource.CURRENT_CACHE)

        outcome = None
        if self.allow_on_demand:
            outcome = await self.collector.refresh_one(tenant, platform, period, now=now)
            if outcome.ok:
                fresh = self.store.get_current(tenant.tenant_id, platform, period.id)
                if fresh is not None:
                    source = (
                        SnapshotSource.CURRENT_CACHE if outcome.deduplicated else SnapshotSource.LIVE
                    )
                    return fresh.snapshot.served_from(source)

        if entry is not None:
            logger.warning(
                f"Serving stale cache for {period.id}", extra={**extra, "source": "current-cache"}
            )
            return entry.snapshot.served_from(SnapshotSource.CURRENT_CACHE)

        raise CollectionFailed(
            f"No cached data for {period.id} and on-demand collection failed: "
            f"{outcome.error if outcome else 'on-demand collection disabled'}"
        )

    async def _fetch_closed(
        self, tenant: Tenant, platform: str, period: Period, now: datetime
    ) -> MetricSnapshot:
        record = self.store.get_archive(tenant.tenant_id, platform, period.kind.value, period.start)
        if record is not None:
            return record.snapshot.served_from(SnapshotSource.ARCHIVE)

        outcome = None
        if self.allow_on_demand:
            logger.info(
                f"Archive miss for {period.id}; backfilling",
                extra={"tenant_id": tenant.tenant_id, "platform": platform, "period_id": period.id},
            )
            outcome = await self.collector.refresh_one(tenant, platform, period, now=now)
            record = self.store.get_archive(
                tenant.tenant_id, platform, period.kind.value, period.start
            )
            if record is not None:
                source = (
                    SnapshotSource.LIVE
                    if outcome.ok and not outcome.skipped and not outcome.deduplicated
                    else SnapshotSource.ARCHIVE
                )
                return record.snapshot.served_from(source)

        # Closed but not yet migrated: the last current-tier row is still data
        entry = self.store.get_current(tenant.tenant_id, platform, period.id)
        if entry is not None:
            logger.warning(
                f"Serving unmigrated cache for closed {period.id}",
                extra={
                    "tenant_id": tenant.tenant_id,
                    "platform": platform,
                    "period_id": period.id,
                    "source": "current-cache",
                },
            )
            return entry.snapshot.served_from(SnapshotSource.CURRENT_CACHE)

        raise CollectionFailed(
            f"No archived data for {period.id} and backfill failed: "
            f"{outcome.error if outcome else 'on-demand collection disabled'}"
        )

    async def _fetch_custom(
        self, tenant: Tenant, platform: str, period: Period, now: datetime
    ) -> MetricSnapshot:
        parts: List[MetricSnapshot] = []
        for sub in decompose(period.start, period.end):
            parts.append(await self._fetch_canonical(tenant, platform, sub, now))

        return aggregate_snapshots(
            tenant.tenant_id,
            platform,
            min(p.start for p in parts),
            max(p.end for p in parts),
            parts,
        )
