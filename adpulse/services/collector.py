"""AdPulse - Refresh Orchestrator (Background Collector).

Keeps both cache tiers filled:
  refresh_all            scheduled run over every eligible tenant
  refresh_one            one (tenant, platform, period); also the read path's on-demand collection
  backfill               operator-triggered historical collection
  recollect_from_raw     audited archive overwrite from the stored raw payload
  migrate_closed_periods current → archive transition for periods that ended

Each collection is a small state machine:
  Pending → InFlight → {Succeeded, FailedRetryable, FailedTerminal}
FailedRetryable goes back to Pending after exponential backoff until the
attempt budget is spent, then it is demoted to FailedTerminal for the run.
A failed collection never touches the row it would have replaced.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from adpulse.config import settings
from adpulse.connectors.base import MetricsSource
from adpulse.core import funnel
from adpulse.core.errors import InvalidRange, TransientError, UpstreamError
from adpulse.core.logging import get_logger
from adpulse.core.periods import (
    Period,
    current_periods,
    decompose,
    is_closed,
    parse_period_id,
    retention_horizon,
)
from adpulse.models.run_models import (
    MigrationResult,
    RunReport,
    TaskOutcome,
    TaskState,
)
from adpulse.models.snapshot_models import MetricSnapshot, UpstreamPayload
from adpulse.models.tenant_models import Tenant
from adpulse.services.snapshots import build_snapshot
from adpulse.services.tenants import TenantDirectory
from adpulse.store.cache_store import CacheStore

logger = get_logger("collector")

CollectionKey = Tuple[str, str, str]


@dataclass
class RetryPolicy:
    """Bounded exponential backoff."""

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 60.0

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )


@dataclass
class CollectionTask:
    """Mutable state of one collection while it runs."""

    tenant_id: str
    platform: str
    period: Period
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    last_error: Optional[Exception] = None
    history: List[TaskState] = field(default_factory=lambda: [TaskState.PENDING])

    @property
    def key(self) -> CollectionKey:
        return (self.tenant_id, self.platform, self.period.id or "")

    def move(self, state: TaskState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(
            f"Task {self.key} → {state.value}",
            extra={"state": state.value, "attempt": self.attempts},
        )

    def outcome(self, tier: str = "", skipped: bool = False) -> TaskOutcome:
        err = self.last_error
        return TaskOutcome(
            tenant_id=self.tenant_id,
            platform=self.platform,
            period_id=self.period.id or "",
            state=self.state,
            attempts=self.attempts,
            tier=tier,
            skipped=skipped,
            error_type=type(err).__name__ if err and self.state is not TaskState.SUCCEEDED else None,
            error=str(err) if err and self.state is not TaskState.SUCCEEDED else None,
            history=list(self.history),
        )


class InFlightGuard:
    """At most one running collection per key.

    A second caller for a key that is already running awaits the first
    caller's result instead of starting its own upstream call or write.
    """

    def __init__(self):
        self._running: Dict[CollectionKey, asyncio.Future] = {}

    def is_running(self, key: CollectionKey) -> bool:
        return key in self._running

    def __len__(self) -> int:
        return len(self._running)

    async def run(
        self, key: CollectionKey, factory: Callable[[], Awaitable[TaskOutcome]]
    ) -> Tuple[TaskOutcome, bool]:
        """Return ``(outcome, joined)``; ``joined`` is True for a duplicate."""
        existing = self._running.get(key)
        if existing is not None:
            outcome = await asyncio.shield(existing)
            return outcome, True

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._running[key] = future
        try:
            outcome = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unjoined failure does not warn at GC
            future.exception()
            raise
        else:
            future.set_result(outcome)
            return outcome, False
        finally:
            self._running.pop(key, None)


class RefreshOrchestrator:
    """Only writer of both cache tiers."""

    def __init__(
        self,
        store: CacheStore,
        tenants: TenantDirectory,
        sources: Dict[str, MetricsSource],
        retry: RetryPolicy | None = None,
        batch_size: int | None = None,
        batch_pause: float | None = None,
        task_timeout: float | None = None,
        staleness: timedelta | None = None,
        retention_months: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.tenants = tenants
        self.sources = sources
        self.retry = retry or RetryPolicy.from_settings()
        self.batch_size = max(1, batch_size or settings.refresh_batch_size)
        self.batch_pause = (
            settings.refresh_batch_pause_seconds if batch_pause is None else batch_pause
        )
        self.task_timeout = task_timeout or settings.task_timeout_seconds
        self.staleness = staleness or timedelta(hours=settings.staleness_hours)
        self.retention_months = retention_months or settings.retention_months
        self.sleep = sleep
        self.clock = clock

        self.guard = InFlightGuard()
        self.last_report: Optional[RunReport] = None
        self._run_lock = asyncio.Lock()
        self._cancel_requested = False

    # ── Cancellation ──

    def cancel(self) -> None:
        """Stop dispatching new jobs in the current run; jobs already in flight finish.

        The flag is cleared when the next refresh or backfill run starts.
        """
        self._cancel_requested = True
        logger.info("Refresh cancellation requested")

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    # ── Single period ──

    async def refresh_one(
        self,
        tenant: Tenant,
        platform: str,
        period: Period,
        recollect: bool = False,
        now: datetime | None = None,
    ) -> TaskOutcome:
        """Collect one canonical period into the tier it belongs to.

        Closed periods go to the archive (idempotent unless ``recollect``),
        current periods to the current-period cache.
        """
        if not period.is_canonical:
            raise InvalidRange(f"Only monthly or weekly periods can be collected, got {period}")

        now = now or self.clock()
        key = (tenant.tenant_id, platform, period.id)
        outcome, joined = await self.guard.run(
            key, lambda: self._collect(tenant, platform, period, recollect, now)
        )
        if joined:
            logger.info(
                f"Joined in-flight collection for {period.id}",
                extra={"tenant_id": tenant.tenant_id, "platform": platform, "period_id": period.id},
            )
            return outcome.model_copy(update={"deduplicated": True})
        return outcome

    async def _collect(
        self,
        tenant: Tenant,
        platform: str,
        period: Period,
        recollect: bool,
        now: datetime,
    ) -> TaskOutcome:
        task = CollectionTask(tenant.tenant_id, platform, period)
        log_extra = {"tenant_id": tenant.tenant_id, "platform": platform, "period_id": period.id}
        today = now.date()
        closed = is_closed(period, today)
        tier = "archive" if closed else "current"

        if closed and not recollect:
            if self.store.get_archive(tenant.tenant_id, platform, period.kind.value, period.start):
                task.move(TaskState.SUCCEEDED)
                return task.outcome(tier=tier, skipped=True)

        source = self.sources.get(platform)
        if source is None:
            task.last_error = UpstreamError(f"No source registered for platform {platform!r}")
            task.move(TaskState.FAILED_TERMINAL)
            return task.outcome(tier=tier)

        fetch_end = min(period.end, today)

        while True:
            task.attempts += 1
            task.move(TaskState.IN_FLIGHT)
            started = time.monotonic()
            try:
                payload = await asyncio.wait_for(
                    source.fetch_metrics(
                        tenant.account_ref(platform),
                        tenant.credentials(platform),
                        period.start,
                        fetch_end,
                    ),
                    timeout=self.task_timeout,
                )
            except asyncio.TimeoutError:
                task.last_error = TransientError(
                    f"Upstream fetch timed out after {self.task_timeout}s"
                )
            except UpstreamError as e:
                task.last_error = e
            except Exception as e:
                logger.exception(f"Unexpected error collecting {period.id}", extra=log_extra)
                task.last_error = e
                task.move(TaskState.FAILED_TERMINAL)
                return task.outcome(tier=tier)
            else:
                try:
                    self._store(tenant, platform, period, payload, closed, recollect, now, fetch_end)
                except Exception as e:
                    logger.exception(f"Failed to store {period.id}", extra=log_extra)
                    task.last_error = e
                    task.move(TaskState.FAILED_TERMINAL)
                    return task.outcome(tier=tier)
                task.move(TaskState.SUCCEEDED)
                logger.info(
                    f"✅ Collected {period.id} into {tier} ({len(payload.campaigns)} campaigns)",
                    extra={
                        **log_extra,
                        "attempt": task.attempts,
                        "duration_ms": int((time.monotonic() - started) * 1000),
                    },
                )
                return task.outcome(tier=tier)

            err = task.last_error
            if getattr(err, "retryable", False) and task.attempts < self.retry.max_attempts:
                task.move(TaskState.FAILED_RETRYABLE)
                wait = self.retry.delay(task.attempts)
                logger.warning(
                    f"{type(err).__name__}: {err}. Retrying in {wait}s "
                    f"(attempt {task.attempts}/{self.retry.max_attempts})",
                    extra={**log_extra, "attempt": task.attempts},
                )
                await self.sleep(wait)
                task.move(TaskState.PENDING)
                continue

            task.move(TaskState.FAILED_TERMINAL)
            logger.error(
                f"❌ Collection of {period.id} failed: {type(err).__name__}: {err}",
                extra={**log_extra, "attempt": task.attempts, "state": task.state.value},
            )
            return task.outcome(tier=tier)

    def _store(
        self,
        tenant: Tenant,
        platform: str,
        period: Period,
        payload: UpstreamPayload,
        closed: bool,
        recollect: bool,
        now: datetime,
        fetch_end: date,
    ) -> MetricSnapshot:
        snapshot = build_snapshot(tenant.tenant_id, platform, period, payload, collected_at=now)
        self._log_parse_diagnostics(snapshot, payload)
        raw = self.store.save_raw_payload(
            tenant.tenant_id, platform, period.id, period.start, fetch_end, payload
        )
        if closed:
            self.store.put_archive(
                snapshot,
                data_source="recollection" if recollect else "collector",
                recollect=recollect,
                reason="explicit recollection" if recollect else "",
            )
        else:
            self.store.put_current(snapshot)
            # An in-progress period only needs its latest fetch
            self.store.prune_raw_payloads(tenant.tenant_id, platform, period.id, raw.id)
        return snapshot

    @staticmethod
    def _log_parse_diagnostics(snapshot: MetricSnapshot, payload: UpstreamPayload) -> None:
        extra = {
            "tenant_id": snapshot.tenant_id,
            "platform": snapshot.platform,
            "period_id": snapshot.period_id,
        }
        for anomaly in funnel.find_anomalies(payload.raw_events):
            logger.warning(f"ParseAnomaly: {anomaly}", extra=extra)
        for inversion in funnel.funnel_inversions(snapshot.funnel):
            logger.warning(f"⚠️ Funnel inversion: {inversion}", extra=extra)

    # ── Recollection ──

    async def recollect_from_raw(
        self,
        tenant_id: str,
        platform: str,
        period: Period,
        reason: str,
    ) -> TaskOutcome:
        """Re-parse the latest raw payload and overwrite the archive record.

        No upstream call is made. This is the only path besides
        ``refresh_one(recollect=True)`` that may replace an archive record.
        """
        task = CollectionTask(tenant_id, platform, period)
        raw = self.store.latest_raw_payload(tenant_id, platform, period.id or "")
        if raw is None:
            task.last_error = LookupError(f"No raw payload stored for {period.id}")
            task.move(TaskState.FAILED_TERMINAL)
            return task.outcome(tier="archive")

        async def _reparse() -> TaskOutcome:
            task.attempts += 1
            task.move(TaskState.IN_FLIGHT)
            payload = UpstreamPayload.model_validate_json(raw.payload_json)
            snapshot = build_snapshot(tenant_id, platform, period, payload, collected_at=self.clock())
            self.store.put_archive(
                snapshot, data_source="recollection", recollect=True, reason=reason
            )
            task.move(TaskState.SUCCEEDED)
            logger.info(
                f"♻️ Recollected {period.id} from raw payload {raw.id}: {reason}",
                extra={"tenant_id": tenant_id, "platform": platform, "period_id": period.id},
            )
            return task.outcome(tier="archive")

        outcome, joined = await self.guard.run((tenant_id, platform, period.id or ""), _reparse)
        return outcome.model_copy(update={"deduplicated": True}) if joined else outcome

    # ── Period transition ──

    async def migrate_closed_periods(self, now: datetime | None = None) -> MigrationResult:
        """Move current-period rows whose period has ended into the archive.

        The closed period is collected one final time; if that fails the
        last cached snapshot is archived instead. The archive is never
        overwritten here, and the current row is removed afterwards so
        current-tier lookups for a closed period always miss.
        """
        now = now or self.clock()
        today = now.date()
        result = MigrationResult()

        for row in self.store.list_current():
            period = parse_period_id(row.period_id)
            if not is_closed(period, today):
                continue
            extra = {"tenant_id": row.tenant_id, "platform": row.platform, "period_id": row.period_id}
            try:
                if self.store.get_archive(row.tenant_id, row.platform, period.kind.value, period.start):
                    result.already_archived += 1
                else:
                    tenant = self.tenants.get(row.tenant_id)
                    outcome = None
                    if tenant is not None and not self._cancel_requested:
                        outcome = await self.refresh_one(tenant, row.platform, period, now=now)
                    if outcome is not None and outcome.ok:
                        result.archived += 1
                    else:
                        self.store.put_archive(row.snapshot, data_source="period_transition_cache")
                        result.archived_from_cache += 1
                        logger.warning(
                            f"Archived last cached snapshot for {row.period_id}",
                            extra=extra,
                        )
                self.store.delete_current(row.tenant_id, row.platform, row.period_id)
            except Exception:
                logger.exception(f"Failed to migrate {row.period_id}", extra=extra)
                result.errors += 1

        if result.archived or result.archived_from_cache or result.errors:
            logger.info(
                f"📦 Period transition: {result.archived} archived, "
                f"{result.archived_from_cache} from cache, {result.errors} errors"
            )
        return result

    # ── Batch runs ──

    async def _run_batches(
        self,
        tenants: List[Tenant],
        job: Callable[[Tenant], Awaitable[List[TaskOutcome]]],
        report: RunReport,
    ) -> None:
        for index in range(0, len(tenants), self.batch_size):
            if index:
                await self.sleep(self.batch_pause)
            if self._cancel_requested:
                report.cancelled = True
                logger.info("Refresh cancelled; not dispatching remaining tenants")
                return
            batch = tenants[index : index + self.batch_size]
            results = await asyncio.gather(*(job(t) for t in batch), return_exceptions=True)
            for tenant, result in zip(batch, results):
                report.tenants_processed += 1
                if isinstance(result, BaseException):
                    logger.error(
                        f"Tenant refresh failed: {type(result).__name__}: {result}",
                        extra={"tenant_id": tenant.tenant_id},
                    )
                    report.tenant_errors.append(f"{tenant.tenant_id}: {result}")
                else:
                    report.outcomes.extend(result)

    def _platforms(self, tenant: Tenant) -> List[str]:
        return [p for p in tenant.platforms() if p in self.sources]

    async def _refresh_tenant_current(self, tenant: Tenant, now: datetime) -> List[TaskOutcome]:
        outcomes: List[TaskOutcome] = []
        for platform in self._platforms(tenant):
            for period in current_periods(now.date()):
                if self._cancel_requested:
                    return outcomes
                entry = self.store.get_current(tenant.tenant_id, platform, period.id)
                if entry is not None and not self.store.is_stale(entry, now, self.staleness):
                    outcomes.append(
                        TaskOutcome(
                            tenant_id=tenant.tenant_id,
                            platform=platform,
                            period_id=period.id,
                            state=TaskState.SUCCEEDED,
                            tier="current",
                            skipped=True,
                        )
                    )
                    continue
                outcomes.append(await self.refresh_one(tenant, platform, period, now=now))
        return outcomes

    async def refresh_all(self, now: datetime | None = None) -> RunReport:
        """Scheduled refresh of the current month and week for every eligible tenant."""
        now = now or self.clock()
        report = RunReport(kind="refresh", started_at=now)

        if self._run_lock.locked():
            logger.warning("Refresh already running; skipping overlapping run")
            report.skipped_overlapping_run = True
            report.finished_at = self.clock()
            return report

        async with self._run_lock:
            self._cancel_requested = False
            logger.info("🔄 Refresh run starting")

            report.migration = await self.migrate_closed_periods(now)

            tenants = self.tenants.eligible()
            await self._run_batches(
                tenants, lambda t: self._refresh_tenant_current(t, now), report
            )

            if not report.cancelled:
                horizon = retention_horizon(now.date(), self.retention_months)
                report.archive_purged = self.store.purge_archive_before(horizon)
                report.raw_payloads_purged = self.store.purge_raw_payloads_before(horizon)

            report.finished_at = self.clock()
            self.last_report = report

        logger.info(
            f"Refresh run finished: {report.succeeded} collected, {report.skipped} fresh, "
            f"{report.failed} failed across {report.tenants_processed} tenants"
        )
        return report

    async def backfill(
        self,
        periods: Iterable[Period],
        tenant_id: str | None = None,
        recollect: bool = False,
        now: datetime | None = None,
    ) -> RunReport:
        """Operator-triggered collection of explicit periods.

        Custom ranges are split into the canonical periods they overlap.
        Closed periods already archived are skipped unless ``recollect``.
        """
        now = now or self.clock()
        report = RunReport(kind="backfill", started_at=now)
        # Cancellation applies to the run in progress; a new backfill starts clean
        self._cancel_requested = False

        canonical: List[Period] = []
        for period in periods:
            for part in [period] if period.is_canonical else decompose(period.start, period.end):
                if part not in canonical:
                    canonical.append(part)

        if tenant_id is not None:
            tenant = self.tenants.get(tenant_id)
            tenants = [tenant] if tenant is not None else []
            if tenant is None:
                report.tenant_errors.append(f"{tenant_id}: unknown tenant")
        else:
            tenants = self.tenants.eligible()

        async def _job(tenant: Tenant) -> List[TaskOutcome]:
            outcomes = []
            for platform in self._platforms(tenant):
                for period in canonical:
                    if self._cancel_requested:
                        return outcomes
                    outcomes.append(
                        await self.refresh_one(tenant, platform, period, recollect=recollect, now=now)
                    )
            return outcomes

        logger.info(
            f"Backfill of {len(canonical)} periods for {len(tenants)} tenants (recollect={recollect})"
        )
        await self._run_batches(tenants, _job, report)
        report.finished_at = self.clock()
        return report
