"""AdPulse - Cache Store.

Persistence for the two cache tiers. Every write runs in its own session and
transaction and replaces the whole snapshot row; there are no partial
updates. The store does not enforce archive immutability on its own: the
refresh orchestrator decides when ``recollect=True`` is allowed.
"""

import threading
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from adpulse.core.logging import get_logger
from adpulse.models.cache_models import (
    ArchiveRecollection,
    CurrentPeriodCache,
    PeriodArchive,
)
from adpulse.models.raw_models import RawPayload
from adpulse.models.snapshot_models import MetricSnapshot, UpstreamPayload

logger = get_logger("store")


def _aware(ts: datetime) -> datetime:
    """SQLite drops tzinfo on round-trip; treat naive timestamps as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class CacheStore:
    """Current-period cache + period archive over a SQLModel engine."""

    def __init__(self, engine):
        self.engine = engine
        self._write_lock = threading.RLock()

    def _session(self) -> Session:
        # Rows are handed back to callers after the session closes
        return Session(self.engine, expire_on_commit=False)

    # ── Current-period tier ──

    def get_current(
        self, tenant_id: str, platform: str, period_id: str
    ) -> Optional[CurrentPeriodCache]:
        with self._session() as session:
            return session.exec(
                select(CurrentPeriodCache).where(
                    CurrentPeriodCache.tenant_id == tenant_id,
                    CurrentPeriodCache.platform == platform,
                    CurrentPeriodCache.period_id == period_id,
                )
            ).first()

    def put_current(self, snapshot: MetricSnapshot) -> CurrentPeriodCache:
        """Insert or replace the row for the snapshot's key, atomically."""
        if not snapshot.period_id:
            raise ValueError("Custom periods are never stored in the current-period tier")

        payload = snapshot.model_dump_json()
        # Freshness is measured from when the data was collected upstream
        now = snapshot.collected_at

        with self._write_lock:
            for attempt in (1, 2):
                with self._session() as session:
                    row = session.exec(
                        select(CurrentPeriodCache).where(
                            CurrentPeriodCache.tenant_id == snapshot.tenant_id,
                            CurrentPeriodCache.platform == snapshot.platform,
                            CurrentPeriodCache.period_id == snapshot.period_id,
                        )
                    ).first()
                    if row is None:
                        row = CurrentPeriodCache(
                            tenant_id=snapshot.tenant_id,
                            platform=snapshot.platform,
                            period_id=snapshot.period_id,
                            period_kind=snapshot.period_kind,
                            period_start=snapshot.start,
                            period_end=snapshot.end,
                            snapshot_json=payload,
                            last_updated=now,
                        )
                    else:
                        row.snapshot_json = payload
                        row.last_updated = now
                    session.add(row)
                    try:
                        session.commit()
                    except IntegrityError:
                        # Another process inserted the key first; retry as update
                        session.rollback()
                        if attempt == 2:
                            raise
                        continue
                    session.refresh(row)
                    return row
        raise RuntimeError("unreachable")

    def delete_current(self, tenant_id: str, platform: str, period_id: str) -> int:
        with self._write_lock, self._session() as session:
            result = session.exec(
                delete(CurrentPeriodCache).where(
                    CurrentPeriodCache.tenant_id == tenant_id,
                    CurrentPeriodCache.platform == platform,
                    CurrentPeriodCache.period_id == period_id,
                )
            )
            session.commit()
            return result.rowcount or 0

    def list_current(
        self, tenant_id: str | None = None, platform: str | None = None
    ) -> List[CurrentPeriodCache]:
        """Range scan of current-period rows, optionally by tenant/platform."""
        query = select(CurrentPeriodCache)
        if tenant_id is not None:
            query = query.where(CurrentPeriodCache.tenant_id == tenant_id)
        if platform is not None:
            query = query.where(CurrentPeriodCache.platform == platform)
        with self._session() as session:
            return list(session.exec(query.order_by(CurrentPeriodCache.period_start)).all())

    @staticmethod
    def is_stale(
        entry: CurrentPeriodCache, now: datetime, threshold: timedelta
    ) -> bool:
        """Whether a current-period row is older than ``threshold``."""
        return _aware(now) - _aware(entry.last_updated) > threshold

    # ── Archive tier ──

    def get_archive(
        self, tenant_id: str, platform: str, summary_type: str, summary_date: date
    ) -> Optional[PeriodArchive]:
        with self._session() as session:
            return session.exec(
                select(PeriodArchive).where(
                    PeriodArchive.tenant_id == tenant_id,
                    PeriodArchive.platform == platform,
                    PeriodArchive.summary_type == summary_type,
                    PeriodArchive.summary_date == summary_date,
                )
            ).first()

    @staticmethod
    def _find_archive(session: Session, snapshot: MetricSnapshot) -> Optional[PeriodArchive]:
        return session.exec(
            select(PeriodArchive).where(
                PeriodArchive.tenant_id == snapshot.tenant_id,
                PeriodArchive.platform == snapshot.platform,
                PeriodArchive.summary_type == snapshot.period_kind,
                PeriodArchive.summary_date == snapshot.start,
            )
        ).first()

    def put_archive(
        self,
        snapshot: MetricSnapshot,
        data_source: str = "collector",
        recollect: bool = False,
        reason: str = "",
    ) -> PeriodArchive:
        """Insert-or-replace an archive record.

        Replacing is only done for ``recollect=True`` and always leaves an
        ArchiveRecollection audit row. Without it, an existing record is
        returned untouched, including one another process inserted between
        our lookup and our commit.
        """
        payload = snapshot.model_dump_json()
        extra = {
            "tenant_id": snapshot.tenant_id,
            "platform": snapshot.platform,
            "period_id": snapshot.period_id,
        }

        with self._write_lock:
            for attempt in (1, 2):
                with self._session() as session:
                    row = self._find_archive(session, snapshot)

                    if row is not None and not recollect:
                        logger.warning(
                            f"Archive already holds {snapshot.period_id}; keeping the first write",
                            extra=extra,
                        )
                        return row

                    if row is None:
                        row = PeriodArchive(
                            tenant_id=snapshot.tenant_id,
                            platform=snapshot.platform,
                            summary_type=snapshot.period_kind,
                            summary_date=snapshot.start,
                            snapshot_json=payload,
                            data_source=data_source,
                            collected_at=snapshot.collected_at,
                        )
                    else:
                        session.add(
                            ArchiveRecollection(
                                tenant_id=row.tenant_id,
                                platform=row.platform,
                                summary_type=row.summary_type,
                                summary_date=row.summary_date,
                                reason=reason,
                                previous_snapshot_json=row.snapshot_json,
                                new_snapshot_json=payload,
                            )
                        )
                        row.snapshot_json = payload
                        row.data_source = data_source
                        row.collected_at = snapshot.collected_at
                        row.recollection_count += 1

                    session.add(row)
                    try:
                        session.commit()
                    except IntegrityError:
                        # Lost an insert race; the second pass sees the winner's row
                        session.rollback()
                        if attempt == 2:
                            raise
                        logger.info(f"Concurrent archive insert for {snapshot.period_id}", extra=extra)
                        continue
                    session.refresh(row)
                    return row
        raise RuntimeError("unreachable")

    def list_archive(
        self,
        tenant_id: str,
        platform: str | None = None,
        summary_type: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> List[PeriodArchive]:
        query = select(PeriodArchive).where(PeriodArchive.tenant_id == tenant_id)
        if platform is not None:
            query = query.where(PeriodArchive.platform == platform)
        if summary_type is not None:
            query = query.where(PeriodArchive.summary_type == summary_type)
        if start is not None:
            query = query.where(PeriodArchive.summary_date >= start)
        if end is not None:
            query = query.where(PeriodArchive.summary_date <= end)
        with self._session() as session:
            return list(session.exec(query.order_by(PeriodArchive.summary_date)).all())

    def list_recollections(self, tenant_id: str) -> List[ArchiveRecollection]:
        with self._session() as session:
            return list(
                session.exec(
                    select(ArchiveRecollection)
                    .where(ArchiveRecollection.tenant_id == tenant_id)
                    .order_by(ArchiveRecollection.created_at)
                ).all()
            )

    def purge_archive_before(self, horizon: date) -> int:
        """Drop archive records for periods starting before ``horizon``."""
        with self._write_lock, self._session() as session:
            result = session.exec(
                delete(PeriodArchive).where(PeriodArchive.summary_date < horizon)
            )
            session.commit()
            removed = result.rowcount or 0
        if removed:
            logger.info(f"🧹 Purged {removed} archive records older than {horizon}")
        return removed

    # ── Raw payloads ──

    def save_raw_payload(
        self,
        tenant_id: str,
        platform: str,
        period_id: str,
        date_start: date,
        date_stop: date,
        payload: UpstreamPayload,
    ) -> RawPayload:
        raw = RawPayload(
            tenant_id=tenant_id,
            platform=platform,
            period_id=period_id,
            date_start=date_start.isoformat(),
            date_stop=date_stop.isoformat(),
            payload_json=payload.model_dump_json(),
        )
        with self._write_lock, self._session() as session:
            session.add(raw)
            session.commit()
            session.refresh(raw)
        return raw

    def latest_raw_payload(
        self, tenant_id: str, platform: str, period_id: str
    ) -> Optional[RawPayload]:
        with self._session() as session:
            return session.exec(
                select(RawPayload)
                .where(
                    RawPayload.tenant_id == tenant_id,
                    RawPayload.platform == platform,
                    RawPayload.period_id == period_id,
                )
                .order_by(RawPayload.fetched_at.desc(), RawPayload.id.desc())  # type: ignore
            ).first()

    def prune_raw_payloads(
        self, tenant_id: str, platform: str, period_id: str, keep_id: int
    ) -> int:
        """Drop payloads for the key that a newer fetch (``keep_id``) superseded."""
        with self._write_lock, self._session() as session:
            result = session.exec(
                delete(RawPayload).where(
                    RawPayload.tenant_id == tenant_id,
                    RawPayload.platform == platform,
                    RawPayload.period_id == period_id,
                    RawPayload.id != keep_id,
                )
            )
            session.commit()
            return result.rowcount or 0

    def purge_raw_payloads_before(self, horizon: date) -> int:
        """Drop raw payloads whose query started before ``horizon``."""
        with self._write_lock, self._session() as session:
            result = session.exec(
                delete(RawPayload).where(RawPayload.date_start < horizon.isoformat())
            )
            session.commit()
            removed = result.rowcount or 0
        if removed:
            logger.info(f"🧹 Purged {removed} raw payloads older than {horizon}")
        return removed
