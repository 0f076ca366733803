"""
Shared pytest fixtures.

Uses an in-memory SQLite database and a scripted upstream source so no
network or Postgres is required.
"""
import asyncio
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from adpulse.connectors.base import MetricsSource
from adpulse.models import cache_models, raw_models  # noqa: F401
from adpulse.models.snapshot_models import CampaignRow, RawEvent, UpstreamPayload
from adpulse.models.tenant_models import Tenant
from adpulse.services.collector import RefreshOrchestrator, RetryPolicy
from adpulse.services.reader import ReadOrchestrator
from adpulse.services.tenants import TenantDirectory
from adpulse.store.cache_store import CacheStore

# Wednesday; March 2025 is closed, April 2025 and ISO week 2025-W16 are current
NOW = datetime(2025, 4, 16, 12, 0, tzinfo=timezone.utc)


def make_payload(*spends, events=None) -> UpstreamPayload:
    campaigns = [
        CampaignRow(
            campaign_id=f"c{i}",
            campaign_name=f"Campaign {i}",
            spend=Decimal(str(spend)),
            impressions=1000,
            clicks=50,
        )
        for i, spend in enumerate(spends, start=1)
    ]
    return UpstreamPayload(
        campaigns=campaigns,
        raw_events=events
        if events is not None
        else [RawEvent("omni_purchase", 2, 300.0), RawEvent("omni_search", 20, 0)],
    )


class FakeSource(MetricsSource):
    """Scripted MetricsSource.

    ``script`` is consumed in order: each item is an UpstreamPayload to
    return or an exception to raise. When it runs out, ``default`` is used.
    """

    platform = "meta"

    def __init__(self, script=None, default=None, delay: float = 0.0):
        self.script = list(script or [])
        self.default = default if default is not None else make_payload(100, 50)
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def fetch_metrics(self, account_ref, credentials, start, end):
        self.calls.append((account_ref, start, end))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if self.script else self.default
            if isinstance(item, BaseException):
                raise item
            return item
        finally:
            self.active -= 1


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture()
def store(engine) -> CacheStore:
    return CacheStore(engine)


@pytest.fixture()
def tenants(engine) -> TenantDirectory:
    with Session(engine) as session:
        session.add(Tenant(tenant_id="havet", name="Hotel Havet", meta_ad_account_id="act_1", meta_access_token="tok-1"))
        session.add(Tenant(tenant_id="belmonte", name="Belmonte", meta_ad_account_id="act_2", meta_access_token="tok-2"))
        session.add(Tenant(tenant_id="no-creds", name="No Credentials"))
        session.add(Tenant(tenant_id="inactive", meta_ad_account_id="act_9", meta_access_token="tok-9", active=False))
        session.commit()
    return TenantDirectory(engine)


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def sleeps():
    """Records backoff / batch pauses instead of sleeping."""
    return []


@pytest.fixture()
def make_collector(store, tenants, sleeps):
    def _make(source, **kwargs) -> RefreshOrchestrator:
        async def _sleep(seconds):
            sleeps.append(seconds)

        options = dict(
            retry=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=8.0),
            batch_size=2,
            batch_pause=0.5,
            task_timeout=5.0,
            staleness=timedelta(hours=3),
            retention_months=37,
            sleep=_sleep,
            clock=lambda: NOW,
        )
        options.update(kwargs)
        return RefreshOrchestrator(store, tenants, {"meta": source}, **options)

    return _make


@pytest.fixture()
def collector(make_collector, source) -> RefreshOrchestrator:
    return make_collector(source)


@pytest.fixture()
def reader(store, tenants, collector) -> ReadOrchestrator:
    return ReadOrchestrator(
        store,
        tenants,
        collector,
        staleness=timedelta(hours=3),
        retention_months=37,
        clock=lambda: NOW,
    )


@pytest.fixture()
def havet(tenants) -> Tenant:
    return tenants.get("havet")


def run(coro):
    return asyncio.run(coro)


MARCH = (date(2025, 3, 1), date(2025, 3, 31))
APRIL = (date(2025, 4, 1), date(2025, 4, 30))
