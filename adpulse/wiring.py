"""AdPulse - Service Wiring.

Process-wide instances shared by the API, the scheduler and the lifespan
hooks. FastAPI routes receive them through ``Depends`` so tests can swap
them with ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Dict

from adpulse.config import settings
from adpulse.connectors.base import MetricsSource
from adpulse.connectors.google.endpoints import GoogleAdsSource
from adpulse.connectors.meta.endpoints import MetaInsightsSource
from adpulse.database import engine
from adpulse.services.collector import RefreshOrchestrator
from adpulse.services.reader import ReadOrchestrator
from adpulse.services.tenants import TenantDirectory
from adpulse.store.cache_store import CacheStore


def build_sources() -> Dict[str, MetricsSource]:
    """Upstream sources by platform name, limited to ``settings.default_platforms``."""
    available: Dict[str, MetricsSource] = {
        "meta": MetaInsightsSource(),
        "google": GoogleAdsSource(),
    }
    return {p: s for p, s in available.items() if p in settings.default_platforms}


@lru_cache
def get_store() -> CacheStore:
    return CacheStore(engine)


@lru_cache
def get_tenants() -> TenantDirectory:
    return TenantDirectory(engine)


@lru_cache
def get_collector() -> RefreshOrchestrator:
    return RefreshOrchestrator(get_store(), get_tenants(), build_sources())


@lru_cache
def get_reader() -> ReadOrchestrator:
    return ReadOrchestrator(get_store(), get_tenants(), get_collector())
