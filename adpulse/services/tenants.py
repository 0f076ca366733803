"""AdPulse - Tenant Directory (read-only view)."""

from typing import List, Optional

from sqlmodel import Session, select

from adpulse.models.tenant_models import Tenant


class TenantDirectory:
    """Reads tenant rows maintained by the administrative subsystem."""

    def __init__(self, engine):
        self.engine = engine

    def get(self, tenant_id: str) -> Optional[Tenant]:
        with Session(self.engine, expire_on_commit=False) as session:
            return session.exec(
                select(Tenant).where(Tenant.tenant_id == tenant_id)
            ).first()

    def eligible(self) -> List[Tenant]:
        """Active tenants with credentials for at least one platform."""
        with Session(self.engine, expire_on_commit=False) as session:
            tenants = session.exec(
                select(Tenant).where(Tenant.active == True).order_by(Tenant.tenant_id)  # noqa: E712
            ).all()
        return [t for t in tenants if t.platforms()]
