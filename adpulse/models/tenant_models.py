"""AdPulse - Tenant Records (read-only here).

Rows are created and edited by the administrative subsystem; AdPulse only
reads them to find accounts and credentials to collect for.
"""

from typing import Optional

from sqlmodel import SQLModel, Field


class Tenant(SQLModel, table=True):
    """A client whose ad accounts are aggregated."""

    __tablename__ = "tenants"

    id: Optional[int] = Field(default=None, primary_key=True)
    tenant_id: str = Field(index=True, unique=True)
    name: str = Field(default="")
    meta_ad_account_id: str = Field(default="")
    meta_access_token: str = Field(default="")
    google_customer_id: str = Field(default="")
    google_refresh_token: str = Field(default="")
    active: bool = Field(default=True)

    def account_ref(self, platform: str) -> str:
        if platform == "meta":
            return self.meta_ad_account_id
        if platform == "google":
            return self.google_customer_id
        return ""

    def credentials(self, platform: str) -> str:
        if platform == "meta":
            return self.meta_access_token
        if platform == "google":
            return self.google_refresh_token
        return ""

    def platforms(self) -> list[str]:
        """Platforms this tenant has valid-looking credentials for."""
        return [
            p for p in ("meta", "google") if self.account_ref(p) and self.credentials(p)
        ]
