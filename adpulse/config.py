"""AdPulse - Central Configuration via Pydantic Settings."""

import os
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_request_timeout_seconds: float = 30.0

    # ── Google Ads API ──
    google_ads_api_version: str = "v18"
    google_ads_base_url: str = "https://googleads.googleapis.com"
    google_oauth_token_url: str = "https://oauth2.googleapis.com/token"
    google_ads_developer_token: str = ""
    google_ads_client_id: str = ""
    google_ads_client_secret: str = ""
    google_ads_manager_customer_id: str = ""  # login-customer-id when accessing via an MCC
    google_ads_request_timeout_seconds: float = 30.0

    # ── Database ──
    database_url: str = ""

    # ── Cache policy ──
    staleness_hours: float = 3.0  # Max age of current-period rows
    retention_months: int = 37  # Rolling window for archive + reads

    # ── Refresh ──
    scheduler_enabled: bool = True
    refresh_interval_hours: int = 3
    refresh_batch_size: int = 2
    refresh_batch_pause_seconds: float = 2.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 60.0
    task_timeout_seconds: float = 120.0
    default_platforms: List[str] = ["meta", "google"]
    allow_on_demand_collection: bool = True

    # ── App ──
    log_level: str = "INFO"

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adpulse.db"
        return "sqlite:///./adpulse.db"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
