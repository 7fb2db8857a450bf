"""Application configuration using pydantic-settings."""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration loaded from environment / .env file."""

    # ── Storage ───────────────────────────────────────────────────────────────
    # "local" keeps rows as JSON files and screenshots on disk under data_dir.
    # "supabase" talks to the PostgREST + Storage endpoints of a project.
    storage_backend: str = Field(
        default="local",
        description="Persistence backend: 'local' or 'supabase'",
    )
    data_dir: str = Field(default="data/mirror")
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_key: str = Field(default="", description="Supabase service or anon key")
    screenshots_bucket: str = Field(default="screenshots")
    store_timeout_seconds: int = Field(default=30)

    # ── Browser ───────────────────────────────────────────────────────────────
    headless: bool = Field(default=False)
    slow_mo_ms: int = Field(default=50)
    viewport_width: int = Field(default=1440)
    viewport_height: int = Field(default=900)

    # ── Crawl ─────────────────────────────────────────────────────────────────
    navigation_timeout_ms: int = Field(default=15000)
    page_settle_ms: int = Field(default=2000)
    cookie_banner_timeout_ms: int = Field(default=1500)
    connection_batch_size: int = Field(default=50)

    # ── Login ─────────────────────────────────────────────────────────────────
    login_page_timeout_ms: int = Field(default=10000)
    login_field_timeout_ms: int = Field(default=5000)
    password_step_timeout_ms: int = Field(default=10000)
    login_redirect_timeout_ms: int = Field(default=30000)

    # ── Recording ─────────────────────────────────────────────────────────────
    poll_interval_ms: int = Field(default=500)
    navigation_settle_ms: int = Field(default=500)
    click_settle_ms: int = Field(default=1200)
    capture_settle_ms: int = Field(default=100)

    # ── Change detection ──────────────────────────────────────────────────────
    pixel_threshold: float = Field(
        default=0.1,
        description="Per-pixel colour tolerance (0-1) used when diffing screenshots",
    )
    change_threshold_percent: float = Field(
        default=0.5,
        description="Diff percentage above which a screen counts as changed",
    )

    # ── Server ────────────────────────────────────────────────────────────────
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3001)

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default="logs/product-mirror.log")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
