from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "pm-arb-scanner"
    debug: bool = False

    database_url_async: str = "postgresql+asyncpg://pm:pm@localhost:5432/prediction_markets"
    database_url_sync: str = "postgresql+psycopg://pm:pm@localhost:5432/prediction_markets"

    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800

    # classifier thresholds (net spread in percent units)
    min_executable_spread_pct: float = 2.0
    min_executable_size_usd: float = 1000.0

    # deployable capital
    max_position_usd: float = 10_000.0
    liquidity_cap_usd: float = 50_000.0
    reference_capital_usd: float = 1_000.0
    volume_liquidity_fraction: float = 0.01

    sanity_ceiling_pct: float = 100.0
    stale_after_minutes: int = 10

    settlement_fee_mode: Literal["unconditional", "probability_weighted"] = "unconditional"

    volume_window_days: int = 7
    volume_alert_threshold: float = 1.5
    volume_min_usd: float = 1000.0
    volume_min_avg_usd: float = 100.0
    volume_min_history: int = 2
    volume_baseline_bucket: Literal["snapshot", "daily"] = "snapshot"

    run_interval_sec: int = 300
    run_stale_after_seconds: int = 1800
    detection_concurrency: int = 10
    fetch_timeout_seconds: float = 10.0

    metrics_port: int | None = None


settings = Settings()
