"""
Configuration management using Pydantic Settings.
All parameters are loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: str = Field(default="development")
    app_log_level: str = Field(default="INFO")

    # Candidate search
    amount_tolerance: float = Field(default=0.01)
    candidate_window_hours: int = Field(default=24)

    # Match scoring
    amount_score_range: float = Field(default=10.0)
    amount_weight: float = Field(default=0.7)
    date_weight: float = Field(default=0.3)
    match_threshold: float = Field(default=0.8)

    # Lower rank wins a confidence tie between sources
    source_priority: List[str] = Field(
        default_factory=lambda: [
            "purchase_entry",
            "online_purchase",
            "billing_invoice",
            "scan_upload",
        ]
    )

    # Reconciliation-path rewards (independent from tiered commission)
    points_per_currency_unit: float = Field(default=0.1)
    reconciliation_cashback_rate: float = Field(default=0.02)
    manual_approval_confidence: float = Field(default=0.9)

    # Concurrency and timeouts
    max_concurrent_records: int = Field(default=8)
    lookup_timeout_seconds: float = Field(default=10.0)
    lookup_retry_attempts: int = Field(default=3)
    lookup_retry_wait_seconds: float = Field(default=0.2)
    side_effect_timeout_seconds: float = Field(default=5.0)

    # Notifications
    notification_webhook_url: Optional[str] = Field(default=None)
    notification_webhook_token: Optional[str] = Field(default=None)
    notification_timeout_seconds: float = Field(default=10.0)

    # Storage
    reports_dir: Path = Field(default=Path("./data/reports"))

    def source_rank(self) -> Dict[str, int]:
        """Map each reference source name to its tie-break rank."""
        return {name: rank for rank, name in enumerate(self.source_priority)}

    @property
    def candidate_window_ms(self) -> int:
        return self.candidate_window_hours * 60 * 60 * 1000

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
