"""Configuration management using Pydantic Settings"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = "sqlite:///./spendguard.db"

    # Merchant directory: "static" (seeded catalog) or "http" (registry service)
    merchant_directory: str = "static"
    merchant_registry_base: str = "http://localhost:8001"

    # Service
    service_name: str = "spendguard"
    log_level: str = "INFO"

    # HTTP Client
    http_timeout_seconds: float = 5.0

    # Escrow policy
    misuse_penalty_rate: Decimal = Decimal("0.02")
    savings_allocation_rate: Decimal = Decimal("0.30")
    escrow_default_expiry_days: int = 30

    # Risk heuristics (advisory only, never a gate)
    merchant_risk_threshold: float = 0.3
    high_value_threshold: Decimal = Decimal("10000")

    # Reputation
    reputation_baseline_score: int = 500

    # Intent auto-selection: "soonest_expiring" or "first_created"
    intent_selection_strategy: str = "soonest_expiring"


settings = Settings()
