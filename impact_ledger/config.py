"""
Engine settings.

Loads configuration from environment variables (prefix ``IMPACT_``) using
pydantic-settings.
"""

from decimal import Decimal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    environment: str = "development"
    log_level: str = "INFO"

    # Referral split (two levels, floor-rounded)
    referral_direct_ratio: Decimal = Field(default=Decimal("0.7"), ge=0, le=1)
    referral_indirect_ratio: Decimal = Field(default=Decimal("0.3"), ge=0, le=1)

    # Vesting schedule
    vesting_cliff_months: int = Field(default=12, ge=0)
    vesting_full_months: int = Field(default=48, gt=0)
    vesting_cliff_fraction: Decimal = Field(default=Decimal("0.25"), ge=0, le=1)

    # Primary write retries
    max_write_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=0.05, ge=0)

    # Founding Pioneer programme
    pioneer_approval_bonus: Decimal = Field(default=Decimal("100"), ge=0)
    pioneer_top_n: int = Field(default=100, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="IMPACT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def check_consistency(self) -> "Settings":
        if self.referral_direct_ratio + self.referral_indirect_ratio > 1:
            raise ValueError("Referral ratios must not distribute more than the origin amount")
        if self.vesting_full_months <= self.vesting_cliff_months:
            raise ValueError("vesting_full_months must be after vesting_cliff_months")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
