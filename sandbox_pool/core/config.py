from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sandbox_pool.core.exceptions import ConfigurationError

DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_LEASE_LENGTH_IN_DAYS = 7


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the pool settings."""
    return Settings()


@dataclass(frozen=True)
class StoreConfig:
    """Everything a LeaseStore needs to reach its tables."""

    region: str
    account_table_name: str
    lease_table_name: str
    default_lease_length_in_days: int = DEFAULT_LEASE_LENGTH_IN_DAYS
    consistent_read: bool = False
    endpoint_url: Optional[str] = None


class Settings(BaseSettings):
    """
    Environment-driven configuration for the sandbox account pool.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "sandbox-pool"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    AWS_CURRENT_REGION: str = DEFAULT_AWS_REGION
    # Optional override for DynamoDB Local / LocalStack
    AWS_ENDPOINT_URL: Optional[str] = None

    ACCOUNT_DB: Optional[str] = None
    LEASE_DB: Optional[str] = None
    DEFAULT_LEASE_LENGTH_IN_DAYS: int = Field(default=DEFAULT_LEASE_LENGTH_IN_DAYS, ge=1)
    # Strongly consistent reads trade latency for freshness
    DYNAMODB_CONSISTENT_READ: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def normalize(self) -> "Settings":
        self.AWS_CURRENT_REGION = self.AWS_CURRENT_REGION.strip() or DEFAULT_AWS_REGION
        self.LOG_LEVEL = self.LOG_LEVEL.strip().upper() or "INFO"
        return self

    def store_config(self) -> StoreConfig:
        """
        Build the immutable store configuration.
        Table names are mandatory; everything else has a default.
        """
        missing = [
            name
            for name, value in (("ACCOUNT_DB", self.ACCOUNT_DB), ("LEASE_DB", self.LEASE_DB))
            if not value
        ]
        if missing:
            structlog.get_logger().error("store_config_incomplete", missing=missing)
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}",
                details={"missing": missing},
            )

        return StoreConfig(
            region=self.AWS_CURRENT_REGION,
            account_table_name=str(self.ACCOUNT_DB),
            lease_table_name=str(self.LEASE_DB),
            default_lease_length_in_days=self.DEFAULT_LEASE_LENGTH_IN_DAYS,
            consistent_read=self.DYNAMODB_CONSISTENT_READ,
            endpoint_url=self.AWS_ENDPOINT_URL,
        )
