"""
Centralized Configuration Management with Pydantic Settings

Type-safe, validated configuration with automatic .env loading.
Every value has a default so the library works without any environment.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    """Client settings with type hints and validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # HTTP Transport
    REQUEST_TIMEOUT: int = Field(default=100, ge=1, le=3600, description="Request timeout in seconds")
    USER_AGENT: str = Field(default="featureservice-client/1.0", description="User-Agent header")
    VERIFY_SSL: bool = Field(default=True, description="Verify TLS certificates")

    # Authentication
    TOKEN_REFRESH_MARGIN: int = Field(
        default=30, ge=0, le=3600,
        description="Seconds before expiry at which a token is regenerated"
    )
    TOKEN_EXPIRATION: Optional[int] = Field(
        default=None, ge=1,
        description="Requested token lifetime in minutes"
    )

    # Download / Edit Parameters
    DEGREE_OF_PARALLELISM: int = Field(default=1, ge=1, le=64, description="Concurrent batch fetches")
    INSERT_REFETCH_BATCH_SIZE: int = Field(
        default=50, ge=1, le=10000,
        description="Batch size used to re-download inserted features"
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Log level")
    LOG_FILE: str = Field(default="logs/featureservice.log", description="Log file path (empty disables)")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        v = v.upper()
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v


# Singleton instance - import this everywhere
settings = Settings()
