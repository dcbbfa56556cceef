"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with validation.
"""

from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable loading."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )
    
    # Environment
    ENVIRONMENT: str = Field(default="development")
    LOG_LEVEL: str = Field(default="INFO")
    
    # Database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./tenantkey.db",
        description="Async SQLAlchemy URL (postgresql+asyncpg://... in production)"
    )
    
    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(
        default=["http://localhost:3000"]
    )
    
    # Monitoring
    SENTRY_DSN: str = Field(default="")
    
    # API Configuration
    API_V1_PREFIX: str = Field(default="/api/v1")
    APP_URL: str = Field(
        default="http://localhost:3000",
        description="Public URL used when building invitation links"
    )
    
    # WebAuthn relying party
    RP_ID: str = Field(default="localhost")
    RP_NAME: str = Field(default="TenantKey")
    ORIGIN: str = Field(default="http://localhost:3000")
    WEBAUTHN_TIMEOUT_MS: int = Field(default=60000)
    WEBAUTHN_ALLOW_ZERO_COUNTER: bool = Field(
        default=False,
        description="Accept authenticators that never implement a signature counter"
    )
    CHALLENGE_TTL_SECONDS: int = Field(default=300)
    
    # Sessions
    SESSION_TTL_DAYS: int = Field(default=30)
    SESSION_COOKIE_NAME: str = Field(default="tenantkey_session")
    
    # System administrators (seed for the admin gate)
    SYSTEM_ADMIN_EMAILS: Annotated[List[str], NoDecode] = Field(default_factory=list)
    
    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v
    
    @field_validator("SYSTEM_ADMIN_EMAILS", mode="before")
    @classmethod
    def parse_admin_emails(cls, v):
        """Parse admin emails from comma-separated string, lowercased."""
        if isinstance(v, str):
            v = v.split(",")
        return [email.strip().lower() for email in v if email and email.strip()]
    
    @field_validator("SESSION_TTL_DAYS", "CHALLENGE_TTL_SECONDS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """TTLs must be positive."""
        if v <= 0:
            raise ValueError("TTL values must be positive")
        return v
    
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()
