"""
Application Configuration
Environment variables and settings management
"""

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    ENVIRONMENT: str = Field(default="development", description="Application environment")
    DEBUG: bool = Field(default=False, description="Debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Primary relational backend (optional)
    DATABASE_URL: Optional[str] = Field(default=None, description="PostgreSQL database URL")
    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Database max overflow connections")
    DB_POOL_TIMEOUT: int = Field(default=5, description="Database pool timeout in seconds")
    DB_POOL_RECYCLE: int = Field(default=1800, description="Database pool recycle time in seconds")

    # Fallback tabular backend (Baserow REST API)
    BASEROW_API_URL: Optional[str] = Field(default=None, description="Baserow API base URL")
    BASEROW_API_KEY: Optional[str] = Field(default=None, description="Baserow database token")
    BASEROW_USERS_TABLE_ID: int = Field(default=236)
    BASEROW_ROLES_TABLE_ID: int = Field(default=237)
    BASEROW_MENU_TABLE_ID: int = Field(default=238)
    BASEROW_PERMISSIONS_TABLE_ID: int = Field(default=239)
    BASEROW_ROLE_PERMISSION_TABLE_ID: int = Field(default=240)
    BASEROW_USER_ROLE_TABLE_ID: int = Field(default=241)
    BASEROW_AUDIT_PERMISSION_TABLE_ID: int = Field(default=242)
    BASEROW_USER_FEATURES_TABLE_ID: int = Field(default=250)
    BASEROW_CONFIG_TABLE_ID: int = Field(default=224, description="Tenant configuration rows")
    BASEROW_PAGE_SIZE: int = Field(default=200, description="Rows requested per list call")

    # Backend switch
    USE_DIRECT_DB: bool = Field(default=False, description="Route every domain to the relational backend")
    DIRECT_DB_DOMAINS: str = Field(default="", description="Comma separated domains routed to the relational backend")
    PRIMARY_TIMEOUT_SECONDS: float = Field(default=30.0, description="Timeout per primary backend call")
    TABULAR_TIMEOUT_SECONDS: float = Field(default=15.0, description="Timeout per tabular API call")
    PRIMARY_CIRCUIT_COOLDOWN_SECONDS: float = Field(
        default=30.0, description="How long a failing domain stays on the fallback backend"
    )

    # Permissions
    GLOBAL_ADMIN_INSTITUTION_ID: int = Field(default=4, description="Reserved global admin institution")
    PERMISSIONS_CACHE_TTL_SECONDS: int = Field(default=600, description="TTL of user and status caches")

    # JWT Authentication
    JWT_SECRET_KEY: str = Field(
        default="change-me-in-production-this-key-must-be-at-least-32-chars",
        description="JWT secret key",
    )
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value"""
        allowed = ["development", "staging", "production", "test"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }

    @property
    def direct_db_domains(self) -> List[str]:
        return [domain.strip() for domain in self.DIRECT_DB_DOMAINS.split(",") if domain.strip()]

    @property
    def async_database_url(self) -> Optional[str]:
        if not self.DATABASE_URL:
            return None
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.DATABASE_URL


# Create settings instance
settings = Settings()

# Derived settings
DATABASE_CONFIG = {
    "pool_size": settings.DB_POOL_SIZE,
    "max_overflow": settings.DB_MAX_OVERFLOW,
    "pool_timeout": settings.DB_POOL_TIMEOUT,
    "pool_recycle": settings.DB_POOL_RECYCLE,
    "pool_pre_ping": True,
    "echo": settings.ENVIRONMENT == "development" and settings.DEBUG,
}

TABLE_IDS = {
    "users": settings.BASEROW_USERS_TABLE_ID,
    "roles": settings.BASEROW_ROLES_TABLE_ID,
    "menus": settings.BASEROW_MENU_TABLE_ID,
    "permissions": settings.BASEROW_PERMISSIONS_TABLE_ID,
    "role_permissions": settings.BASEROW_ROLE_PERMISSION_TABLE_ID,
    "user_roles": settings.BASEROW_USER_ROLE_TABLE_ID,
    "audit": settings.BASEROW_AUDIT_PERMISSION_TABLE_ID,
    "user_features": settings.BASEROW_USER_FEATURES_TABLE_ID,
    "institution_configs": settings.BASEROW_CONFIG_TABLE_ID,
}
