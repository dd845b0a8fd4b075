from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


# Secrets that must never reach a production deployment
WEAK_SECRET_KEYS = {
    "development-secret-key-change-in-production",
    "changeme",
    "secret",
    "secret-key",
    "password",
    "test",
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/billboard_ops"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Auth
    SECRET_KEY: str = "development-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120
    REFRESH_TOKEN_EXPIRE_MINUTES: int = 1440

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Operating fee ledger
    OPERATING_FEE_START_CONTRACT: int = 1086  # fee tracking begins at this contract
    FEE_PAYMENT_ENTRY_TYPES: list[str] = ["receipt", "account_payment", "payment"]
    RECENT_PAYMENTS_LIMIT: int = 10

    # Removal tasks
    REMOVAL_LOOKBACK_DAYS: int = 90
    RENTED_BILLBOARD_STATUSES: list[str] = ["rented", "Rented", "مؤجر", "محجوز"]
    AVAILABLE_BILLBOARD_STATUS: str = "available"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    ENABLE_DOCS: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @model_validator(mode="after")
    def validate_production_security(self) -> "Settings":
        """Reject weak secrets and force DEBUG off outside development."""
        if self.is_production:
            if self.SECRET_KEY in WEAK_SECRET_KEYS:
                raise ValueError("SECRET_KEY must be changed before deploying to production")
            if len(self.SECRET_KEY) < 32:
                raise ValueError("SECRET_KEY must be at least 32 characters in production")
            self.DEBUG = False
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT in ("production", "staging")

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo is only allowed in development (it can leak bound parameters)."""
        return self.DEBUG and not self.is_production

    @property
    def DOCS_ENABLED(self) -> bool:
        return self.ENABLE_DOCS and not self.is_production


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
