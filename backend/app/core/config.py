from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Freight CRM Commission Engine"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./commission.db"

    # Redis (Celery broker + result backend)
    REDIS_URL: str = "redis://redis:6379/0"

    # Security - tokens are issued by the CRM auth service, we only verify them
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"

    # Commission scheme defaults (overridable via commission_scheme_config table)
    SCHEME_START_DATE: str = "2025-12-01"
    PENALTY_TRIAL_MONTHS: int = 3  # penalties are communicated, not deducted
    SCHEME_MIN_DURATION: int = 6
    SCHEME_MAX_DURATION: int = 12

    # Finance voucher API
    VOUCHER_API_URL: Optional[str] = None
    VOUCHER_API_KEY: Optional[str] = None
    VOUCHER_TIMEOUT: int = 15
    VOUCHER_PAYABLE_ACCOUNT: str = "payable — staff bonus"

    # Listing
    DEFAULT_PAGE_SIZE: int = 20

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
