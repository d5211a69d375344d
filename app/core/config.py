from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration, read from the environment and ``.env``."""

    # Postgres
    POSTGRES_USER: str = 'voucher_user'
    POSTGRES_PASSWORD: str = 'voucher_pass'
    POSTGRES_DB: str = 'voucher_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # full override, e.g. sqlite+aiosqlite
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # Redis, used as Celery broker and result backend
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Invoice PDF storage
    MINIO_HOST: str = 'minio'
    MINIO_PORT: int = 9000
    MINIO_ACCESS_KEY: str = 'minioadmin'
    MINIO_SECRET_KEY: str = 'minioadmin'
    MINIO_BUCKET_NAME: str = 'vouchers'
    MINIO_USE_SSL: bool = False
    STORAGE_PUBLIC_BASE_URL: str = 'http://localhost:9000'
    MAX_FILE_SIZE: int = 20 * 1024 * 1024
    ALLOWED_INVOICE_FILE_TYPES: List[str] = ["application/pdf"]

    # Listings
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    # Outgoing invoice mails
    EMAIL_SMTP_SERVER: str = 'smtp.gmail.com'
    EMAIL_SMTP_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USERNAME: str = ''
    EMAIL_PASSWORD: str = ''
    EMAIL_FROM: str = ''
    EMAIL_FROM_NAME: str = 'Voucher Platform'

    # Settlement
    INVOICE_TAX_RATE: int = 19
    INVOICE_TIMEZONE: str = 'Europe/Berlin'
    INVOICE_CREATION_TIMEOUT: float = 60.0

    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["*"]

    model_config = SettingsConfigDict(
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", "MINIO_USE_SSL", "EMAIL_USE_TLS", mode="before")
    @classmethod
    def parse_flag(cls, v):
        # .env files written by hand often quote their booleans
        if isinstance(v, str):
            return v.strip().strip('"\'').lower() in ("true", "1", "yes", "on")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def async_database_url(self) -> str:
        return self.DATABASE_URL or (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def minio_endpoint(self) -> str:
        return f"{self.MINIO_HOST}:{self.MINIO_PORT}"

    @property
    def storage_internal_base_url(self) -> str:
        """Base URL the storage client sees; replaced by the public one in persisted links."""
        scheme = "https" if self.MINIO_USE_SSL else "http"
        return f"{scheme}://{self.minio_endpoint}"


settings = Settings()
