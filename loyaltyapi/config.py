from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="loyaltyapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Loyalty Points API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "loyalty"
    POSTGRES_SCHEMA: str = "public"

    # 설정 시 POSTGRES_* 조합 대신 그대로 사용
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Internal (scheduler / admin) bearer token
    AUTH_TOKEN: str = ""

    # Point Management
    POINTS_ISSUE_RATE: Decimal = Decimal("10")  # $1 당 적립 포인트
    POINTS_REDEEM_RATE: Decimal = Decimal("500")  # $1 가치 사용 시 필요한 포인트
    QR_CODE_PREFIX: str = "QR_"
    POINTS_LEDGER_MAX_PAGE_SIZE: int = 100

    # Settlement
    SETTLEMENT_CURRENCY: str = "usd"
    SETTLEMENT_SCHEDULER_ENABLED: bool = True
    SETTLEMENT_CRON_HOUR: int = 2
    SETTLEMENT_CRON_MINUTE: int = 0
    SETTLEMENT_TIMEZONE: str = "UTC"
    SETTLEMENT_MAX_WORKERS: int = 1  # 1이면 가맹점을 순차 처리

    # Payment processor (Stripe)
    STRIPE_SECRET_KEY: str = ""
    STRIPE_API_BASE_URL: str = "https://api.stripe.com"
    PAYMENT_TIMEOUT_SECONDS: float = 30.0

    # Redis (points:completed 이벤트 발행)
    REDIS_ENABLED: bool = True
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None


settings = Settings()
