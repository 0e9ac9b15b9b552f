from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Full SQLAlchemy URL; takes precedence over the POSTGRES_* parts
    DATABASE_URL: Optional[str] = None

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    STRIPE_SECRET_KEY: str = ""
    CURRENCY: str = "usd"

    SHIPPING_FEE_CENTS: int = 6000
    FREE_SHIPPING_THRESHOLD_CENTS: int = 100000
    RESERVATION_TTL_MINUTES: int = 15
    MAX_LINE_QUANTITY: int = 99
    ORDER_NUMBER_PREFIX: str = "IG"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 10
    CONSUME_RESERVATIONS_ON_ORDER: bool = True

    REDIS_URL: Optional[str] = None
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 10

    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

@lru_cache
def get_settings() -> Settings:
    return Settings()
