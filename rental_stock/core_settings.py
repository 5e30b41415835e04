from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "rental_stock"
    POSTGRES_USER: str = "rental_stock"
    POSTGRES_PASSWORD: str = "rental_stock"
    # Full SQLAlchemy URL; wins over the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None

    SERVICE_NAME: str = "rental-stock-service"
    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    AVAILABILITY_CACHE_TTL_SECONDS: float = 5.0
    AVAILABILITY_CACHE_SIZE: int = 1024
    READ_RETRY_ATTEMPTS: int = 3
    READ_RETRY_DELAY_SECONDS: float = 0.1
    SERIAL_PREFIX_LENGTH: int = 3

    SEED_DEFAULT_CATEGORIES: bool = False
    RUN_MIGRATIONS_ON_STARTUP: bool = True

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
