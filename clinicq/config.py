# clinicq/config.py
import os
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Application Settings
    APP_NAME: str = "Clinic Queue API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    DOCS_ENABLED: bool = True

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = int(os.environ.get("PORT", 8000))

    # Database Settings
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "sqlite:///./clinicq.db")

    # CORS Settings
    ALLOWED_ORIGINS: str = os.environ.get("ALLOWED_ORIGINS", "*")

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Queue / ETA
    DEFAULT_CONSULTATION_MINUTES: int = 15
    MIN_VALID_CONSULTATION_MINUTES: int = 5
    MAX_VALID_CONSULTATION_MINUTES: int = 60
    EXCLUDE_ESTIMATED_FROM_AVERAGE: bool = True
    NEXT_IN_LINE_NOTIFY_COUNT: int = 2

    # Read retries for queue progress queries
    PROGRESS_READ_ATTEMPTS: int = 3
    PROGRESS_RETRY_BACKOFF_SECONDS: float = 0.2

    # Wallet
    WALLET_STARTING_BALANCE: Decimal = Decimal("1000.00")
    CURRENCY_SYMBOL: str = "₹"

    def _split_csv(self, value: str) -> List[str]:
        if value is None:
            return []
        value = value.strip()
        if value == "":
            return []
        return [item.strip() for item in value.split(",")]

    @property
    def allowed_origins_list(self) -> List[str]:
        return self._split_csv(self.ALLOWED_ORIGINS)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings: Settings = get_settings()
