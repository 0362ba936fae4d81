import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 10)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def BOT_TOKEN(self) -> str:
        return os.getenv("BOT_TOKEN", "").strip()

    @property
    def BOT_MODE(self) -> str:
        """polling | webhook | disabled"""
        return os.getenv("BOT_MODE", "polling").strip().lower()

    @property
    def BASE_URL(self) -> str:
        """Public URL of this service; the Telegram webhook is registered under it."""
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def TELEGRAM_WEBHOOK_SECRET(self) -> str:
        return os.getenv("TELEGRAM_WEBHOOK_SECRET", "")

    @property
    def ADMIN_ID(self) -> int:
        raw = os.getenv("ADMIN_ID", "").strip()
        if not raw:
            return 0
        try:
            return int(raw)
        except ValueError:
            raise ValueError("ADMIN_ID must be an integer Telegram id")

    @property
    def MINI_APP_URL(self) -> str:
        return os.getenv("MINI_APP_URL", "http://localhost:8000")

    @property
    def MINI_APP_ADMIN_URL(self) -> str:
        return os.getenv("MINI_APP_ADMIN_URL", f"{self.MINI_APP_URL.rstrip('/')}/admin-show-catalog")

    @property
    def KASPI_PAY_URL(self) -> str:
        return os.getenv("KASPI_PAY_URL", "https://pay.kaspi.kz/pay/e96vsxbs").strip()

    @property
    def KASPI_CARD_NUMBER(self) -> str:
        return os.getenv("KASPI_CARD_NUMBER", "4400 4301 1234 5678")

    @property
    def KASPI_CARD_HOLDER(self) -> str:
        return os.getenv("KASPI_CARD_HOLDER", "AGRO Club")

    @property
    def SUBSCRIPTION_FEE(self) -> int:
        return self._get_int("SUBSCRIPTION_FEE", 3000)

    @property
    def DELIVERY_PRICE(self) -> int:
        return self._get_int("DELIVERY_PRICE", 1000)

    @property
    def SWEEP_INTERVAL_SECONDS(self) -> int:
        return self._get_int("SWEEP_INTERVAL_SECONDS", 24 * 60 * 60)

    @property
    def SHUTDOWN_GRACE_SECONDS(self) -> int:
        return self._get_int("SHUTDOWN_GRACE_SECONDS", 10)

    @property
    def REDIS_URL(self) -> str:
        return os.getenv("REDIS_URL", "").strip()

    @property
    def SESSION_TTL_SECONDS(self) -> int:
        return self._get_int("SESSION_TTL_SECONDS", 7 * 24 * 60 * 60)

    @property
    def STORES_SEED(self) -> str:
        """code|name|address entries separated by ';', inserted at startup when missing."""
        return os.getenv("STORES_SEED", "")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000")


settings = Settings()
