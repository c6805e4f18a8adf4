import os
from dataclasses import dataclass
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Database settings
    db_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    db_timeout: float = float(os.getenv("LIBRARY_DB_TIMEOUT", "5.0"))  # seconds waiting for the write lock

    # Circulation rules
    daily_fine_rate: Decimal = Decimal(os.getenv("DAILY_FINE_RATE", "2.00"))

    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "University Library Circulation")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _flag("DEBUG", "False")


settings = Settings()
