from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Any, ClassVar
import json
from pathlib import Path
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", case_sensitive=True)

    API_V1_STR: str = "/api/v1"

    # Database URL
    # Use an absolute path so running the app from different directories
    # (e.g., repo root or backend/) always resolves the same DB file.
    BASE_DIR: ClassVar[Path] = Path(__file__).resolve().parents[2]
    SQLALCHEMY_DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'gigflow.db'}"

    # CORS origins
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Default currency code used when an opportunity omits one
    DEFAULT_CURRENCY: str = "USD"

    # Negotiation
    NEGOTIATION_RESPONSE_HOURS: int = 24
    NEGOTIATION_MAX_ROUNDS: int = 3
    NEGOTIATION_FEE_TOLERANCE_PCT: int = 20

    # Contracts
    CONTRACT_SIGNING_HOURS: int = 48
    CONTRACT_DOCUMENT_DIR: str = str(BASE_DIR / "contracts")
    DOCUMENT_STORE_URL: str = ""

    # Booking execution
    COMPLETION_CONFIRMATION_HOURS: int = 72
    DEPOSIT_DUE_DAYS: int = 7
    BALANCE_DUE_DAYS_BEFORE_EVENT: int = 1

    # Trust score decay
    TRUST_INACTIVITY_GRACE_DAYS: int = 90
    TRUST_DECAY_PERIOD_DAYS: int = 30
    TRUST_DECAY_CAP: int = 10

    # Payment gateway
    PAYMENT_GATEWAY_URL: str = "https://example.com"
    PAYMENT_GATEWAY_API_KEY: str = ""
    PAYMENT_GATEWAY_MAX_RETRIES: int = 3
    PAYMENT_GATEWAY_BACKOFF_SECONDS: float = 0.5
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_WEBHOOK_SECRET: str = ""

    # Notification outbox delivery
    NOTIFICATION_WEBHOOK_URL: str = ""
    NOTIFICATION_MAX_ATTEMPTS: int = 5

    # Periodic sweeps
    ENABLE_MAINTENANCE_LOOP: bool = True
    MAINTENANCE_INTERVAL_SECONDS: int = 300

    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    def split_origins(cls, v: Any) -> list[str]:
        """Parse comma-separated or JSON list of origins from environment."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("DEFAULT_CURRENCY", mode="before")
    def upper_currency(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("PAYMENT_GATEWAY_URL", "DOCUMENT_STORE_URL", "NOTIFICATION_WEBHOOK_URL", mode="before")
    def strip_url(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().rstrip("/")
        return v


def load_settings() -> "Settings":
    return Settings(_env_file=os.getenv("ENV_FILE", str(Path(__file__).resolve().parents[3] / ".env")))


settings = load_settings()
