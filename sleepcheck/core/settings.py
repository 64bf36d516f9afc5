"""App settings: loaded from environment variables with defaults."""

import os
from typing import List, Optional
from dotenv import load_dotenv
from sleepcheck.core.constants import SSE_KEEPALIVE_SECONDS as _DEFAULT_SSE_KEEPALIVE

load_dotenv()


class Settings:
    # Unset: events are kept in memory (single kiosk or tests)
    DATABASE_URL: Optional[str] = os.getenv("DB_CONNECTION_STRING") or None

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]
    CORS_EXTRA_ORIGINS: str = os.getenv("CORS_EXTRA_ORIGINS", "")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Calendar day boundaries for the per-child-per-day event logs
    FACILITY_TIMEZONE: str = os.getenv("FACILITY_TIMEZONE", "America/Los_Angeles")

    SSE_KEEPALIVE_SECONDS: int = int(
        os.getenv("SSE_KEEPALIVE_SECONDS", str(_DEFAULT_SSE_KEEPALIVE))
    )

    # Generate keys with: npx web-push generate-vapid-keys
    VAPID_PUBLIC_KEY: str = os.getenv("VAPID_PUBLIC_KEY", "")
    VAPID_PRIVATE_KEY: str = os.getenv("VAPID_PRIVATE_KEY", "")
    VAPID_EMAIL: str = os.getenv("VAPID_EMAIL", "admin@sleepcheck.app")


settings = Settings()
