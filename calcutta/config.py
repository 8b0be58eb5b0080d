from __future__ import annotations

import logging
import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./calcutta.db")
COUNTDOWN_INTERVAL = float(os.getenv("COUNTDOWN_INTERVAL", "5"))
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "168"))
EXPIRY_SWEEP_SECONDS = float(os.getenv("EXPIRY_SWEEP_SECONDS", "0"))
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
    ).split(",")
    if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
