# config.py
from __future__ import annotations

import logging
import os

# Render / local: set these in the environment
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data.db")
APP_SECRET = os.getenv("APP_SECRET", "change-me-to-a-long-random-secret")
TOKEN_ALGORITHM = "HS256"
TOKEN_TTL_MINUTES = int(os.getenv("TOKEN_TTL_MINUTES", str(60 * 24 * 7)))
SEED_CATEGORIES = os.getenv("SEED_CATEGORIES", "1") == "1"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
