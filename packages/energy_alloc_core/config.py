# packages/energy_alloc_core/config.py
"""
Environment-driven settings for the allocation core.

Values come from the process environment, with a `.env` file at the project
root loaded first when present.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")


class Config:
    LOG_LEVEL = os.getenv("ALLOC_LOG_LEVEL", "INFO").upper()
    LOG_FILE = os.getenv("ALLOC_LOG_FILE", "").strip()

    # "round" (half-up) or "floor" for proportional shares
    SHARE_ROUNDING = os.getenv("ALLOC_SHARE_ROUNDING", "round").strip().lower()

    DEFAULT_VERSION = int(os.getenv("ALLOC_DEFAULT_VERSION", "1"))
    METHOD_VERSION = os.getenv("ALLOC_METHOD_VERSION", "alloc-v1.0")

    def __repr__(self):
        return f"<Config rounding={self.SHARE_ROUNDING} method={self.METHOD_VERSION} log={self.LOG_LEVEL}>"


# Singleton
config = Config()
