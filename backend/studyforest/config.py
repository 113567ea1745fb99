"""Application settings and validation."""

import os
import re
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

BASE = Path(__file__).resolve().parent.parent

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:5173",
    "http://localhost:5174",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

CONCENTRATION_TIME_RE = re.compile(r"^\d{2}:[0-5]\d:[0-5]\d$")


class Settings:
    ENV: str
    DATABASE_URL: str
    SQL_ECHO: bool
    APP_TIMEZONE: str
    DB_SESSION_TIMEZONE: str
    ALLOW_DEV_CORS: bool
    CORS_ORIGINS: List[str]
    DEFAULT_CONCENTRATION_TIME: str
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
        self.APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Seoul")
        # offset pushed to server-side sessions (MySQL/PostgreSQL) on connect
        self.DB_SESSION_TIMEZONE = os.getenv("DB_SESSION_TIMEZONE", "+09:00")
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "false").lower() == "true"
        extra = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
        self.CORS_ORIGINS = DEFAULT_CORS_ORIGINS + extra
        self.DEFAULT_CONCENTRATION_TIME = os.getenv("DEFAULT_CONCENTRATION_TIME", "00:25:00")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        try:
            ZoneInfo(self.APP_TIMEZONE)
        except (ZoneInfoNotFoundError, ValueError):
            raise RuntimeError(f"APP_TIMEZONE is not a known timezone: {self.APP_TIMEZONE!r}")
        if not CONCENTRATION_TIME_RE.match(self.DEFAULT_CONCENTRATION_TIME):
            raise RuntimeError("DEFAULT_CONCENTRATION_TIME must look like HH:MM:SS")
        if self.ENV != "dev" and self.ALLOW_DEV_CORS:
            raise RuntimeError("ALLOW_DEV_CORS is only permitted when ENV=dev")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.APP_TIMEZONE)


settings = Settings()
