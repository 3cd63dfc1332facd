"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    SNAPSHOT_CACHE_TTL_MINUTES: int
    SIMULADO_PASSING_SCORE: float
    MINUTES_PER_QUESTION: int
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.SNAPSHOT_CACHE_TTL_MINUTES = int(os.getenv("SNAPSHOT_CACHE_TTL_MINUTES", "15"))
        self.SIMULADO_PASSING_SCORE = float(os.getenv("SIMULADO_PASSING_SCORE", "50"))
        self.MINUTES_PER_QUESTION = int(os.getenv("MINUTES_PER_QUESTION", "2"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.SNAPSHOT_CACHE_TTL_MINUTES < 0:
            raise RuntimeError("SNAPSHOT_CACHE_TTL_MINUTES must be >= 0")
        if self.MINUTES_PER_QUESTION < 0:
            raise RuntimeError("MINUTES_PER_QUESTION must be >= 0")


def audit_log_dir() -> Path:
    """Directory for the audit jsonl file; read on every call so tests can redirect it."""
    raw = os.getenv("AUDIT_LOG_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return BASE / "data" / "audit"


settings = Settings()
