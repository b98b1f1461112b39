from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CATALOG_PATH = Path(__file__).parent / "data" / "catalog.json"
DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000"


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class Settings:
    sqlite_path: str = "/data/fandiag.db"
    redis_url: str = "redis://redis:6379/0"
    cache_ttl_seconds: int = 3600
    catalog_seed_path: str = str(DEFAULT_CATALOG_PATH)
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 24 * 60
    cors_origins: list[str] = field(default_factory=lambda: _split_origins(DEFAULT_CORS_ORIGINS))
    admin_username: str | None = None
    admin_password: str | None = None
    admin_email: str = "admin@localhost"
    max_selected_symptoms: int = 0
    log_level: str = "INFO"


def load_settings() -> Settings:
    env = os.environ
    return Settings(
        sqlite_path=env.get("SQLITE_PATH", "/data/fandiag.db"),
        redis_url=env.get("REDIS_URL", "redis://redis:6379/0"),
        cache_ttl_seconds=int(env.get("CACHE_TTL_SECONDS", "3600")),
        catalog_seed_path=env.get("CATALOG_SEED_PATH", str(DEFAULT_CATALOG_PATH)),
        jwt_secret=env.get("JWT_SECRET", "change-me"),
        jwt_expire_minutes=int(env.get("JWT_EXPIRE_MINUTES", str(24 * 60))),
        cors_origins=_split_origins(env.get("CORS_ORIGIN", DEFAULT_CORS_ORIGINS)),
        admin_username=env.get("ADMIN_USERNAME") or None,
        admin_password=env.get("ADMIN_PASSWORD") or None,
        admin_email=env.get("ADMIN_EMAIL", "admin@localhost"),
        max_selected_symptoms=int(env.get("MAX_SELECTED_SYMPTOMS", "0")),
        log_level=env.get("LOG_LEVEL", "INFO"),
    )
