# file: assistmate/config.py

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    db_password = os.getenv("DB_PASSWORD")
    if not db_password:
        return "sqlite+aiosqlite:///./assistmate.db"

    db_user = os.getenv("DB_USER")
    db_host = os.getenv("DB_HOST", "localhost")
    db_port = os.getenv("DB_PORT", "5432")
    db_name = os.getenv("DB_NAME")
    return f"postgresql+asyncpg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


@dataclass(frozen=True)
class Settings:
    database_url: str = field(default_factory=_database_url)
    environment: str = field(default_factory=lambda: os.getenv("ENVIRONMENT", "production"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    firebase_credentials: str = field(
        default_factory=lambda: os.getenv("FIREBASE_CREDENTIALS", "serviceAccountKey.json")
    )
    default_search_radius_km: float = field(
        default_factory=lambda: float(os.getenv("DEFAULT_SEARCH_RADIUS_KM", "10"))
    )
    nearby_result_limit: int = field(default_factory=lambda: int(os.getenv("NEARBY_RESULT_LIMIT", "20")))
    chat_join_requires_participant: bool = field(
        default_factory=lambda: _env_bool("CHAT_JOIN_REQUIRES_PARTICIPANT", True)
    )
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def safe_database_url(self) -> str:
        if "@" not in self.database_url:
            return self.database_url
        scheme, rest = self.database_url.split("://", 1)
        credentials, host = rest.split("@", 1)
        user = credentials.split(":", 1)[0]
        return f"{scheme}://{user}:****@{host}"


settings = Settings()
