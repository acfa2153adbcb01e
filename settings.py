import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "storefront"
    auth_secret: str = "change-me"
    token_max_age: int = 60 * 60 * 24 * 7  # 7 days
    cookie_secure: bool = False
    related_products_limit: int = 8
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_json: bool = False
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_name=os.getenv("DATABASE_NAME", cls.database_name),
            auth_secret=os.getenv("AUTH_SECRET", cls.auth_secret),
            token_max_age=_int("TOKEN_MAX_AGE", cls.token_max_age),
            cookie_secure=_bool("COOKIE_SECURE"),
            related_products_limit=max(1, _int("RELATED_PRODUCTS_LIMIT", cls.related_products_limit)),
            cors_origins=origins or ["*"],
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            log_json=_bool("LOG_JSON"),
            admin_email=os.getenv("ADMIN_EMAIL") or None,
            admin_password=os.getenv("ADMIN_PASSWORD") or None,
            port=_int("PORT", cls.port),
        )
