import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        jwt_secret: Optional[str],
        allowed_origins: list[str],
        timezone: str,
        cookie_secure: bool,
        invite_requires_admin: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.jwt_secret = jwt_secret
        self.allowed_origins = allowed_origins
        self.timezone = timezone
        self.cookie_secure = cookie_secure
        self.invite_requires_admin = invite_requires_admin
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("WADAKE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("WADAKE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "wadake.db"
        database_url = f"sqlite:///{default_db}"
    # An empty secret counts as unset.
    jwt_secret = os.getenv("WADAKE_JWT_SECRET") or None
    origins = os.getenv("WADAKE_ALLOWED_ORIGINS", "http://localhost:3000")
    allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]
    return Settings(
        database_url=database_url,
        jwt_secret=jwt_secret,
        allowed_origins=allowed_origins,
        timezone=os.getenv("WADAKE_TIMEZONE", "Asia/Tokyo"),
        cookie_secure=_env_flag("WADAKE_COOKIE_SECURE"),
        invite_requires_admin=_env_flag("WADAKE_INVITE_REQUIRES_ADMIN"),
        log_level=os.getenv("WADAKE_LOG_LEVEL", "INFO").upper(),
    )
