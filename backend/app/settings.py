from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_PUBLIC_EMAIL_DOMAINS = (
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "live.com",
    "icloud.com",
    "aol.com",
    "proton.me",
    "protonmail.com",
)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    duplicate_search_limit: int = 50
    duplicate_domain_limit: int = 5
    duplicate_escalation_threshold: int = 2
    duplicate_fuzzy_company_threshold: float = 0.7
    duplicate_exclude_own_records: bool = False
    duplicate_public_email_domains: tuple[str, ...] = DEFAULT_PUBLIC_EMAIL_DOMAINS
    recent_warnings_max_limit: int = 200


def load_settings() -> Settings:
    persistence_db_path = os.getenv(
        "PERSISTENCE_DB_PATH", "data/duplicate_guard.sqlite3"
    ).strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        duplicate_search_limit=max(1, min(500, _int_env("DUPLICATE_SEARCH_LIMIT", 50))),
        duplicate_domain_limit=max(0, min(50, _int_env("DUPLICATE_DOMAIN_LIMIT", 5))),
        duplicate_escalation_threshold=max(2, _int_env("DUPLICATE_ESCALATION_THRESHOLD", 2)),
        duplicate_fuzzy_company_threshold=max(
            0.1, min(1.0, _float_env("DUPLICATE_FUZZY_COMPANY_THRESHOLD", 0.7))
        ),
        duplicate_exclude_own_records=_bool_env("DUPLICATE_EXCLUDE_OWN_RECORDS", False),
        duplicate_public_email_domains=_list_env(
            "DUPLICATE_PUBLIC_EMAIL_DOMAINS", DEFAULT_PUBLIC_EMAIL_DOMAINS
        ),
        recent_warnings_max_limit=max(1, _int_env("RECENT_WARNINGS_MAX_LIMIT", 200)),
    )
