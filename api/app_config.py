"""
Application configuration for the challenge set explorer.

The data folder holding the challenge set JSON files is determined by (in
order of priority):
1. CHALLENGE_EXPLORER_DATA environment variable
2. ./data in the current working directory, if it exists
3. Default platform-specific user data location (platformdirs)

View limits come from CHALLENGE_EXPLORER_MAX_VIEWS and
CHALLENGE_EXPLORER_VIEW_MAX_AGE_HOURS.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import platformdirs

APP_NAME = "challenge-set-explorer"

_DATA_ENV = "CHALLENGE_EXPLORER_DATA"
_LOG_LEVEL_ENV = "CHALLENGE_EXPLORER_LOG_LEVEL"
_CORS_ENV = "CHALLENGE_EXPLORER_CORS_ORIGINS"
_MAX_VIEWS_ENV = "CHALLENGE_EXPLORER_MAX_VIEWS"
_VIEW_MAX_AGE_ENV = "CHALLENGE_EXPLORER_VIEW_MAX_AGE_HOURS"

_DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]


@dataclass
class AppConfig:
    """Resolved runtime settings."""
    data_dir: Path
    log_level: str = "INFO"
    top_k_overlap: int = 15
    max_keywords: int = 50
    preview_size: int = 100
    max_views: int = 32
    view_max_age_hours: float = 12.0
    cors_origins: List[str] = field(default_factory=lambda: list(_DEFAULT_CORS_ORIGINS))

    @property
    def challenge_set_dir(self) -> Path:
        return self.data_dir / "challenge-set"

    @classmethod
    def from_env(cls) -> "AppConfig":
        cors = os.environ.get(_CORS_ENV)
        return cls(
            data_dir=_resolve_data_dir(),
            log_level=os.environ.get(_LOG_LEVEL_ENV, "INFO").upper(),
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()] if cors else list(_DEFAULT_CORS_ORIGINS),
            max_views=int(os.environ.get(_MAX_VIEWS_ENV, cls.max_views)),
            view_max_age_hours=float(os.environ.get(_VIEW_MAX_AGE_ENV, cls.view_max_age_hours)),
        )


def _resolve_data_dir() -> Path:
    # 1. Environment variable override
    env_dir = os.environ.get(_DATA_ENV)
    if env_dir:
        return Path(env_dir)

    # 2. Local data folder next to the working directory
    local = Path.cwd() / "data"
    if local.is_dir():
        return local

    # 3. Default platform-specific location
    return Path(platformdirs.user_data_dir(APP_NAME)) / "data"


_app_config: Optional[AppConfig] = None


def get_app_config() -> AppConfig:
    """Return the process-wide configuration, resolving it on first use."""
    global _app_config
    if _app_config is None:
        _app_config = AppConfig.from_env()
    return _app_config


def reset_app_config() -> None:
    """Forget the resolved configuration so the next call re-reads the environment."""
    global _app_config
    _app_config = None
