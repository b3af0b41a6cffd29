# src/floorball_ingest/config.py

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from floorball_ingest.errors import ConfigError

LOG_FILE                                = "data/logs/ingest.log"
LOG_LEVEL                               = "INFO"    # Options: DEBUG, INFO, WARNING, ERROR, CRITICAL
DB_NAME                                 = "data/floorball.db"
PROTOCOL_CACHE_DIR                      = "data/protocol_cache"

SOURCE_ROOT_URL                         = "https://www.floorball.lv/lv/"
PROTOCOL_URL_TEMPLATE                   = "https://www.floorball.lv/lv/{season_year}/chempionats/vv/proto/{numeric_id}"
DEFAULT_SEASON                          = "2025-26"

REQUEST_TIMEOUT                         = 20        # Seconds per HTTP request
REQUEST_RETRIES                         = 3         # Retries after the first attempt (429/5xx and connection errors)
REQUEST_BACKOFF_FACTOR                  = 0.75      # urllib3 backoff: factor * 2 ** (retry - 1) seconds
REQUEST_MIN_GAP                         = 1.0       # Seconds between consecutive requests to the source site

INGEST_RECENT_DAYS                      = 7         # Finished matches newer than this are always re-ingested
BACKFILL_SCAN_DAYS                      = 14        # Default trailing window of the reconciliation scan
FAILURE_RATIO_THRESHOLD                 = 0.2       # failed / attempted at or above this exits non-zero
SUMMARY_SAMPLE_SIZE                     = 10        # External ids listed per status in run summaries

REQUIRED_ENV                            = ("LFS_USER_AGENT", "LFS_COOKIE")


@dataclass(frozen=True)
class EnvConfig:
    user_agent:         str
    cookie:             str
    db_name:            str = DB_NAME
    season:             str = DEFAULT_SEASON
    points_command:     Optional[str] = None
    debug_save_html:    bool = False


_cached_env: Optional[EnvConfig] = None


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value or not value.strip():
        raise ConfigError(f"Missing required environment variable: {name}")
    return value.strip()


def _optional_env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def parse_bool(value: Optional[str]) -> bool:
    if not value:
        return False
    return value.strip().lower() in ("1", "true", "yes", "on")


def get_env() -> EnvConfig:
    """
    Load environment configuration once per process.
    Values from a .env file in the working directory are merged in, but never
    override variables already present in the environment.
    """
    global _cached_env
    if _cached_env is not None:
        return _cached_env

    load_dotenv(os.path.join(os.getcwd(), ".env"))

    user_agent, cookie = (_require_env(name) for name in REQUIRED_ENV)
    _cached_env = EnvConfig(
        user_agent          = user_agent,
        cookie              = cookie,
        db_name             = _optional_env("FLOORBALL_DB_PATH") or DB_NAME,
        season              = _optional_env("FLOORBALL_SEASON") or DEFAULT_SEASON,
        points_command      = _optional_env("POINTS_COMMAND"),
        debug_save_html     = parse_bool(os.environ.get("DEBUG_SAVE_HTML")),
    )
    return _cached_env


def reset_env_cache() -> None:
    global _cached_env
    _cached_env = None
