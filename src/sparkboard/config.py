# src/sparkboard/config.py

"""Pipeline settings, read from SPARKBOARD_* environment variables and a local .env.

- One Settings object per process, built at import time; nothing here needs secrets.
- Components never read the environment themselves: they receive a PipelineConfig
  (and tuning values) at construction.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "SPARKBOARD"

_N = TypeVar("_N", int, float)

# Process environment wins over .env entries.
load_dotenv(override=False)


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _raw(name: str) -> str | None:
    """Stripped value, or None when unset or blank."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v.strip()


def _env(name: str, default: str = "") -> str:
    v = _raw(name)
    return default if v is None else v


def _env_number(name: str, default: _N, cast: Callable[[str], _N]) -> _N:
    v = _raw(name)
    if v is None:
        return default
    try:
        return cast(v)
    except ValueError:
        logger.warning("Ignoring %s=%r: not a valid %s, using %s", name, v, cast.__name__, default)
        return default


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


def _env_float(name: str, default: float) -> float:
    return _env_number(name, default, float)


def _env_path(name: str, default: Path) -> Path:
    v = _raw(name)
    return default if v is None else Path(v).expanduser()


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """
    Names of the collaborators a component talks to.

    - table_name: item table (single-table model)
    - queue_url: notification queue; its dead-letter queue is "<queue_url>-dlq"
    - directory_id: user directory partition
    - delivery_topic: delivery endpoint ("log://..." or an http(s) URL)
    """

    table_name: str
    queue_url: str
    directory_id: str
    delivery_topic: str

    @property
    def dead_letter_queue_url(self) -> str:
        return f"{self.queue_url}-dlq"


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Collaborator names ----
    table_name: str
    queue_url: str
    directory_id: str
    delivery_topic: str
    frontend_url: str

    # ---- Reconciliation job ----
    reconcile_interval_seconds: float
    scan_page_size: int
    job_time_budget_seconds: float

    # ---- Notification consumer ----
    batch_size: int
    batch_wait_seconds: float
    visibility_timeout_seconds: float
    max_receive_count: int
    poll_interval_seconds: float

    # ---- Announcement fan-out ----
    announcement_user_cap: int
    directory_page_size: int
    fanout_batch_size: int
    fanout_delay_seconds: float

    # ---- Time budgets ----
    delivery_timeout_seconds: float
    directory_timeout_seconds: float

    def pipeline_config(self) -> PipelineConfig:
        return PipelineConfig(
            table_name=self.table_name,
            queue_url=self.queue_url,
            directory_id=self.directory_id,
            delivery_topic=self.delivery_topic,
        )

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "sparkboard")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/sparkboard"))
        db_path = _env_path(_k("DB_PATH"), data_dir / "sparkboard.sqlite3")

        table_name = _env(_k("TABLE_NAME"), "sparkboard_items")
        queue_url = _env(_k("QUEUE_URL"), "sparkboard-notifications")
        directory_id = _env(_k("DIRECTORY_ID"), "sparkboard-users")
        delivery_topic = _env(_k("DELIVERY_TOPIC"), "log://notifications")
        frontend_url = _env(_k("FRONTEND_URL"), "https://sparkboard.example.com")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            db_path=db_path,
            table_name=table_name,
            queue_url=queue_url,
            directory_id=directory_id,
            delivery_topic=delivery_topic,
            frontend_url=frontend_url,
            reconcile_interval_seconds=_env_float(_k("RECONCILE_INTERVAL_SECONDS"), 60.0),
            scan_page_size=_env_int(_k("SCAN_PAGE_SIZE"), 100),
            job_time_budget_seconds=_env_float(_k("JOB_TIME_BUDGET_SECONDS"), 50.0),
            batch_size=_env_int(_k("BATCH_SIZE"), 10),
            batch_wait_seconds=_env_float(_k("BATCH_WAIT_SECONDS"), 5.0),
            visibility_timeout_seconds=_env_float(_k("VISIBILITY_TIMEOUT_SECONDS"), 300.0),
            max_receive_count=_env_int(_k("MAX_RECEIVE_COUNT"), 3),
            poll_interval_seconds=_env_float(_k("POLL_INTERVAL_SECONDS"), 1.0),
            announcement_user_cap=_env_int(_k("ANNOUNCEMENT_USER_CAP"), 500),
            directory_page_size=_env_int(_k("DIRECTORY_PAGE_SIZE"), 60),
            fanout_batch_size=_env_int(_k("FANOUT_BATCH_SIZE"), 10),
            fanout_delay_seconds=_env_float(_k("FANOUT_DELAY_SECONDS"), 0.1),
            delivery_timeout_seconds=_env_float(_k("DELIVERY_TIMEOUT_SECONDS"), 10.0),
            directory_timeout_seconds=_env_float(_k("DIRECTORY_TIMEOUT_SECONDS"), 20.0),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
