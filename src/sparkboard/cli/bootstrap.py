# src/sparkboard/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (item store, queue, directory,
  delivery channel, dispatcher).
"""

from __future__ import annotations

import logging

from ..config import Settings, get_settings
from ..core.state import AppState
from ..items.item_store import ItemStore
from ..notifications.delivery import build_delivery_channel
from ..notifications.directory_store import DirectoryStore
from ..notifications.dispatcher import DispatcherOptions, NotificationDispatcher
from ..notifications.queue_store import QueueStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings: Settings | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)
    config = settings.pipeline_config()

    item_store = ItemStore(settings.db_path, table_name=config.table_name)
    queue = QueueStore(
        settings.db_path,
        config.queue_url,
        max_receive_count=settings.max_receive_count,
        visibility_timeout=settings.visibility_timeout_seconds,
    )
    directory = DirectoryStore(settings.db_path, config.directory_id)
    channel = build_delivery_channel(config.delivery_topic, timeout_seconds=settings.delivery_timeout_seconds)
    dispatcher = NotificationDispatcher(
        item_store,
        directory,
        channel,
        options=DispatcherOptions.from_settings(settings),
    )

    logger.info(
        "State ready table=%s queue=%s directory=%s topic=%s",
        config.table_name,
        config.queue_url,
        config.directory_id,
        config.delivery_topic,
    )
    return AppState(
        settings=settings,
        config=config,
        item_store=item_store,
        queue=queue,
        directory=directory,
        channel=channel,
        dispatcher=dispatcher,
    )
