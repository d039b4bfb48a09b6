# src/sparkboard/core/state.py

from __future__ import annotations

from dataclasses import dataclass

from ..config import PipelineConfig, Settings
from ..items.item_store import ItemStore
from ..notifications.directory_store import DirectoryStore
from ..notifications.dispatcher import NotificationDispatcher
from ..notifications.queue_store import QueueStore
from .ports import DeliveryChannel


@dataclass(slots=True)
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Settings
    config: PipelineConfig

    item_store: ItemStore
    queue: QueueStore
    directory: DirectoryStore
    channel: DeliveryChannel
    dispatcher: NotificationDispatcher
