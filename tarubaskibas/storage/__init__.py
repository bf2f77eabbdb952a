"""Storage layer: Firestore or on-device persistence behind one interface."""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

from .base import StorageBackend, StorageMode
from .channel import SubscriberChannel
from .context import RemoteConnector, StorageContext
from .local import LocalBackend, LocalKeyValueStore

if TYPE_CHECKING:
    from ..config import AppConfig, FirebaseConfig

__all__ = [
    "StorageMode",
    "StorageBackend",
    "StorageContext",
    "SubscriberChannel",
    "LocalBackend",
    "LocalKeyValueStore",
    "create_storage",
]


def _connect_remote(firebase: FirebaseConfig, *, app_id: str, retry_attempts: int, retry_base_delay: float):
    from .remote import connect_remote

    return connect_remote(
        firebase,
        app_id=app_id,
        retry_attempts=retry_attempts,
        retry_base_delay=retry_base_delay,
    )


def create_storage(
    config: AppConfig, connect: RemoteConnector | None = None
) -> StorageContext:
    """Create a storage context and decide its mode from configuration."""
    local = LocalBackend(LocalKeyValueStore(config.storage.local_db_path))
    context = StorageContext(local, app_id=config.storage.app_id)
    if connect is None:
        connect = partial(
            _connect_remote,
            app_id=config.storage.app_id,
            retry_attempts=config.storage.retry_attempts,
            retry_base_delay=config.storage.retry_base_delay,
        )
    context.initialize(config.firebase, connect=connect)
    return context
