"""Storage backend base class and mode enum."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from ..models import InventoryItem, UserProfile

InventoryCallback = Callable[["list[InventoryItem]"], None]
Unsubscribe = Callable[[], None]


class StorageMode(str, Enum):
    UNINITIALIZED = "uninitialized"
    REMOTE = "remote"
    LOCAL = "local"


class StorageBackend(ABC):
    """Per-user inventory and profile persistence.

    Snapshots handed to subscribers are always sorted ascending by
    expiry date.
    """

    @abstractmethod
    def subscribe_inventory(
        self,
        user_id: str,
        callback: InventoryCallback,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        """Deliver the current collection now and after every change."""
        ...

    @abstractmethod
    async def add_item(self, user_id: str, item: InventoryItem) -> str:
        """Persist a new item and return its assigned id."""
        ...

    @abstractmethod
    async def update_item(
        self, user_id: str, item_id: str, fields: dict[str, Any]
    ) -> bool:
        """Merge wire-format fields into an item.

        Returns:
            False if no item with ``item_id`` exists.
        """
        ...

    @abstractmethod
    async def delete_item(self, user_id: str, item_id: str) -> None:
        """Remove an item. Deleting a missing id is not an error."""
        ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile | None:
        ...

    @abstractmethod
    async def save_profile(self, user_id: str, profile: UserProfile) -> None:
        ...

    def close(self) -> None:
        pass
