"""Inventory workflows on top of the storage context."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import date
from typing import TYPE_CHECKING, Any, Iterable, Sequence

from .dates import parse_iso_date, resolve_voice_date
from .errors import InvalidItemError
from .models import AuthUser, InventoryItem, ItemSource, UserProfile

if TYPE_CHECKING:
    from .storage import StorageContext
    from .vision import ImageInput, ProductAnalysis, VisionBackend

logger = logging.getLogger(__name__)


def export_items(items: Iterable[InventoryItem]) -> str:
    """Serialize items as the JSON array used for export files."""
    return json.dumps([i.to_dict() for i in items], ensure_ascii=False, indent=2)


def export_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"tarubaskibas_inventory_{today.isoformat()}.json"


def _coerce_quantity(value: Any) -> int:
    try:
        quantity = int(float(value))
    except (TypeError, ValueError):
        return 1
    return quantity if quantity > 0 else 1


class InventoryService:
    """One signed-in user's view of the inventory.

    Owns the rule that an item whose quantity drops to zero is deleted
    rather than stored with a zero count.
    """

    def __init__(
        self,
        storage: StorageContext,
        user: AuthUser,
        profile: UserProfile | None = None,
    ) -> None:
        self._storage = storage
        self._user = user
        self._profile = profile or UserProfile()

    @property
    def user_id(self) -> str:
        return self._user.uid

    @property
    def profile(self) -> UserProfile:
        return self._profile

    def _build_item(
        self,
        name: str,
        expiry_date: str,
        quantity: int,
        source: ItemSource,
    ) -> InventoryItem:
        name = name.strip()
        if not name:
            raise InvalidItemError("Item name must not be empty")
        if quantity < 1:
            raise InvalidItemError("quantity must be at least 1")
        return InventoryItem(
            name=name,
            expiry_date=parse_iso_date(expiry_date).isoformat(),
            quantity=quantity,
            added_date=date.today().isoformat(),
            source=source,
            user_id=self.user_id,
            username=self._profile.username,
        )

    async def add_item(
        self,
        name: str,
        expiry_date: str,
        quantity: int = 1,
        source: ItemSource = ItemSource.MANUAL,
    ) -> InventoryItem:
        """Validate and store a new item.

        Raises:
            InvalidItemError: If the name is empty or quantity below 1.
            InvalidDateError: If ``expiry_date`` is not a calendar date.
        """
        item = self._build_item(name, expiry_date, quantity, source)
        item.id = await self._storage.add_inventory_item(self.user_id, item)
        logger.info("Added %s (%s) expiring %s", item.name, item.id, item.expiry_date)
        return item

    async def add_from_voice(
        self,
        name: str,
        spoken_date: str,
        quantity: int = 1,
        now: date | None = None,
    ) -> InventoryItem:
        expiry = resolve_voice_date(spoken_date, now)
        return await self.add_item(name, expiry, quantity, ItemSource.MANUAL)

    async def add_from_analysis(
        self,
        analysis: ProductAnalysis,
        source: ItemSource = ItemSource.AI,
        quantity: int = 1,
    ) -> InventoryItem:
        return await self.add_item(
            analysis.product_name, analysis.expiry_date, quantity, source
        )

    async def scan(
        self,
        backend: VisionBackend,
        images: Sequence[ImageInput],
        quick: bool = False,
    ) -> ProductAnalysis:
        """Run image analysis without saving anything.

        A dual-shot scan takes the label photo first and the date photo
        second; a quick scan takes a single photo.
        """
        from .vision import DUAL_SHOT_PROMPT, QUICK_SCAN_PROMPT

        if quick and len(images) != 1:
            raise ValueError("A quick scan takes exactly one image")
        if not quick and len(images) != 2:
            raise ValueError("A dual-shot scan takes a label image and a date image")
        prompt = QUICK_SCAN_PROMPT if quick else DUAL_SHOT_PROMPT
        return await backend.analyze(images, prompt)

    async def change_quantity(self, item: InventoryItem, delta: int) -> int:
        """Apply ``delta`` to an item's quantity.

        Returns:
            The new quantity; 0 means the item was deleted.
        """
        if item.id is None:
            raise InvalidItemError("Cannot change an item that has not been saved")
        new_quantity = item.quantity + delta
        if new_quantity <= 0:
            await self._storage.delete_inventory_item(self.user_id, item.id)
            return 0
        updated = await self._storage.update_inventory_item(
            self.user_id, item.id, {"quantity": new_quantity}
        )
        if not updated:
            raise InvalidItemError(f"Item {item.id} no longer exists")
        return new_quantity

    async def delete_item(self, item_id: str) -> None:
        await self._storage.delete_inventory_item(self.user_id, item_id)

    async def import_items(self, records: Iterable[Any]) -> int:
        """Add exported records to this user's inventory.

        Records without a name or a valid expiry date are skipped. Imported
        items are re-owned by the current user and re-stamped as added
        today.

        Returns:
            Number of items imported.
        """
        count = 0
        today = date.today().isoformat()
        for record in records:
            if not isinstance(record, dict):
                logger.warning("Skipping non-object import entry: %r", record)
                continue
            data = {
                **record,
                "quantity": _coerce_quantity(record.get("quantity")),
                "addedDate": today,
                "source": ItemSource.IMPORTED.value,
                "userId": self.user_id,
                "username": self._profile.username,
            }
            data.pop("id", None)
            try:
                item = InventoryItem.from_dict(data)
            except InvalidItemError as e:
                logger.warning("Skipping import entry: %s", e)
                continue
            await self._storage.add_inventory_item(self.user_id, item)
            count += 1
        logger.info("Imported %d items", count)
        return count

    async def snapshot(self, timeout: float = 10.0) -> list[InventoryItem]:
        """Read the current collection once, sorted by expiry date."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[list[InventoryItem]] = loop.create_future()

        def on_items(items: list[InventoryItem]) -> None:
            if not future.done():
                future.set_result(items)

        unsubscribe = self._storage.subscribe_to_inventory(self.user_id, on_items)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            unsubscribe()

    async def find(self, item_id: str) -> InventoryItem | None:
        for item in await self.snapshot():
            if item.id == item_id:
                return item
        return None

    async def save_profile(self, username: str) -> UserProfile:
        username = username.strip()
        if not username:
            raise ValueError("Username must not be empty")
        profile = UserProfile(username=username)
        await self._storage.save_user_profile(self.user_id, profile)
        self._profile = await self._storage.get_user_profile(self.user_id)
        return self._profile
