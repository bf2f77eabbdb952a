"""Tests for inventory workflows on local storage."""

import json
from datetime import date
from unittest.mock import AsyncMock

import pytest

from tarubaskibas.errors import InvalidDateError, InvalidItemError
from tarubaskibas.inventory import InventoryService, export_filename, export_items
from tarubaskibas.models import LOCAL_GUEST, AuthUser, InventoryItem, ItemSource, UserProfile
from tarubaskibas.storage import LocalBackend, LocalKeyValueStore, StorageContext
from tarubaskibas.vision import DUAL_SHOT_PROMPT, QUICK_SCAN_PROMPT, ProductAnalysis


@pytest.fixture
def storage(tmp_path):
    local = LocalBackend(LocalKeyValueStore(tmp_path / "local.db"))
    ctx = StorageContext(local)
    ctx.initialize(None, connect=lambda firebase: None)
    yield ctx
    local.close()


@pytest.fixture
def service(storage):
    return InventoryService(storage, LOCAL_GUEST, UserProfile(username="Ana"))


class TestAdd:
    @pytest.mark.asyncio
    async def test_add_item_stamps_owner_and_date(self, service):
        item = await service.add_item("  Milk ", "2024-02-01", quantity=2)

        assert item.id.startswith("local-")
        assert item.name == "Milk"
        assert item.user_id == LOCAL_GUEST.uid
        assert item.username == "Ana"
        assert item.added_date == date.today().isoformat()
        assert item.source is ItemSource.MANUAL
        assert [i.id for i in await service.snapshot()] == [item.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,quantity", [("", 1), ("   ", 1), ("Milk", 0)])
    async def test_invalid_items_rejected(self, service, name, quantity):
        with pytest.raises(InvalidItemError):
            await service.add_item(name, "2024-02-01", quantity=quantity)
        assert await service.snapshot() == []

    @pytest.mark.asyncio
    async def test_invalid_date_rejected(self, service):
        with pytest.raises(InvalidDateError):
            await service.add_item("Milk", "2024-02-30")

    @pytest.mark.asyncio
    async def test_add_from_voice(self, service):
        item = await service.add_from_voice(
            "Yogurt", "march 5th", now=date(2024, 6, 10)
        )
        assert item.expiry_date == "2025-03-05"

    @pytest.mark.asyncio
    async def test_add_from_analysis(self, service):
        item = await service.add_from_analysis(
            ProductAnalysis("Tofu", "2024-04-20"), source=ItemSource.QUICK_SCAN
        )
        assert item.source is ItemSource.QUICK_SCAN
        assert item.expiry_date == "2024-04-20"


class TestScan:
    @pytest.mark.asyncio
    async def test_dual_shot_uses_both_images(self, service):
        backend = AsyncMock()
        backend.analyze.return_value = ProductAnalysis("Rice", "2026-01-01")

        result = await service.scan(backend, ["label.jpg", "date.jpg"])

        assert result.product_name == "Rice"
        backend.analyze.assert_awaited_once_with(["label.jpg", "date.jpg"], DUAL_SHOT_PROMPT)
        assert await service.snapshot() == []

    @pytest.mark.asyncio
    async def test_quick_scan_uses_one_image(self, service):
        backend = AsyncMock()
        backend.analyze.return_value = ProductAnalysis("Rice", "2026-01-01")
        await service.scan(backend, ["one.jpg"], quick=True)
        backend.analyze.assert_awaited_once_with(["one.jpg"], QUICK_SCAN_PROMPT)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("images,quick", [(["a.jpg"], False), (["a.jpg", "b.jpg"], True)])
    async def test_wrong_image_count(self, service, images, quick):
        with pytest.raises(ValueError):
            await service.scan(AsyncMock(), images, quick=quick)


class TestQuantity:
    @pytest.mark.asyncio
    async def test_increment(self, service):
        item = await service.add_item("Eggs", "2024-03-01", quantity=2)
        assert await service.change_quantity(item, 1) == 3
        assert (await service.find(item.id)).quantity == 3

    @pytest.mark.asyncio
    async def test_reaching_zero_deletes(self, service):
        item = await service.add_item("Eggs", "2024-03-01", quantity=1)
        assert await service.change_quantity(item, -1) == 0
        assert await service.find(item.id) is None

    @pytest.mark.asyncio
    async def test_missing_item_raises(self, service):
        ghost = InventoryItem(name="Ghost", expiry_date="2024-03-01", quantity=2, id="local-x")
        with pytest.raises(InvalidItemError):
            await service.change_quantity(ghost, 1)

    @pytest.mark.asyncio
    async def test_unsaved_item_raises(self, service):
        with pytest.raises(InvalidItemError):
            await service.change_quantity(InventoryItem(name="x", expiry_date="2024-01-01"), 1)


class TestImportExport:
    @pytest.mark.asyncio
    async def test_export_round_trip_reowns_items(self, service, storage):
        await service.add_item("Milk", "2024-02-01")
        await service.add_item("Rice", "2025-01-01", quantity=3)
        exported = json.loads(export_items(await service.snapshot()))
        assert [r["name"] for r in exported] == ["Milk", "Rice"]

        other = InventoryService(storage, AuthUser(uid="u2"), UserProfile("Ben"))
        assert await other.import_items(exported) == 2

        items = await other.snapshot()
        assert {i.name for i in items} == {"Milk", "Rice"}
        for item in items:
            assert item.source is ItemSource.IMPORTED
            assert item.user_id == "u2"
            assert item.username == "Ben"
            assert item.id not in {r["id"] for r in exported}

    @pytest.mark.asyncio
    async def test_import_skips_bad_entries(self, service):
        records = [
            {"name": "Good", "expiryDate": "2024-05-01", "quantity": "2"},
            {"name": "No date"},
            {"expiryDate": "2024-05-01"},
            "not an object",
            {"name": "Bad qty", "expiryDate": "2024-05-01", "quantity": "lots"},
        ]
        assert await service.import_items(records) == 2

        items = {i.name: i for i in await service.snapshot()}
        assert items["Good"].quantity == 2
        assert items["Bad qty"].quantity == 1

    def test_export_filename(self):
        assert export_filename(date(2024, 1, 2)) == "tarubaskibas_inventory_2024-01-02.json"


@pytest.mark.asyncio
async def test_save_profile(service):
    profile = await service.save_profile(" Carla ")
    assert profile.username == "Carla"
    assert service.profile.last_update is not None
    with pytest.raises(ValueError):
        await service.save_profile("  ")
