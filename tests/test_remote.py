"""Tests for the Firestore backend (mocked client)."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as gexc

from tarubaskibas.config import FirebaseConfig
from tarubaskibas.errors import StreamError
from tarubaskibas.models import InventoryItem, ItemSource, UserProfile
from tarubaskibas.storage import LocalBackend, LocalKeyValueStore, StorageContext, StorageMode
from tarubaskibas.storage.remote import FirestoreBackend


def _backend(**kwargs):
    client = MagicMock()
    kwargs.setdefault("retry_base_delay", 0)
    return FirestoreBackend(client, app_id="app-x", **kwargs), client


def _doc(doc_id, name, expiry):
    doc = MagicMock()
    doc.id = doc_id
    doc.to_dict.return_value = {"name": name, "expiryDate": expiry, "quantity": 1}
    return doc


class TestCrud:
    @pytest.mark.asyncio
    async def test_add_item_returns_document_id(self):
        backend, client = _backend()
        collection = client.collection.return_value
        collection.add.return_value = (None, MagicMock(id="doc-1"))
        item = InventoryItem(name="Milk", expiry_date="2024-02-01", source=ItemSource.AI)

        assert await backend.add_item("u1", item) == "doc-1"

        client.collection.assert_called_with("artifacts", "app-x", "users", "u1", "inventory")
        stored = collection.add.call_args.args[0]
        assert stored["expiryDate"] == "2024-02-01"
        assert "id" not in stored

    @pytest.mark.asyncio
    async def test_update_item(self):
        backend, client = _backend()
        doc_ref = client.collection.return_value.document.return_value

        assert await backend.update_item("u1", "doc-1", {"quantity": 5}) is True
        client.collection.return_value.document.assert_called_with("doc-1")
        doc_ref.update.assert_called_once_with({"quantity": 5})

    @pytest.mark.asyncio
    async def test_update_missing_document(self):
        backend, client = _backend()
        doc_ref = client.collection.return_value.document.return_value
        doc_ref.update.side_effect = gexc.NotFound("gone")

        assert await backend.update_item("u1", "doc-1", {"quantity": 5}) is False

    @pytest.mark.asyncio
    async def test_delete_item(self):
        backend, client = _backend()
        await backend.delete_item("u1", "doc-1")
        client.collection.return_value.document.return_value.delete.assert_called_once()

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self):
        backend, client = _backend(retry_attempts=3)
        doc_ref = client.collection.return_value.document.return_value
        doc_ref.update.side_effect = [gexc.ServiceUnavailable("busy"), None]

        assert await backend.update_item("u1", "doc-1", {"quantity": 2}) is True
        assert doc_ref.update.call_count == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self):
        backend, client = _backend(retry_attempts=2)
        doc_ref = client.collection.return_value.document.return_value
        doc_ref.delete.side_effect = gexc.ServiceUnavailable("down")

        with pytest.raises(gexc.ServiceUnavailable):
            await backend.delete_item("u1", "doc-1")
        assert doc_ref.delete.call_count == 2

    @pytest.mark.asyncio
    async def test_permanent_error_propagates_without_retry(self):
        backend, client = _backend(retry_attempts=3)
        collection = client.collection.return_value
        collection.add.side_effect = gexc.PermissionDenied("rules")

        with pytest.raises(gexc.PermissionDenied):
            await backend.add_item("u1", InventoryItem(name="x", expiry_date="2024-01-01"))
        assert collection.add.call_count == 1


class TestProfile:
    @pytest.mark.asyncio
    async def test_missing_profile(self):
        backend, client = _backend()
        client.document.return_value.get.return_value = MagicMock(exists=False)

        assert await backend.get_profile("u1") is None
        client.document.assert_called_with(
            "artifacts", "app-x", "users", "u1", "profile", "data"
        )

    @pytest.mark.asyncio
    async def test_profile_with_server_timestamp(self):
        backend, client = _backend()
        snap = MagicMock(exists=True)
        snap.to_dict.return_value = {
            "username": "Ana",
            "lastUpdate": datetime(2024, 1, 1, tzinfo=timezone.utc),
        }
        client.document.return_value.get.return_value = snap

        profile = await backend.get_profile("u1")
        assert profile.username == "Ana"
        assert profile.last_update == "2024-01-01T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_read_failure_returns_none(self):
        backend, client = _backend()
        client.document.return_value.get.side_effect = gexc.PermissionDenied("rules")
        assert await backend.get_profile("u1") is None

    @pytest.mark.asyncio
    async def test_save_profile_overwrites(self):
        backend, client = _backend()
        await backend.save_profile("u1", UserProfile(username="Ana"))

        data = client.document.return_value.set.call_args.args[0]
        assert data["username"] == "Ana"
        assert "lastUpdate" in data


class TestSubscription:
    @pytest.mark.asyncio
    async def test_snapshot_is_sorted_and_delivered_on_loop(self):
        backend, client = _backend()
        watch = MagicMock()
        collection = client.collection.return_value
        collection.on_snapshot.return_value = watch
        received = []

        unsubscribe = backend.subscribe_inventory("u1", received.append)
        handler = collection.on_snapshot.call_args.args[0]
        handler(
            [_doc("b", "Rice", "2024-09-01"), _doc("a", "Milk", "2024-02-01")],
            [],
            None,
        )
        await asyncio.sleep(0)

        assert [[i.id for i in snap] for snap in received] == [["a", "b"]]

        unsubscribe()
        watch.unsubscribe.assert_called_once()

    @pytest.mark.asyncio
    async def test_stream_failure_reports_error(self):
        backend, client = _backend()
        collection = client.collection.return_value
        errors = []
        backend.subscribe_inventory("u1", lambda items: None, on_error=errors.append)
        handler = collection.on_snapshot.call_args.args[0]

        broken = MagicMock()
        broken.to_dict.side_effect = RuntimeError("stream reset")
        handler([broken], [], None)
        await asyncio.sleep(0)

        assert len(errors) == 1
        assert isinstance(errors[0], StreamError)
        backend.close()

    @pytest.mark.asyncio
    async def test_watch_closed_by_sdk_reports_error(self):
        backend, client = _backend(watch_poll_interval=0)
        watch = MagicMock(is_active=True)
        client.collection.return_value.on_snapshot.return_value = watch
        errors = []
        backend.subscribe_inventory("u1", lambda items: None, on_error=errors.append)

        watch.is_active = False
        for _ in range(5):
            await asyncio.sleep(0)

        assert len(errors) == 1
        assert isinstance(errors[0], StreamError)
        watch.unsubscribe.assert_not_called()

    @pytest.mark.asyncio
    async def test_active_watch_is_left_alone(self):
        backend, client = _backend(watch_poll_interval=0)
        client.collection.return_value.on_snapshot.return_value = MagicMock(is_active=True)
        errors = []
        unsubscribe = backend.subscribe_inventory("u1", lambda items: None, on_error=errors.append)

        for _ in range(5):
            await asyncio.sleep(0)
        unsubscribe()

        assert errors == []

    def test_close_stops_watches(self):
        backend, client = _backend()
        watch = MagicMock()
        client.collection.return_value.on_snapshot.return_value = watch
        backend.subscribe_inventory("u1", lambda items: None)

        backend.close()

        watch.unsubscribe.assert_called_once()
        client.close.assert_called_once()


def test_authorize_sets_token():
    credentials = MagicMock()
    backend = FirestoreBackend(MagicMock(), app_id="app-x", credentials=credentials)
    backend.authorize("id-token")
    assert credentials.token == "id-token"


@pytest.mark.asyncio
async def test_closed_watch_switches_context_to_local(tmp_path):
    backend, client = _backend(watch_poll_interval=0)
    watch = MagicMock(is_active=True)
    client.collection.return_value.on_snapshot.return_value = watch
    local = LocalBackend(LocalKeyValueStore(tmp_path / "local.db"))
    ctx = StorageContext(local, app_id="app-x")
    ctx.initialize(
        FirebaseConfig(api_key="AIza-real", project_id="pantry"),
        connect=lambda firebase: (backend, MagicMock()),
    )
    ctx.subscribe_to_inventory("u1", lambda items: None)
    assert ctx.mode is StorageMode.REMOTE

    watch.is_active = False
    for _ in range(5):
        await asyncio.sleep(0)

    assert ctx.mode is StorageMode.LOCAL
    client.close.assert_called_once()
    local.close()
