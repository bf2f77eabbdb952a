"""Cloud Firestore backend with real-time inventory subscriptions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from google.api_core import exceptions as gexc

from ..errors import InvalidItemError, StreamError
from ..models import InventoryItem, UserProfile, sort_by_expiry
from .auth import FirebaseAuthenticator
from .base import InventoryCallback, StorageBackend, Unsubscribe

if TYPE_CHECKING:
    from ..config import FirebaseConfig

logger = logging.getLogger(__name__)

_TRANSIENT = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
)


def _snapshot_to_items(docs) -> list[InventoryItem]:
    items: list[InventoryItem] = []
    for doc in docs:
        try:
            items.append(InventoryItem.from_dict(doc.to_dict() or {}, item_id=doc.id))
        except (InvalidItemError, TypeError, ValueError):
            logger.warning("Skipping unreadable Firestore document %s", doc.id)
    return sort_by_expiry(items)


class FirestoreBackend(StorageBackend):
    """Documents live under ``artifacts/<app_id>/users/<uid>/...``."""

    def __init__(
        self,
        client,
        app_id: str,
        credentials=None,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        watch_poll_interval: float = 1.0,
    ) -> None:
        self._client = client
        self._app_id = app_id
        self._credentials = credentials
        self._retry_attempts = max(1, retry_attempts)
        self._retry_base_delay = retry_base_delay
        self._watch_poll_interval = watch_poll_interval
        # (watch, on_error) for every open inventory stream.
        self._watches: list[tuple[Any, Callable[[Exception], None] | None]] = []
        self._monitor: asyncio.Task | None = None

    def authorize(self, id_token: str | None) -> None:
        """Attach the signed-in user's ID token to outgoing requests."""
        if self._credentials is not None and id_token:
            self._credentials.token = id_token

    def _inventory(self, user_id: str):
        return self._client.collection(
            "artifacts", self._app_id, "users", user_id, "inventory"
        )

    def _profile(self, user_id: str):
        return self._client.document(
            "artifacts", self._app_id, "users", user_id, "profile", "data"
        )

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking client call, retrying transient errors with backoff."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.to_thread(fn, *args, **kwargs)
            except _TRANSIENT as e:
                if attempt >= self._retry_attempts:
                    raise
                delay = self._retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    "Firestore call failed (%s), retry %d/%d in %.1fs",
                    e, attempt, self._retry_attempts - 1, delay,
                )
                await asyncio.sleep(delay)

    def subscribe_inventory(
        self,
        user_id: str,
        callback: InventoryCallback,
        on_error: Callable[[Exception], None] | None = None,
    ) -> Unsubscribe:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        def dispatch(fn, *args) -> None:
            # Watch callbacks arrive on a background thread.
            if loop is None:
                fn(*args)
            else:
                loop.call_soon_threadsafe(fn, *args)

        def on_snapshot(docs, changes, read_time) -> None:
            try:
                items = _snapshot_to_items(docs)
            except Exception as e:
                if on_error is not None:
                    dispatch(on_error, StreamError(f"Inventory stream failed: {e}"))
                return
            dispatch(callback, items)

        try:
            watch = self._inventory(user_id).on_snapshot(on_snapshot)
        except gexc.GoogleAPICallError as e:
            if on_error is not None:
                on_error(StreamError(f"Could not open inventory stream: {e}"))
            return lambda: None
        entry = (watch, on_error)
        self._watches.append(entry)
        if loop is not None and (self._monitor is None or self._monitor.done()):
            self._monitor = loop.create_task(self._watch_streams())

        def unsubscribe() -> None:
            if entry in self._watches:
                self._watches.remove(entry)
                watch.unsubscribe()
            if not self._watches:
                self._stop_monitor()

        return unsubscribe

    def _reap_stopped_watches(self) -> None:
        """Report streams the SDK closed on its own, e.g. after an RPC failure."""
        for entry in list(self._watches):
            watch, on_error = entry
            if entry not in self._watches or getattr(watch, "is_active", True):
                continue
            self._watches.remove(entry)
            logger.warning("Firestore inventory stream stopped unexpectedly")
            if on_error is not None:
                on_error(StreamError("Inventory stream closed by the server"))

    async def _watch_streams(self) -> None:
        # The SDK closes a failed watch on its own thread without telling
        # the snapshot callback.
        while self._watches:
            await asyncio.sleep(self._watch_poll_interval)
            self._reap_stopped_watches()

    def _stop_monitor(self) -> None:
        if self._monitor is not None and not self._monitor.done():
            self._monitor.cancel()
        self._monitor = None

    async def add_item(self, user_id: str, item: InventoryItem) -> str:
        _, doc_ref = await self._call(
            self._inventory(user_id).add, item.to_dict(include_id=False)
        )
        return doc_ref.id

    async def update_item(
        self, user_id: str, item_id: str, fields: dict[str, Any]
    ) -> bool:
        try:
            await self._call(self._inventory(user_id).document(item_id).update, fields)
        except gexc.NotFound:
            return False
        return True

    async def delete_item(self, user_id: str, item_id: str) -> None:
        await self._call(self._inventory(user_id).document(item_id).delete)

    async def get_profile(self, user_id: str) -> UserProfile | None:
        try:
            snap = await self._call(self._profile(user_id).get)
        except (gexc.GoogleAPICallError, gexc.RetryError) as e:
            logger.error("Could not read profile for %s: %s", user_id, e)
            return None
        if not snap.exists:
            return None
        data = snap.to_dict() or {}
        last_update = data.get("lastUpdate")
        if isinstance(last_update, datetime):
            data["lastUpdate"] = last_update.isoformat()
        return UserProfile.from_dict(data)

    async def save_profile(self, user_id: str, profile: UserProfile) -> None:
        from google.cloud import firestore

        data = {**profile.to_dict(), "lastUpdate": firestore.SERVER_TIMESTAMP}
        await self._call(self._profile(user_id).set, data)

    def close(self) -> None:
        self._stop_monitor()
        for watch, _ in self._watches:
            watch.unsubscribe()
        self._watches.clear()
        self._client.close()


def connect_remote(
    firebase: FirebaseConfig,
    *,
    app_id: str,
    retry_attempts: int = 3,
    retry_base_delay: float = 0.5,
) -> tuple[FirestoreBackend, FirebaseAuthenticator]:
    """Build the Firestore client and the matching authenticator.

    Raises:
        ImportError: If google-cloud-firestore is not installed.
    """
    try:
        from google.cloud import firestore
        from google.oauth2.credentials import Credentials
    except ImportError:
        raise ImportError(
            "google-cloud-firestore is required for remote storage: "
            "pip install google-cloud-firestore"
        ) from None

    # Token is filled in after sign-in.
    credentials = Credentials(token=None)
    client = firestore.Client(project=firebase.project_id, credentials=credentials)
    backend = FirestoreBackend(
        client,
        app_id=app_id,
        credentials=credentials,
        retry_attempts=retry_attempts,
        retry_base_delay=retry_base_delay,
    )
    authenticator = FirebaseAuthenticator(
        api_key=firebase.api_key,
        custom_token=firebase.initial_auth_token,
    )
    return backend, authenticator
