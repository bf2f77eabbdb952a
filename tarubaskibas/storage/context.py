"""Storage context: one object owning the remote/local mode decision."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable

from ..config import DEFAULT_APP_ID, PLACEHOLDER_API_KEY
from ..errors import (
    AuthenticationError,
    ConfigurationError,
    StorageUnavailableError,
    StreamError,
)
from ..models import LOCAL_GUEST, AuthUser, InventoryItem, UserProfile, to_wire_fields
from .base import InventoryCallback, StorageBackend, StorageMode, Unsubscribe

if TYPE_CHECKING:
    from ..config import FirebaseConfig
    from .auth import FirebaseAuthenticator
    from .local import LocalBackend

logger = logging.getLogger(__name__)

LOCAL_AUTH_DELAY = 0.1

RemoteConnector = Callable[
    ["FirebaseConfig"], "tuple[StorageBackend, FirebaseAuthenticator]"
]


def validate_firebase_config(firebase: FirebaseConfig | None) -> FirebaseConfig:
    """Reject absent, incomplete or placeholder Firebase credentials.

    Raises:
        ConfigurationError: If the remote store cannot be used.
    """
    if firebase is None:
        raise ConfigurationError("No Firebase configuration found")
    if not firebase.api_key:
        raise ConfigurationError("Firebase api_key is empty")
    if firebase.api_key == PLACEHOLDER_API_KEY:
        raise ConfigurationError("Firebase api_key is a placeholder")
    if not firebase.project_id:
        raise ConfigurationError("Firebase project_id is empty")
    return firebase


class StorageContext:
    """CRUD and subscriptions over whichever backend is active.

    The mode is decided once by :meth:`initialize`. Afterwards the only
    transition is REMOTE → LOCAL, triggered by a failed sign-in or a
    broken inventory stream. Nothing ever switches back to REMOTE.
    """

    def __init__(self, local: LocalBackend, app_id: str = DEFAULT_APP_ID) -> None:
        self._local = local
        self._app_id = app_id
        self._remote: StorageBackend | None = None
        self._authenticator: FirebaseAuthenticator | None = None
        self._mode = StorageMode.UNINITIALIZED

    @property
    def mode(self) -> StorageMode:
        return self._mode

    @property
    def is_local(self) -> bool:
        return self._mode is StorageMode.LOCAL

    @property
    def app_id(self) -> str:
        return self._app_id

    @property
    def local(self) -> LocalBackend:
        return self._local

    def initialize(
        self, firebase: FirebaseConfig | None, connect: RemoteConnector
    ) -> StorageMode:
        """Pick the backend for the lifetime of this context.

        Any configuration problem or client construction failure selects
        local mode; nothing is raised.
        """
        if self._mode is not StorageMode.UNINITIALIZED:
            raise RuntimeError(f"Storage already initialized in {self._mode.value} mode")

        try:
            firebase = validate_firebase_config(firebase)
        except ConfigurationError as e:
            logger.info("%s; using local storage", e)
            self._mode = StorageMode.LOCAL
            return self._mode

        try:
            self._remote, self._authenticator = connect(firebase)
        except Exception as e:
            logger.warning("Firebase init failed, switching to local storage: %s", e)
            self._remote = None
            self._authenticator = None
            self._mode = StorageMode.LOCAL
            return self._mode

        self._mode = StorageMode.REMOTE
        logger.info("Using Firestore storage for app %s", self._app_id)
        return self._mode

    def fall_back_to_local(self, reason: str) -> None:
        """Switch permanently to local storage.

        Remote-only data is not migrated and becomes unreachable.
        """
        if self._mode is StorageMode.LOCAL:
            return
        logger.warning("Falling back to local storage: %s", reason)
        self._mode = StorageMode.LOCAL
        remote, self._remote = self._remote, None
        if remote is not None:
            try:
                remote.close()
            except Exception:
                logger.exception("Error while closing the remote store")
        if self._authenticator is not None:
            # Auth listeners see None, which they map to the local guest.
            self._authenticator.sign_out()

    def _backend(self) -> StorageBackend:
        if self._mode is StorageMode.LOCAL:
            return self._local
        if self._mode is StorageMode.UNINITIALIZED:
            raise StorageUnavailableError("Storage has not been initialized")
        if self._remote is None:
            raise StorageUnavailableError("Remote mode is active but the store client is not set")
        return self._remote

    # -- auth --------------------------------------------------------------

    async def sign_in(self) -> AuthUser:
        """Sign in to the remote store; a failure flips to local mode."""
        if self._mode is not StorageMode.REMOTE:
            return LOCAL_GUEST
        if self._authenticator is None:
            raise StorageUnavailableError("Remote mode is active but no authenticator is set")
        try:
            user = await self._authenticator.sign_in()
        except AuthenticationError as e:
            logger.error("Firebase sign-in failed: %s", e)
            self.fall_back_to_local(f"sign-in failed: {e}")
            return LOCAL_GUEST

        authorize = getattr(self._remote, "authorize", None)
        if authorize is not None:
            authorize(self._authenticator.id_token)
        return user

    def subscribe_to_auth(
        self, callback: Callable[[AuthUser | None], None]
    ) -> Unsubscribe:
        """Report the signed-in identity.

        In local mode the synthetic guest is delivered once after a short
        delay, so this must be called from a running event loop.
        """
        if self._mode is not StorageMode.REMOTE or self._authenticator is None:
            loop = asyncio.get_running_loop()
            handle = loop.call_later(LOCAL_AUTH_DELAY, callback, LOCAL_GUEST)
            return handle.cancel

        def on_auth(user: AuthUser | None) -> None:
            if user is None and self.is_local:
                callback(LOCAL_GUEST)
            else:
                callback(user)

        return self._authenticator.add_listener(on_auth)

    # -- inventory ---------------------------------------------------------

    def _on_stream_error(self, error: Exception) -> None:
        if not isinstance(error, StreamError):
            error = StreamError(str(error))
        logger.error("Firestore sync error: %s", error)
        self.fall_back_to_local(f"inventory stream failed: {error}")

    def subscribe_to_inventory(
        self, user_id: str, callback: InventoryCallback
    ) -> Unsubscribe:
        """Deliver the user's items now and after every change, sorted by expiry."""
        backend = self._backend()
        return backend.subscribe_inventory(
            user_id, callback, on_error=self._on_stream_error
        )

    async def add_inventory_item(self, user_id: str, item: InventoryItem) -> str:
        """Persist a new item.

        Returns:
            The id assigned by the backend.
        """
        return await self._backend().add_item(user_id, item)

    async def update_inventory_item(
        self, user_id: str, item_id: str, fields: dict[str, Any]
    ) -> bool:
        """Merge ``fields`` (attribute names, e.g. ``quantity``) into an item.

        Returns:
            True if the item was updated, False if no item has ``item_id``.

        Raises:
            InvalidItemError: If a field is unknown or its value invalid.
        """
        wire = to_wire_fields(fields)
        updated = await self._backend().update_item(user_id, item_id, wire)
        if not updated:
            logger.info("Update skipped, item %s not found for %s", item_id, user_id)
        return updated

    async def delete_inventory_item(self, user_id: str, item_id: str) -> None:
        await self._backend().delete_item(user_id, item_id)

    # -- profile -----------------------------------------------------------

    async def get_user_profile(self, user_id: str) -> UserProfile:
        profile = await self._backend().get_profile(user_id)
        return profile if profile is not None else UserProfile()

    async def save_user_profile(self, user_id: str, profile: UserProfile) -> None:
        """Overwrite the stored profile; the store stamps ``lastUpdate``."""
        await self._backend().save_profile(user_id, profile)

    async def aclose(self) -> None:
        if self._remote is not None:
            self._remote.close()
            self._remote = None
        if self._authenticator is not None:
            await self._authenticator.aclose()
        self._local.close()
