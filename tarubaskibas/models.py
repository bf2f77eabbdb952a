"""Data models for inventory items, profiles and signed-in identities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .dates import parse_iso_date
from .errors import InvalidDateError, InvalidItemError


class ItemSource(str, Enum):
    """How an item entered the inventory."""

    AI = "AI"
    MANUAL = "MANUAL"
    QUICK_SCAN = "QUICK_SCAN"
    IMPORTED = "IMPORTED"


@dataclass
class InventoryItem:
    """A single product on the shelf.

    ``id`` is assigned by the storage backend and is ``None`` until the
    item has been persisted.
    """

    name: str
    expiry_date: str       # YYYY-MM-DD
    quantity: int = 1
    added_date: str = ""   # YYYY-MM-DD
    source: ItemSource = ItemSource.MANUAL
    user_id: str = ""
    username: str = ""
    id: str | None = None

    def to_dict(self, include_id: bool = True) -> dict[str, Any]:
        """Serialize using the camelCase keys of the stored JSON format."""
        data: dict[str, Any] = {
            "name": self.name,
            "expiryDate": self.expiry_date,
            "quantity": self.quantity,
            "addedDate": self.added_date,
            "source": self.source.value,
            "userId": self.user_id,
            "username": self.username,
        }
        if include_id and self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], item_id: str | None = None) -> InventoryItem:
        """Build an item from a stored or imported record.

        Raises:
            InvalidItemError: If ``name`` or ``expiryDate`` is missing or
                the expiry date is not a calendar date.
        """
        name = data.get("name")
        expiry = data.get("expiryDate")
        if not name or not expiry:
            raise InvalidItemError(f"Item needs a name and an expiryDate: {data!r}")
        try:
            parse_iso_date(expiry)
        except InvalidDateError as e:
            raise InvalidItemError(str(e)) from e

        try:
            source = ItemSource(data.get("source", ItemSource.MANUAL.value))
        except ValueError:
            source = ItemSource.IMPORTED

        return cls(
            name=str(name),
            expiry_date=str(expiry),
            quantity=int(data.get("quantity", 1)),
            added_date=str(data.get("addedDate", "")),
            source=source,
            user_id=str(data.get("userId", "")),
            username=str(data.get("username", "")),
            id=item_id if item_id is not None else data.get("id"),
        )


@dataclass
class UserProfile:
    username: str = "Guest"
    last_update: str | None = None  # ISO datetime, set by the store on save

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"username": self.username}
        if self.last_update is not None:
            data["lastUpdate"] = self.last_update
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserProfile:
        return cls(
            username=str(data.get("username") or "Guest"),
            last_update=data.get("lastUpdate"),
        )


@dataclass(frozen=True)
class AuthUser:
    """The identity fields consumers need from a signed-in user."""

    uid: str
    is_anonymous: bool = True
    display_name: str | None = None
    provider: str = "firebase"
    extra: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


LOCAL_GUEST = AuthUser(
    uid="local-guest-user",
    is_anonymous=True,
    display_name="Local Guest",
    provider="local",
)


_WIRE_KEYS = {
    "name": "name",
    "expiry_date": "expiryDate",
    "quantity": "quantity",
    "added_date": "addedDate",
    "source": "source",
    "user_id": "userId",
    "username": "username",
}


def to_wire_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Translate a partial update keyed by attribute name to stored keys.

    Raises:
        InvalidItemError: On an unknown field, a negative quantity or an
            expiry date that is not a calendar date.
    """
    wire: dict[str, Any] = {}
    for key, value in fields.items():
        if key not in _WIRE_KEYS:
            raise InvalidItemError(f"Cannot update field {key!r}")
        if key == "quantity":
            try:
                value = int(value)
            except (TypeError, ValueError) as e:
                raise InvalidItemError(f"quantity must be a whole number: {value!r}") from e
            if value < 0:
                raise InvalidItemError("quantity must not be negative")
        elif key == "expiry_date":
            try:
                parse_iso_date(value)
            except InvalidDateError as e:
                raise InvalidItemError(str(e)) from e
        elif key == "source":
            value = ItemSource(value).value
        wire[_WIRE_KEYS[key]] = value
    return wire


def sort_by_expiry(items: list[InventoryItem]) -> list[InventoryItem]:
    """Return items ordered ascending by expiry date."""
    return sorted(items, key=lambda i: parse_iso_date(i.expiry_date))
