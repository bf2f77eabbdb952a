"""Personal pantry tracker with photo scanning and spoken expiry dates."""

from .config import AppConfig, FirebaseConfig, StorageConfig, VisionConfig, load_config
from .dates import (
    ExpiryBucket,
    ExpiryStatus,
    classify_expiry,
    expiring_within,
    parse_iso_date,
    resolve_voice_date,
)
from .errors import (
    AnalysisError,
    AuthenticationError,
    ConfigurationError,
    InvalidDateError,
    InvalidItemError,
    StorageUnavailableError,
    StreamError,
    TarubaskibasError,
)
from .inventory import InventoryService, export_items
from .models import LOCAL_GUEST, AuthUser, InventoryItem, ItemSource, UserProfile
from .storage import StorageContext, StorageMode, create_storage
from .vision import ProductAnalysis, VisionBackend, create_backend

__all__ = [
    "resolve_voice_date",
    "classify_expiry",
    "expiring_within",
    "parse_iso_date",
    "ExpiryBucket",
    "ExpiryStatus",
    "InventoryItem",
    "ItemSource",
    "UserProfile",
    "AuthUser",
    "LOCAL_GUEST",
    "StorageContext",
    "StorageMode",
    "create_storage",
    "InventoryService",
    "export_items",
    "VisionBackend",
    "ProductAnalysis",
    "create_backend",
    "AppConfig",
    "FirebaseConfig",
    "StorageConfig",
    "VisionConfig",
    "load_config",
    "TarubaskibasError",
    "ConfigurationError",
    "AuthenticationError",
    "StreamError",
    "StorageUnavailableError",
    "InvalidDateError",
    "InvalidItemError",
    "AnalysisError",
]
