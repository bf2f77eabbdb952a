"""TOML configuration loader."""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

DEFAULT_APP_ID = "tarubaskibas-v1"
PLACEHOLDER_API_KEY = "PLACEHOLDER_KEY"

# TOML key -> environment variable
_FIREBASE_ENV = {
    "api_key": "FIREBASE_API_KEY",
    "auth_domain": "FIREBASE_AUTH_DOMAIN",
    "project_id": "FIREBASE_PROJECT_ID",
    "storage_bucket": "FIREBASE_STORAGE_BUCKET",
    "messaging_sender_id": "FIREBASE_MESSAGING_SENDER_ID",
    "app_id": "FIREBASE_APP_ID",
    "initial_auth_token": "FIREBASE_INITIAL_AUTH_TOKEN",
}

# camelCase keys used by a web-style FIREBASE_CONFIG JSON blob
_FIREBASE_JSON_KEYS = {
    "apiKey": "api_key",
    "authDomain": "auth_domain",
    "projectId": "project_id",
    "storageBucket": "storage_bucket",
    "messagingSenderId": "messaging_sender_id",
    "appId": "app_id",
}


@dataclass
class FirebaseConfig:
    api_key: str = ""
    auth_domain: str = ""
    project_id: str = ""
    storage_bucket: str = ""
    messaging_sender_id: str = ""
    app_id: str = ""
    initial_auth_token: str = ""


@dataclass
class StorageConfig:
    app_id: str = DEFAULT_APP_ID
    local_db_path: str = "~/.config/tarubaskibas/local.db"
    retry_attempts: int = 3
    retry_base_delay: float = 0.5


@dataclass
class GeminiVisionConfig:
    api_key: str = ""
    model: str = "gemini-2.5-flash"


@dataclass
class ClaudeVisionConfig:
    api_key: str = ""
    model: str = "claude-sonnet-4-5-20250929"


@dataclass
class VisionConfig:
    backend: str = "gemini"
    gemini: GeminiVisionConfig = field(default_factory=GeminiVisionConfig)
    claude: ClaudeVisionConfig = field(default_factory=ClaudeVisionConfig)


@dataclass
class AppConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    firebase: FirebaseConfig | None = None
    vision: VisionConfig = field(default_factory=VisionConfig)


def _firebase_from_env_json() -> dict[str, str]:
    """Read the FIREBASE_CONFIG JSON blob, if any.

    A malformed blob is logged and ignored so startup can continue in
    local mode.
    """
    blob = os.environ.get("FIREBASE_CONFIG", "")
    if not blob:
        return {}
    try:
        data = json.loads(blob)
    except json.JSONDecodeError:
        logger.error("FIREBASE_CONFIG is not valid JSON; ignoring it")
        return {}
    if not isinstance(data, dict):
        logger.error("FIREBASE_CONFIG must be a JSON object; ignoring it")
        return {}
    return {
        snake: str(data[camel])
        for camel, snake in _FIREBASE_JSON_KEYS.items()
        if data.get(camel)
    }


def _load_firebase(section: dict) -> FirebaseConfig | None:
    # FIREBASE_CONFIG (a full JSON object) wins over individual keys.
    values = _firebase_from_env_json()
    for key, env_name in _FIREBASE_ENV.items():
        if values.get(key):
            continue
        values[key] = str(section.get(key, "") or os.environ.get(env_name, ""))

    if not any(v for k, v in values.items() if k != "initial_auth_token"):
        return None
    return FirebaseConfig(**values)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a TOML file.

    Falls back to defaults if no path is given or the file doesn't exist.
    Credentials can be supplied via environment variables.
    """
    raw: dict = {}

    if path is not None:
        p = Path(path)
        if p.exists():
            if tomllib is None:
                raise ImportError(
                    "tomli is required on Python < 3.11: pip install tomli"
                )
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    sto = raw.get("storage", {})
    fb = raw.get("firebase", {})
    vis = raw.get("vision", {})

    gemini_cfg = vis.get("gemini", {})
    claude_cfg = vis.get("claude", {})

    # Resolve API keys: config file → environment variable
    gemini_api_key = (
        gemini_cfg.get("api_key", "")
        or os.environ.get("GEMINI_API_KEY", "")
        or os.environ.get("API_KEY", "")
    )
    claude_api_key = claude_cfg.get("api_key", "") or os.environ.get(
        "ANTHROPIC_API_KEY", ""
    )

    app_id = sto.get("app_id", "") or os.environ.get(
        "TARUBASKIBAS_APP_ID", DEFAULT_APP_ID
    )

    return AppConfig(
        storage=StorageConfig(
            app_id=app_id,
            local_db_path=sto.get(
                "local_db_path", "~/.config/tarubaskibas/local.db"
            ),
            retry_attempts=sto.get("retry_attempts", 3),
            retry_base_delay=sto.get("retry_base_delay", 0.5),
        ),
        firebase=_load_firebase(fb),
        vision=VisionConfig(
            backend=vis.get("backend", "gemini"),
            gemini=GeminiVisionConfig(
                api_key=gemini_api_key,
                model=gemini_cfg.get("model", "gemini-2.5-flash"),
            ),
            claude=ClaudeVisionConfig(
                api_key=claude_api_key,
                model=claude_cfg.get("model", "claude-sonnet-4-5-20250929"),
            ),
        ),
    )
