"""Static configuration for topicbridge.

All user-editable settings (channel, admins, bridge limits, retry policy,
default flags, logging) live in a single JSON file for quick edits without
touching Python. Secrets stay in the environment (.env).
"""

import json
import os

from core.config import BridgeConfig, RetryConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite database.
DB_PATH = os.path.join(os.path.dirname(__file__), "topicbridge.db")

CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Destination side: the forum supergroup and who may run admin commands.
_telegram = _CONFIG.get("telegram", {})
CHANNEL_ID = _telegram.get("channel_id")
ADMIN_IDS = frozenset(int(value) for value in _telegram.get("admin_ids", []))

# Bridge limits and timings; anything omitted falls back to BridgeConfig.
BRIDGE = _CONFIG.get("bridge", {})
RETRY = _CONFIG.get("retry", {})

# Default values for the runtime flags; persisted values win once set.
DEFAULT_SETTINGS = {key: bool(value) for key, value in _CONFIG.get("settings", {}).items()}

# "module:callable" returning an object that satisfies SourceClientPort.
SOURCE_CLIENT_FACTORY = _CONFIG.get("source", {}).get("client_factory")
SOURCE_OPTIONS = _CONFIG.get("source", {}).get("options", {})

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})


def bridge_config(channel_id: int) -> BridgeConfig:
    """Build the core BridgeConfig from the loaded JSON sections."""

    retry = RetryConfig(**{key: RETRY[key] for key in ("attempts", "timeout_seconds", "backoff_seconds") if key in RETRY})
    known = set(BridgeConfig.__dataclass_fields__) - {"channel_id", "admin_ids", "retry"}
    options = {key: value for key, value in BRIDGE.items() if key in known}
    temp_dir = options.get("temp_dir", "temp")
    if not os.path.isabs(temp_dir):
        options["temp_dir"] = os.path.join(PROJECT_ROOT, temp_dir)
    return BridgeConfig(channel_id=channel_id, admin_ids=ADMIN_IDS, retry=retry, **options)
