"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from core.errors import ConfigurationError

PLACEHOLDER_PREFIX = "YOUR_"


@dataclass(frozen=True)
class RetryConfig:
    """Timeout and bounded retry policy for outbound network calls."""

    attempts: int = 2
    timeout_seconds: float = 30.0
    backoff_seconds: float = 1.0


@dataclass(frozen=True)
class BridgeConfig:
    """Runtime knobs for the bridging engine."""

    channel_id: int
    admin_ids: frozenset[int] = field(default_factory=frozenset)
    temp_dir: str = "temp"
    dedup_window_seconds: float = 30.0
    presence_pause_seconds: float = 3.0
    read_receipt_delay_seconds: float = 1.0
    pairs_capacity: int = 5000
    pairs_ttl_seconds: float = 24 * 3600
    identity_cache_size: int = 2000
    max_file_bytes: int = 50 * 1024 * 1024
    queue_size: int = 1000
    drain_timeout_seconds: float = 10.0
    retry: RetryConfig = field(default_factory=RetryConfig)


def _is_placeholder(value: Optional[str]) -> bool:
    return not value or value.strip().upper().startswith(PLACEHOLDER_PREFIX)


def validate_credentials(bot_token: Optional[str], channel_id: Optional[str]) -> int:
    """Check destination credentials and return the parsed channel id.

    Raises ConfigurationError for missing, placeholder or malformed values.
    """

    if _is_placeholder(bot_token):
        raise ConfigurationError("Telegram bot token is missing or still a placeholder")
    if channel_id is None or _is_placeholder(str(channel_id)):
        raise ConfigurationError("telegram.channel_id is missing or still a placeholder")
    try:
        return int(channel_id)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"telegram.channel_id must be numeric, got {channel_id!r}") from exc
