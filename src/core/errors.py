"""Error taxonomy shared by the core and the adapters.

Adapters translate library exceptions into these types so the core only ever
reasons about bridge-level failures.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the bridging engine."""


class ConfigurationError(BridgeError):
    """Missing or placeholder credentials; the bridge stays disabled."""


class NetworkError(BridgeError):
    """A call to either network client failed.

    ``transient`` marks failures worth retrying (timeouts, flood waits,
    dropped connections) as opposed to permanent rejections.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class MediaError(BridgeError):
    """Download, transcode or upload of a media payload failed."""


class NotFoundError(BridgeError):
    """No thread mapping or message pair exists for the requested target."""


class AuthorizationError(BridgeError):
    """An administrative command came from a caller outside the admin list."""
