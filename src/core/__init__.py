"""Core domain package for topicbridge.

Core contains thread routing, identity, correlation, media and forwarding
logic without any Telegram or storage-specific code, keeping the bridge
portable across client libraries.
"""
