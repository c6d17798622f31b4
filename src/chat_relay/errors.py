"""
chat-relay error types.

StorageError and EnrichmentError are contained by the component that hits them;
none of them is fatal to the server process.
"""

from typing import Any, Optional


class ChatRelayError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class StorageError(ChatRelayError):
    """The message log is unreachable or rejected a read/write."""

    def __init__(self, message: str, code: str = "storage_error", details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class EnrichmentError(ChatRelayError):
    """A per-connection metadata lookup failed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__("enrichment_error", message, {"field": field} if field else None)
        self.field = field


class ConnectionError(ChatRelayError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)
