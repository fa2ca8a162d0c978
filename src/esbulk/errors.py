"""Exception hierarchy shared by the bulk loading workflow."""

from __future__ import annotations

from typing import Any, List, Optional


class BulkLoadError(RuntimeError):
    """Base class for every error that aborts a load run."""


class ConfigurationError(BulkLoadError):
    """Options are incomplete or inconsistent; raised before any request."""


class TransportError(BulkLoadError):
    """The server could not be reached after all retry attempts."""


class ProtocolError(BulkLoadError):
    """The server answered with a status the workflow cannot accept."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class BulkItemsError(ProtocolError):
    """A 2xx bulk response flagged errors on one or more items."""

    def __init__(self, message: str, items: Optional[List[Any]] = None) -> None:
        super().__init__(message, status=200)
        self.items = list(items or [])


class IndexDeletionTimeout(BulkLoadError):
    """The purged index was still present after the last existence probe."""


class IdentifierError(BulkLoadError):
    """A document ID could not be derived from the configured fields."""


class MissingIDFieldError(IdentifierError):
    pass


class IDConversionError(IdentifierError):
    pass


class DocumentDecodeError(BulkLoadError):
    """A line that must be inspected for its ID is not valid JSON."""


class BatchError(BulkLoadError):
    """A worker failed to flush a batch; wraps the underlying cause."""

    def __init__(self, worker: str, sequence: int, docs: List[str], cause: BaseException) -> None:
        first = docs[0] if docs else ""
        if len(first) > 200:
            first = first[:200] + "..."
        super().__init__(
            f"[{worker}] batch #{sequence} ({len(docs)} docs) failed: {cause}; first line: {first}"
        )
        self.worker = worker
        self.sequence = sequence
        self.size = len(docs)
        self.cause = cause


class SettingsRestoreError(BulkLoadError):
    """Restoring index settings or flushing failed after the load phase."""


__all__ = [
    "BulkLoadError",
    "ConfigurationError",
    "TransportError",
    "ProtocolError",
    "BulkItemsError",
    "IndexDeletionTimeout",
    "IdentifierError",
    "MissingIDFieldError",
    "IDConversionError",
    "DocumentDecodeError",
    "BatchError",
    "SettingsRestoreError",
]
