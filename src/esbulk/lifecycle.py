"""Index preparation before a load and settings restoration after it."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

import requests

from .client import ESClient
from .config import (
    BULK_REFRESH_INTERVAL,
    DELETE_WAIT_DELAY_SEC,
    DELETE_WAIT_MAX_RETRIES,
    NORMAL_REFRESH_INTERVAL,
    Options,
)
from .errors import BulkLoadError, IndexDeletionTimeout, ProtocolError, SettingsRestoreError
from .http_client import describe_response, pick_server

logger = logging.getLogger(__name__)

ALREADY_EXISTS_ERROR_TYPES = {"index_already_exists_exception", "resource_already_exists_exception"}


@dataclass(frozen=True)
class ServerSettingsSnapshot:
    """Settings of one server's view of the index, captured before relaxing them."""

    server: str
    number_of_replicas: Any = None


def load_mapping(source: str) -> str:
    """Return the mapping body: the file contents when ``source`` names a file, else ``source``."""
    if os.path.isfile(source):
        with open(source, "r", encoding="utf-8") as handle:
            return handle.read()
    return source


def index_already_exists(response: requests.Response) -> bool:
    """Tell whether a 400 on index creation only means the index is already there."""
    try:
        body = response.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, str):
        return "IndexAlreadyExistsException" in error
    if isinstance(error, dict):
        return error.get("type") in ALREADY_EXISTS_ERROR_TYPES
    return False


def extract_replicas(doc: Dict[str, Any], index: str) -> Any:
    """Pull ``number_of_replicas`` out of a ``GET /<index>/_settings`` response."""
    # Keyed by the concrete index name, which differs from ``index`` for aliases.
    entry = doc.get(index)
    if entry is None and len(doc) == 1:
        entry = next(iter(doc.values()))
    if not isinstance(entry, dict):
        return None
    return ((entry.get("settings") or {}).get("index") or {}).get("number_of_replicas")


class IndexLifecycleManager:
    """Brackets a load run: prepares the index on entry, restores it on exit.

    Restoration runs once per server whose settings were captured, whether
    the load succeeded, failed, or preparation itself broke off halfway.
    """

    def __init__(
        self,
        client: ESClient,
        options: Options,
        sleep: Callable[[float], None] = time.sleep,
        max_wait_retries: int = DELETE_WAIT_MAX_RETRIES,
        wait_delay: float = DELETE_WAIT_DELAY_SEC,
    ) -> None:
        self.client = client
        self.options = options
        self.sleep = sleep
        self.max_wait_retries = max_wait_retries
        self.wait_delay = wait_delay
        self.snapshots: List[ServerSettingsSnapshot] = []

    def __enter__(self) -> "IndexLifecycleManager":
        try:
            self.begin()
        except BaseException:
            self._shutdown(failed=True)
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._shutdown(failed=exc_type is not None)
        return False

    def begin(self) -> None:
        if self.options.purge:
            self.purge()
        self.ensure_index()
        if self.options.mapping:
            self.apply_mapping()
        for server in self.options.servers:
            self.relax(server)

    def purge(self) -> None:
        response = self.client.delete_index()
        if response.status_code >= 400 and response.status_code != 404:
            raise ProtocolError(
                f"failed to delete index {self.options.index}: {describe_response(response)}",
                status=response.status_code,
                body=response.text,
            )
        logger.debug("purged index %s: %s", self.options.index, response.status_code)
        self.wait_for_deletion()

    def wait_for_deletion(self) -> int:
        """Probe until the index is gone; return the number of probes made."""
        for attempt in range(1, self.max_wait_retries + 1):
            status = self.client.head_index()
            if status == 404:
                return attempt
            logger.debug(
                "index %s still present (HTTP %d), probe %d/%d",
                self.options.index,
                status,
                attempt,
                self.max_wait_retries,
            )
            if attempt < self.max_wait_retries:
                self.sleep(self.wait_delay)
        raise IndexDeletionTimeout(
            f"index {self.options.index} still exists after {self.max_wait_retries} probes"
        )

    def ensure_index(self) -> bool:
        """Create the index unless it exists; return True when it was created."""
        server = pick_server(self.options.servers)
        response = self.client.get_index(server)
        if response.status_code == 200:
            return False

        response = self.client.create_index(server)
        if response.status_code == 400 and index_already_exists(response):
            return False
        if response.status_code >= 400:
            raise ProtocolError(
                f"failed to create index {self.options.index}: {describe_response(response)}",
                status=response.status_code,
                body=response.text,
            )
        logger.debug("created index %s: %s", self.options.index, response.status_code)
        return True

    def apply_mapping(self) -> None:
        body = load_mapping(self.options.mapping)
        response = self.client.put_mapping(self.options.doc_type, body)
        if response.status_code != 200:
            raise ProtocolError(
                f"failed to apply mapping with {describe_response(response)}",
                status=response.status_code,
                body=response.text,
            )
        logger.debug("applied mapping: %s", response.status_code)

    def relax(self, server: str) -> ServerSettingsSnapshot:
        """Snapshot replicas on ``server``, then disable refresh (and replicas)."""
        response = self.client.get_settings(server)
        if response.status_code != 200:
            raise ProtocolError(
                f"could not get settings: {server}/{self.options.index}/_settings: {describe_response(response)}",
                status=response.status_code,
                body=response.text,
            )
        try:
            doc = response.json()
        except ValueError as exc:
            raise ProtocolError(f"failed to decode settings: {exc}", status=200, body=response.text) from exc

        if not isinstance(doc, dict):
            doc = {}
        snapshot = ServerSettingsSnapshot(server, extract_replicas(doc, self.options.index))
        self.snapshots.append(snapshot)
        logger.debug(
            "on shutdown, number_of_replicas on %s will be set back to %s", server, snapshot.number_of_replicas
        )

        settings: Dict[str, Any] = {"refresh_interval": BULK_REFRESH_INTERVAL}
        if self.options.zero_replica:
            settings["number_of_replicas"] = 0
        response = self.client.put_settings({"index": settings}, server)
        if response.status_code >= 400:
            raise ProtocolError(
                f"failed to relax settings on {server}: {describe_response(response)}",
                status=response.status_code,
                body=response.text,
            )
        return snapshot

    def restore(self, snapshot: ServerSettingsSnapshot) -> None:
        """Re-enable refresh, put replicas back and flush, on the snapshot's server."""
        settings: Dict[str, Any] = {"refresh_interval": NORMAL_REFRESH_INTERVAL}
        if snapshot.number_of_replicas is not None:
            settings["number_of_replicas"] = snapshot.number_of_replicas
        response = self.client.put_settings({"index": settings}, snapshot.server)
        if response.status_code >= 400:
            raise SettingsRestoreError(
                f"failed to restore settings on {snapshot.server}: {describe_response(response)}"
            )

        response = self.client.flush_index(snapshot.server)
        if response.status_code >= 400:
            raise SettingsRestoreError(f"failed to flush on {snapshot.server}: {describe_response(response)}")
        logger.debug("index flushed on %s: %s", snapshot.server, response.status_code)

    def end(self) -> List[BulkLoadError]:
        """Restore every captured snapshot once; return the failures."""
        errors: List[BulkLoadError] = []
        while self.snapshots:
            snapshot = self.snapshots.pop(0)
            try:
                self.restore(snapshot)
            except BulkLoadError as exc:
                logger.error("shutdown on %s failed: %s", snapshot.server, exc)
                errors.append(exc)
        return errors

    def _shutdown(self, failed: bool) -> None:
        errors = self.end()
        if errors and not failed:
            raise SettingsRestoreError(
                f"restoring {len(errors)} server(s) failed: " + "; ".join(str(exc) for exc in errors)
            ) from errors[0]


__all__ = [
    "ServerSettingsSnapshot",
    "IndexLifecycleManager",
    "load_mapping",
    "index_already_exists",
    "extract_replicas",
]
