"""Concurrent bulk indexing: line intake, per-worker batching and ``_bulk`` calls."""

from __future__ import annotations

import gzip
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Dict, Iterable, Iterator, List, Optional

from .client import ESClient
from .config import Options
from .errors import BatchError, BulkItemsError, DocumentDecodeError, ProtocolError
from .http_client import describe_response
from .lifecycle import IndexLifecycleManager
from .payload import build_bulk_body

logger = logging.getLogger(__name__)

BULK_ERRORS_ADVICE = (
    "error during bulk operation, check error details, try less workers (lower --workers value) "
    "or increase thread_pool.bulk.queue_size in your nodes"
)

# Seconds between checks of the stop event while blocked on the queue.
POLL_INTERVAL_SEC = 0.1

_CLOSED = object()


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


@dataclass(frozen=True)
class ItemError:
    type: str = ""
    reason: str = ""
    index_uuid: str = ""
    shard: str = ""
    index: str = ""

    @classmethod
    def from_json(cls, data: Any) -> "ItemError":
        if not isinstance(data, dict):
            return cls(reason=str(data))
        return cls(
            type=_text(data, "type"),
            reason=_text(data, "reason"),
            index_uuid=_text(data, "index_uuid"),
            shard=_text(data, "shard"),
            index=_text(data, "index"),
        )


@dataclass(frozen=True)
class BulkItem:
    index: str = ""
    doc_type: str = ""
    id: str = ""
    status: int = 0
    error: Optional[ItemError] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "BulkItem":
        # One key per item, named after the action ("index" for this loader).
        action = next(iter(data.values()), {}) if isinstance(data, dict) else {}
        if not isinstance(action, dict):
            action = {}
        error = action.get("error")
        return cls(
            index=_text(action, "_index"),
            doc_type=_text(action, "_type"),
            id=_text(action, "_id"),
            status=int(action.get("status") or 0),
            error=ItemError.from_json(error) if error is not None else None,
        )


@dataclass(frozen=True)
class BulkResponse:
    took: int = 0
    errors: bool = False
    items: List[BulkItem] = field(default_factory=list)

    @classmethod
    def from_json(cls, body: Any) -> "BulkResponse":
        if not isinstance(body, dict):
            raise ValueError(f"unexpected bulk response: {body!r}")
        return cls(
            took=int(body.get("took") or 0),
            errors=bool(body.get("errors")),
            items=[BulkItem.from_json(item) for item in body.get("items") or []],
        )

    def failed_items(self) -> List[BulkItem]:
        return [item for item in self.items if item.error is not None]


def bulk_index(client: ESClient, docs: List[str], options: Options) -> Optional[BulkResponse]:
    """Send ``docs`` as one ``_bulk`` request and raise on any failure.

    A response flagged with ``errors`` fails the whole batch even though some
    of its documents may have been indexed. In verbose mode the error of each
    failed item is logged; items that succeeded are not listed.
    """
    if not docs:
        return None

    body = build_bulk_body(docs, options.index, options.doc_type, options.id_field)
    response = client.bulk(body)
    if response.status_code >= 400:
        raise ProtocolError(
            f"indexing failed with {describe_response(response)}",
            status=response.status_code,
            body=response.text,
        )

    try:
        result = BulkResponse.from_json(response.json())
    except ValueError as exc:
        raise ProtocolError(
            f"failed to decode bulk response: {exc}", status=response.status_code, body=response.text
        ) from exc

    if result.errors:
        failed = result.failed_items()
        if options.verbose:
            logger.error("Error details: ")
            for item in failed:
                logger.error("  %s/%s/%s status=%d %s", item.index, item.doc_type, item.id, item.status, item.error)
        raise BulkItemsError(f"{BULK_ERRORS_ADVICE} ({len(failed)} of {len(docs)} items failed)", failed)
    return result


class Worker(threading.Thread):
    """Pulls lines off the shared queue and indexes them in fixed-size batches."""

    def __init__(
        self,
        name: str,
        options: Options,
        client: ESClient,
        work: "queue.Queue[Any]",
        stop: threading.Event,
        indexer: Callable[[ESClient, List[str], Options], Any] = bulk_index,
    ) -> None:
        super().__init__(name=name, daemon=True)
        self.options = options
        self.client = client
        self.work = work
        self.stop = stop
        self.indexer = indexer
        self.counter = 0
        self.batches = 0
        self.error: Optional[BatchError] = None

    def run(self) -> None:
        docs: List[str] = []
        try:
            while True:
                item = self._next()
                if item is None:
                    return
                if item is _CLOSED:
                    break
                docs.append(item)
                self.counter += 1
                if len(docs) >= self.options.batch_size:
                    self._flush(docs)
                    docs = []
            if docs:
                self._flush(docs)
        except BatchError as exc:
            self.error = exc
            self.stop.set()

    def _next(self) -> Any:
        while not self.stop.is_set():
            try:
                return self.work.get(timeout=POLL_INTERVAL_SEC)
            except queue.Empty:
                continue
        return None

    def _flush(self, docs: List[str]) -> None:
        self.batches += 1
        try:
            self.indexer(self.client, docs, self.options)
        except Exception as exc:
            raise BatchError(self.name, self.batches, docs, exc) from exc
        if self.options.verbose:
            logger.info("[%s] @%d", self.name, self.counter)


def iter_lines(stream: IO[Any], gzipped: bool = False) -> Iterator[str]:
    """Yield text lines from a text or binary stream, gunzipping first if asked.

    Bytes that are not UTF-8 raise ``DocumentDecodeError`` naming the line.
    """
    if gzipped:
        stream = gzip.GzipFile(fileobj=stream, mode="rb")
    for lineno, raw in enumerate(stream, start=1):
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DocumentDecodeError(f"line {lineno} is not valid UTF-8: {exc}: {raw[:200]!r}") from exc
        yield raw


def _put(work: "queue.Queue[Any]", item: Any, stop: threading.Event) -> bool:
    while not stop.is_set():
        try:
            work.put(item, timeout=POLL_INTERVAL_SEC)
            return True
        except queue.Full:
            continue
    return False


def dispatch_lines(lines: Iterable[str], work: "queue.Queue[Any]", stop: threading.Event) -> int:
    """Put every non-blank, trimmed line on the queue; return how many were placed."""
    count = 0
    for line in lines:
        line = line.strip()
        if not line:
            continue
        if not _put(work, line, stop):
            break
        count += 1
    return count


def run_pipeline(
    lines: Iterable[str],
    options: Options,
    client: ESClient,
    indexer: Callable[[ESClient, List[str], Options], Any] = bulk_index,
) -> int:
    """Feed ``lines`` to a pool of workers and wait for them to drain.

    The first worker failure stops the dispatcher and the other workers and is
    raised once every thread has finished.
    """
    work: "queue.Queue[Any]" = queue.Queue(maxsize=1)
    stop = threading.Event()
    workers = [
        Worker(f"worker-{i}", options, client, work, stop, indexer=indexer) for i in range(options.num_workers)
    ]
    for worker in workers:
        worker.start()

    count = 0
    try:
        count = dispatch_lines(lines, work, stop)
    except BaseException:
        stop.set()
        raise
    finally:
        for _ in workers:
            if not _put(work, _CLOSED, stop):
                break
        for worker in workers:
            worker.join()

    for worker in workers:
        if worker.error is not None:
            raise worker.error
    return count


def process_ldj(stream: IO[Any], options: Options, client: Optional[ESClient] = None) -> int:
    """Load one LDJ stream into ``options.index``; return the number of documents sent.

    Settings relaxed before the load are restored afterwards whether or not the
    load succeeded.
    """
    options.validate()
    logger.debug("options: %s", options.describe())

    owned = client is None
    client = client or ESClient.from_options(options)
    try:
        with IndexLifecycleManager(client, options):
            count = run_pipeline(iter_lines(stream, options.gzipped), options, client)
    finally:
        if owned:
            client.close()
    logger.info("indexed %d documents into %s", count, options.index)
    return count


__all__ = [
    "BULK_ERRORS_ADVICE",
    "ItemError",
    "BulkItem",
    "BulkResponse",
    "bulk_index",
    "Worker",
    "iter_lines",
    "dispatch_lines",
    "run_pipeline",
    "process_ldj",
]
