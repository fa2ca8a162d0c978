"""Tests for src.esbulk.indexer covering bulk calls, the worker pool and the LDJ flow.

Run with coverage:
    pytest tests/test_indexer.py --maxfail=1 -v --cov=src.esbulk.indexer --cov-report=term-missing
"""

import gzip
import io
import json
import logging
import threading
from typing import Any
from unittest.mock import MagicMock

import pytest

from src.esbulk.config import Options
from src.esbulk.errors import BatchError, BulkItemsError, ConfigurationError, DocumentDecodeError, ProtocolError
from src.esbulk.indexer import (
    BULK_ERRORS_ADVICE,
    BulkResponse,
    bulk_index,
    iter_lines,
    process_ldj,
    run_pipeline,
)

SERVER = "http://a:9200"

FAILED_BULK = {
    "took": 3,
    "errors": True,
    "items": [
        {"index": {"_index": "idx", "_type": "default", "_id": "1", "status": 201}},
        {
            "index": {
                "_index": "idx",
                "_type": "default",
                "_id": "2",
                "status": 400,
                "error": {
                    "type": "mapper_parsing_exception",
                    "reason": "failed to parse",
                    "index_uuid": "u1",
                    "shard": 0,
                    "index": "idx",
                },
            }
        },
    ],
}


def _make_resp(status: int = 200, payload: Any = None):
    resp = MagicMock()
    resp.status_code = status
    resp.reason = ""
    resp.json.return_value = {} if payload is None else payload
    resp.text = json.dumps(payload) if payload is not None else ""
    return resp


def _options(**kwargs):
    kwargs.setdefault("servers", (SERVER,))
    kwargs.setdefault("index", "idx")
    kwargs.setdefault("num_workers", 1)
    return Options(**kwargs)


def _es_client(bulk_status: int = 200, bulk_payload: Any = None):
    client = MagicMock()
    client.get_index.return_value = _make_resp(200)
    client.get_settings.return_value = _make_resp(
        200, {"idx": {"settings": {"index": {"number_of_replicas": "1"}}}}
    )
    client.put_settings.return_value = _make_resp(200)
    client.flush_index.return_value = _make_resp(200)
    if bulk_payload is None:
        bulk_payload = {"took": 1, "errors": False, "items": []}
    client.bulk.return_value = _make_resp(bulk_status, bulk_payload)
    return client


class RecordingIndexer:
    def __init__(self):
        self.batches = []
        self._lock = threading.Lock()

    def __call__(self, client, docs, options):
        with self._lock:
            self.batches.append(list(docs))


def test_bulk_index_posts_framed_body():
    client = _es_client()
    result = bulk_index(client, ['{"a":1}'], _options())
    assert result.errors is False
    body = client.bulk.call_args.args[0]
    assert body == '{"index": {"_index": "idx", "_type": "default"}}\n{"a":1}\n'


def test_bulk_index_skips_empty_batch():
    client = _es_client()
    assert bulk_index(client, [], _options()) is None
    client.bulk.assert_not_called()


def test_bulk_index_fails_on_http_error():
    client = _es_client(bulk_status=500, bulk_payload={"error": "boom"})
    with pytest.raises(ProtocolError, match="indexing failed with 500") as excinfo:
        bulk_index(client, ['{"a":1}'], _options())
    assert excinfo.value.status == 500


def test_bulk_index_fails_on_undecodable_response():
    client = _es_client()
    client.bulk.return_value.json.side_effect = ValueError("bad json")
    with pytest.raises(ProtocolError, match="failed to decode bulk response"):
        bulk_index(client, ['{"a":1}'], _options())


def test_item_errors_fail_the_batch_and_are_logged_when_verbose(caplog):
    caplog.set_level(logging.ERROR, logger="src.esbulk.indexer")
    client = _es_client(bulk_payload=FAILED_BULK)
    with pytest.raises(BulkItemsError) as excinfo:
        bulk_index(client, ['{"a":1}', '{"a":2}'], _options(verbose=True))

    assert BULK_ERRORS_ADVICE in str(excinfo.value)
    assert "(1 of 2 items failed)" in str(excinfo.value)
    assert [item.id for item in excinfo.value.items] == ["2"]
    assert "Error details" in caplog.text
    assert "idx/default/2" in caplog.text
    assert "mapper_parsing_exception" in caplog.text


def test_item_errors_are_not_itemized_without_verbose(caplog):
    caplog.set_level(logging.ERROR, logger="src.esbulk.indexer")
    client = _es_client(bulk_payload=FAILED_BULK)
    with pytest.raises(BulkItemsError):
        bulk_index(client, ['{"a":1}', '{"a":2}'], _options())
    assert "Error details" not in caplog.text


def test_bulk_response_parsing():
    result = BulkResponse.from_json(FAILED_BULK)
    assert result.took == 3
    assert result.errors is True
    assert len(result.items) == 2
    failed = result.failed_items()
    assert failed[0].status == 400
    assert failed[0].error.shard == "0"
    assert failed[0].error.type == "mapper_parsing_exception"

    with pytest.raises(ValueError):
        BulkResponse.from_json(["not", "a", "dict"])


def test_string_item_error_is_kept_as_reason():
    result = BulkResponse.from_json(
        {"took": 1, "errors": True, "items": [{"index": {"_id": "x", "status": 400, "error": "MapperParsingException"}}]}
    )
    assert result.failed_items()[0].error.reason == "MapperParsingException"


def test_pipeline_batches_by_size_and_flushes_remainder():
    indexer = RecordingIndexer()
    lines = [f'{{"n": {i}}}\n' for i in range(5)]
    count = run_pipeline(lines, _options(batch_size=2), MagicMock(), indexer=indexer)
    assert count == 5
    assert [len(batch) for batch in indexer.batches] == [2, 2, 1]
    assert indexer.batches[0][0] == '{"n": 0}'


def test_pipeline_trims_lines_and_skips_blanks():
    indexer = RecordingIndexer()
    count = run_pipeline(["a\n", "\n", "  b \n", "   "], _options(), MagicMock(), indexer=indexer)
    assert count == 2
    assert indexer.batches == [["a", "b"]]


def test_pipeline_delivers_every_line_once_across_workers():
    indexer = RecordingIndexer()
    lines = [f"line-{i}" for i in range(500)]
    count = run_pipeline(lines, _options(batch_size=7, num_workers=4), MagicMock(), indexer=indexer)
    delivered = [line for batch in indexer.batches for line in batch]
    assert count == 500
    assert sorted(delivered) == sorted(lines)
    assert all(1 <= len(batch) <= 7 for batch in indexer.batches)


def test_pipeline_stops_on_first_failed_batch():
    calls = []

    def failing(client, docs, options):
        calls.append(len(docs))
        raise RuntimeError("bulk rejected")

    lines = (f"line-{i}" for i in range(10000))
    with pytest.raises(BatchError, match="bulk rejected") as excinfo:
        run_pipeline(lines, _options(batch_size=1, num_workers=2), MagicMock(), indexer=failing)
    assert isinstance(excinfo.value.cause, RuntimeError)
    assert len(calls) < 10000


def test_pipeline_propagates_reader_errors():
    def lines():
        yield "first"
        raise OSError("read failed")

    indexer = RecordingIndexer()
    with pytest.raises(OSError, match="read failed"):
        run_pipeline(lines(), _options(num_workers=2), MagicMock(), indexer=indexer)


def test_iter_lines_reads_text_bytes_and_gzip():
    assert list(iter_lines(io.StringIO("a\nb\n"))) == ["a\n", "b\n"]
    assert list(iter_lines(io.BytesIO("ä\n".encode("utf-8")))) == ["ä\n"]
    packed = io.BytesIO(gzip.compress(b'{"x": 1}\n{"x": 2}\n'))
    assert list(iter_lines(packed, gzipped=True)) == ['{"x": 1}\n', '{"x": 2}\n']


def test_process_ldj_requires_index_before_any_request():
    client = MagicMock()
    with pytest.raises(ConfigurationError, match="index name required"):
        process_ldj(io.BytesIO(b"{}\n"), _options(index=""), client=client)
    assert client.method_calls == []


def test_process_ldj_loads_and_restores_settings():
    client = _es_client()
    stream = io.BytesIO(b"".join(f'{{"a": {i}}}\n'.encode() for i in range(5)))

    count = process_ldj(stream, _options(batch_size=2, zero_replica=True), client=client)

    assert count == 5
    assert client.bulk.call_count == 3
    restored = client.put_settings.call_args_list[-1].args
    assert restored == ({"index": {"refresh_interval": "1s", "number_of_replicas": "1"}}, SERVER)
    client.flush_index.assert_called_once_with(SERVER)
    client.close.assert_not_called()


def test_process_ldj_restores_settings_when_bulk_fails():
    client = _es_client(bulk_status=400, bulk_payload={"error": "bad request"})
    with pytest.raises(BatchError):
        process_ldj(io.BytesIO(b'{"a": 1}\n'), _options(), client=client)
    client.flush_index.assert_called_once_with(SERVER)


def test_process_ldj_closes_client_it_creates(monkeypatch):
    client = _es_client()
    monkeypatch.setattr("src.esbulk.indexer.ESClient.from_options", MagicMock(return_value=client))
    assert process_ldj(io.BytesIO(b""), _options()) == 0
    client.close.assert_called_once()


def test_item_fields_keep_zero_and_falsy_values():
    result = BulkResponse.from_json(
        {
            "took": 0,
            "errors": True,
            "items": [
                {
                    "index": {
                        "_index": "idx",
                        "_id": 0,
                        "status": 409,
                        "error": {"type": "version_conflict_engine_exception", "shard": 0, "reason": ""},
                    }
                }
            ],
        }
    )
    item = result.failed_items()[0]
    assert item.id == "0"
    assert item.doc_type == ""
    assert item.error.shard == "0"
    assert item.error.reason == ""


def test_iter_lines_names_line_with_invalid_utf8():
    stream = io.BytesIO(b'{"a": 1}\n{"a": "\xff"}\n')
    lines = iter_lines(stream)
    assert next(lines) == '{"a": 1}\n'
    with pytest.raises(DocumentDecodeError, match="line 2 is not valid UTF-8"):
        next(lines)
