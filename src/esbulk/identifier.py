"""Document ID resolution from one or more (possibly nested) fields."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List

from .errors import DocumentDecodeError, IDConversionError, MissingIDFieldError

METADATA_ID_FIELD = "_id"

_FIELD_SEPARATORS = re.compile(r"[,\s]+")


class JSONNumber(str):
    """A JSON number kept as its exact source text."""

    __slots__ = ()


def decode_document(line: str) -> Dict[str, Any]:
    """Decode a JSON object, keeping every number as ``JSONNumber`` text."""
    try:
        doc = json.loads(line, parse_int=JSONNumber, parse_float=JSONNumber)
    except json.JSONDecodeError as exc:
        raise DocumentDecodeError(f"failed to json decode doc: {exc}: {line}") from exc
    if not isinstance(doc, dict):
        raise DocumentDecodeError(f"document is not a JSON object: {line}")
    return doc


def split_id_fields(fields: str) -> List[str]:
    """Split ``"a,b c"`` into ``["a", "b", "c"]``; empty tokens are dropped."""
    return [token for token in _FIELD_SEPARATORS.split(fields or "") if token]


def lookup_field(doc: Dict[str, Any], field: str) -> Any:
    """Return the value at dotted path ``field`` or raise MissingIDFieldError."""
    value: Any = doc
    for segment in field.split("."):
        if not isinstance(value, dict) or segment not in value:
            raise MissingIDFieldError(f"document has no ID field ({field})")
        value = value[segment]
    return value


def id_value_to_str(value: Any) -> str:
    match value:
        case JSONNumber():
            return str(value)
        case str():
            return value
        case _:
            raise IDConversionError(f"cannot convert id value to string: {value!r}")


def resolve_id(doc: Dict[str, Any], id_fields: List[str]) -> str:
    """Concatenate the string form of every field in ``id_fields``, in order."""
    return "".join(id_value_to_str(lookup_field(doc, field)) for field in id_fields)


def encode_document(value: Any) -> str:
    """Encode a decoded document, writing ``JSONNumber`` values as their source text."""
    match value:
        case JSONNumber():
            return str(value)
        case dict():
            members = (f"{json.dumps(key, ensure_ascii=False)}: {encode_document(item)}" for key, item in value.items())
            return "{" + ", ".join(members) + "}"
        case list():
            return "[" + ", ".join(encode_document(item) for item in value) + "]"
        case _:
            return json.dumps(value, ensure_ascii=False)


def strip_metadata_id(doc: Dict[str, Any]) -> str:
    """Encode a document decoded by ``decode_document`` without its top-level ``_id`` key."""
    body = {key: value for key, value in doc.items() if key != METADATA_ID_FIELD}
    return encode_document(body)


__all__ = [
    "METADATA_ID_FIELD",
    "JSONNumber",
    "decode_document",
    "split_id_fields",
    "lookup_field",
    "id_value_to_str",
    "resolve_id",
    "encode_document",
    "strip_metadata_id",
]
