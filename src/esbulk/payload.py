"""Build newline-delimited ``_bulk`` request bodies from raw JSON lines."""

from __future__ import annotations

import json
from typing import Dict, Iterable, List, Optional

from .errors import IdentifierError
from .identifier import METADATA_ID_FIELD, decode_document, resolve_id, split_id_fields, strip_metadata_id


def action_header(index: str, doc_type: str, doc_id: Optional[str] = None) -> str:
    """Return the ``{"index": {...}}`` action line for one document."""
    meta: Dict[str, str] = {"_index": index}
    if doc_type:
        meta["_type"] = doc_type
    if doc_id is not None:
        meta["_id"] = doc_id
    return json.dumps({"index": meta})


def build_bulk_body(docs: Iterable[str], index: str, doc_type: str, id_field: str = "") -> str:
    """Return header/document line pairs joined by newlines, with a trailing newline.

    Documents are only decoded when ``id_field`` is set. Any ID problem raises
    before a body is produced, so a batch is either built whole or not at all.
    """
    id_fields = split_id_fields(id_field)
    strip_id = METADATA_ID_FIELD in id_fields

    lines: List[str] = []
    for doc in docs:
        if not doc.strip():
            continue
        header = action_header(index, doc_type)
        if id_fields:
            decoded = decode_document(doc)
            try:
                doc_id = resolve_id(decoded, id_fields)
            except IdentifierError as exc:
                raise type(exc)(f"{exc}: {doc}") from exc
            header = action_header(index, doc_type, doc_id)
            if strip_id:
                doc = strip_metadata_id(decoded)
        lines.append(header)
        lines.append(doc)

    return "\n".join(lines) + "\n"


__all__ = ["action_header", "build_bulk_body"]
