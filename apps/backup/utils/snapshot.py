"""
Full-snapshot JSON codec.

Layout: ``{"<collection>": [{"_id": "<id>", ...fields}, ...], ...}`` with every
timestamp (at any depth) written as a tagged object. This is the only
lossless backup format.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence

from ..exceptions import BackupEncodeError, BackupParseError
from .timestamps import TimestampJSONEncoder, revive_timestamps

ID_KEY = "_id"


class SnapshotWrite(NamedTuple):
    collection: str
    doc_id: str
    body: Dict[str, Any]


def snapshot_record(doc_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    record = {ID_KEY: doc_id}
    record.update((key, value) for key, value in data.items() if key != ID_KEY)
    return record


def dump_snapshot(collections: Mapping[str, Sequence[Mapping[str, Any]]]) -> str:
    try:
        return json.dumps(collections, cls=TimestampJSONEncoder, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise BackupEncodeError(f"Could not encode JSON backup: {exc}") from exc


def load_snapshot(
    text: str, allowed_collections: Iterable[str], max_id_length: Optional[int] = None
) -> List[SnapshotWrite]:
    """
    Parse a snapshot into writes, in file order.
    Unknown collections, non-list sections and records without a string ``_id``
    (or with one over ``max_id_length``) make the whole file invalid.
    """
    allowed = set(allowed_collections)
    try:
        tree = revive_timestamps(json.loads(text))
    except ValueError as exc:
        raise BackupParseError(f"Invalid JSON backup: {exc}") from exc

    if not isinstance(tree, dict):
        raise BackupParseError("JSON backup must be an object keyed by collection")

    writes: List[SnapshotWrite] = []
    for collection, records in tree.items():
        if collection not in allowed:
            raise BackupParseError(f"Unknown collection in backup: {collection}")
        if not isinstance(records, list):
            raise BackupParseError(f"Collection {collection} must be a list")
        for position, record in enumerate(records):
            if not isinstance(record, dict):
                raise BackupParseError(f"{collection}[{position}] is not an object")
            body = dict(record)
            doc_id = body.pop(ID_KEY, None)
            if not isinstance(doc_id, str) or not doc_id:
                raise BackupParseError(f"{collection}[{position}] has no {ID_KEY}")
            if max_id_length is not None and len(doc_id) > max_id_length:
                raise BackupParseError(f"{collection}[{position}] {ID_KEY} is longer than {max_id_length} characters")
            writes.append(SnapshotWrite(collection, doc_id, body))
    return writes
