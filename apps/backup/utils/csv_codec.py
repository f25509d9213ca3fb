"""CSV encoding for flattened records (spreadsheet-friendly, UTF-8 with BOM)."""
from __future__ import annotations

import csv
import json
from datetime import datetime
from io import StringIO
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from ..exceptions import BackupEncodeError, BackupParseError, NothingToExport
from .timestamps import format_csv_timestamp

BOM = "\ufeff"


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_csv_timestamp(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _header(records: Sequence[Mapping[str, Any]]) -> List[str]:
    # First record's key order, then any key only later rows carry.
    fields: Dict[str, None] = {}
    for record in records:
        for key in record:
            fields.setdefault(key, None)
    return list(fields)


def dump_csv(records: Iterable[Mapping[str, Any]], with_bom: bool = True) -> str:
    rows = list(records)
    if not rows:
        raise NothingToExport()
    buffer = StringIO()
    try:
        writer = csv.DictWriter(buffer, fieldnames=_header(rows), restval="", lineterminator="\r\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({key: _cell(value) for key, value in row.items()})
    except (csv.Error, TypeError, ValueError) as exc:
        raise BackupEncodeError(f"Could not encode CSV: {exc}") from exc
    text = buffer.getvalue()
    return BOM + text if with_bom else text


def decode_upload(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise BackupParseError("File is not valid UTF-8") from exc


def load_csv(text: str) -> List[Dict[str, str]]:
    """Parse CSV with a header row into row dicts; every value stays a string. Empty lines are skipped."""
    if text.startswith(BOM):
        text = text[len(BOM):]
    try:
        reader = csv.DictReader(StringIO(text, newline=""))
        if not reader.fieldnames:
            raise BackupParseError("CSV has no header row")
        rows = []
        for raw_row in reader:
            # Empty lines never reach here; a line of blank cells is a row like any other.
            rows.append({key: (value or "") for key, value in raw_row.items() if key is not None})
    except csv.Error as exc:
        raise BackupParseError(f"Malformed CSV: {exc}") from exc
    return rows
