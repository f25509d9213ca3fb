"""Timestamp encodings used by CSV exports, JSON snapshots and document storage.

Two textual forms exist:

* the CSV form ``YYYY-MM-DD HH:mm:ss`` in local time, which is one-way;
  imported CSV rows keep it as a plain string.
* the tagged JSON form ``{"_type": "timestamp", "value": "<ISO-8601>"}`` with
  millisecond precision, which round-trips through :func:`revive_timestamps`.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone as dt_timezone
from typing import Any

from django.utils import timezone
from django.utils.dateparse import parse_datetime

TIMESTAMP_TAG = "timestamp"
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_csv_timestamp(value: datetime) -> str:
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.strftime(CSV_TIMESTAMP_FORMAT)


def to_iso(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a ``Z`` suffix."""
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    value = value.astimezone(dt_timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_iso(text: str) -> datetime:
    parsed = parse_datetime(text)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {text!r}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed, dt_timezone.utc)
    return parsed


def encode_timestamp(value: datetime) -> dict:
    return {"_type": TIMESTAMP_TAG, "value": to_iso(value)}


TAGGED_KEYS = frozenset({"_type", "value"})


def is_tagged_timestamp(node: Any) -> bool:
    # Exactly the two reserved keys; a record that merely has such fields is data.
    return (
        isinstance(node, dict)
        and node.keys() == TAGGED_KEYS
        and node["_type"] == TIMESTAMP_TAG
        and isinstance(node["value"], str)
    )


def tag_timestamps(value: Any) -> Any:
    """Replace every ``datetime`` in a tree of dicts/lists with its tagged form."""
    if isinstance(value, datetime):
        return encode_timestamp(value)
    if isinstance(value, dict):
        return {key: tag_timestamps(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [tag_timestamps(item) for item in value]
    return value


def revive_timestamps(node: Any) -> Any:
    """Walk a parsed JSON tree and turn every tagged timestamp back into a ``datetime``."""
    if is_tagged_timestamp(node):
        try:
            return from_iso(node["value"])
        except ValueError:
            return dict(node)
    if isinstance(node, dict):
        return {key: revive_timestamps(item) for key, item in node.items()}
    if isinstance(node, list):
        return [revive_timestamps(item) for item in node]
    return node


class TimestampJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, datetime):
            return encode_timestamp(o)
        return super().default(o)


class TimestampJSONDecoder(json.JSONDecoder):
    def decode(self, s, *args, **kwargs):
        return revive_timestamps(super().decode(s, *args, **kwargs))
