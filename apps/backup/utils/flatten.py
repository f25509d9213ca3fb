from datetime import datetime
from typing import Any, Dict, Mapping

from .timestamps import format_csv_timestamp


def flatten_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Flatten one level of nesting for tabular output.
    Nested mappings become ``outer.inner`` keys; lists are left for the CSV writer.
    """
    flat: Dict[str, Any] = {}
    for key, value in record.items():
        if isinstance(value, Mapping):
            for inner_key, inner_value in value.items():
                flat[f"{key}.{inner_key}"] = inner_value
        elif isinstance(value, datetime):
            flat[key] = format_csv_timestamp(value)
        else:
            flat[key] = value
    return flat
