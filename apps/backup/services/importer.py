"""
Import orchestration.

A JSON snapshot is restored as one atomic batch of upserts. A CSV file is
imported row by row: each row is validated, reshaped and added as a new
document on its own, so a bad row never stops the rest of the file.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Mapping

from django.db import transaction

from apps.registry.constants import CUSTOMERS, PARTS, SUPPLIERS
from apps.store.models import DOC_ID_MAX_LENGTH
from apps.store.store import DocumentStore, StoreError

from ..exceptions import RowValidationError, UnsupportedCollection
from ..utils.csv_codec import load_csv
from ..utils.snapshot import load_snapshot
from .exporter import WATCHED_COLLECTIONS

logger = logging.getLogger(__name__)

# Fields a CSV row must carry, non-blank, before it is written.
CSV_REQUIRED_FIELDS = {
    CUSTOMERS: ("nomeRazaoSocial",),
    SUPPLIERS: ("razaoSocial",),
    PARTS: ("codigoPeca",),
}

CUSTOMER_TYPE_FLAGS = ("cliente", "mecanico")


@dataclass(frozen=True)
class RestoreResult:
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True)
class CsvImportResult:
    collection: str
    success_count: int
    error_count: int


def _is_true(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "true"


def _reshape_customer_type(body: Dict[str, str]) -> None:
    flag_columns = [f"tipo.{flag}" for flag in CUSTOMER_TYPE_FLAGS]
    if any(column in body for column in flag_columns):
        body["tipo"] = {
            flag: _is_true(body.pop(f"tipo.{flag}", "")) for flag in CUSTOMER_TYPE_FLAGS
        }
        return

    legacy = body.get("tipo")
    if legacy is None or not legacy.strip():
        return
    # Older spreadsheets carry the whole object in one cell, sometimes with single quotes.
    try:
        parsed = json.loads(legacy.replace("'", '"'))
    except ValueError as exc:
        raise RowValidationError(f"Could not read tipo value {legacy!r}") from exc
    if not isinstance(parsed, dict) or not any(flag in parsed for flag in CUSTOMER_TYPE_FLAGS):
        raise RowValidationError(f"tipo must be an object with cliente/mecanico, got {legacy!r}")
    body["tipo"] = {flag: _is_true(parsed.get(flag)) for flag in CUSTOMER_TYPE_FLAGS}


def prepare_row(collection: str, row: Mapping[str, str]) -> Dict[str, str]:
    """Validate a parsed CSV row and turn it into a document body."""
    missing = [name for name in CSV_REQUIRED_FIELDS[collection] if not (row.get(name) or "").strip()]
    if missing:
        raise RowValidationError(f"Missing required field(s): {', '.join(missing)}", row=row)

    # New documents always get a fresh id.
    body = {key: value for key, value in row.items() if key != "id"}
    if collection == CUSTOMERS:
        _reshape_customer_type(body)
    return body


class BackupImporter:
    def __init__(self, store: DocumentStore):
        self.store = store

    def restore_json(self, text: str) -> RestoreResult:
        writes = load_snapshot(text, WATCHED_COLLECTIONS, max_id_length=DOC_ID_MAX_LENGTH)
        self.store.batch_upsert((write.collection, write.doc_id, write.body) for write in writes)
        counts = Counter(write.collection for write in writes)
        result = RestoreResult(counts=dict(counts))
        logger.info("JSON restore applied %s records: %s", result.total, result.counts)
        return result

    def _import_row(self, collection: str, line: int, row: Mapping[str, str]) -> bool:
        try:
            body = prepare_row(collection, row)
            with transaction.atomic(using=self.store.using):
                self.store.create(collection, body)
        except RowValidationError as exc:
            logger.warning("Skipping %s CSV line %s: %s", collection, line, exc)
            return False
        except StoreError as exc:
            logger.warning("Could not write %s CSV line %s: %s", collection, line, exc)
            return False
        return True

    def import_csv(self, collection: str, text: str) -> CsvImportResult:
        if collection not in CSV_REQUIRED_FIELDS:
            raise UnsupportedCollection(collection, "import")
        rows = load_csv(text)
        # Line 1 is the header.
        outcomes = [self._import_row(collection, line, row) for line, row in enumerate(rows, start=2)]
        success_count = sum(outcomes)
        result = CsvImportResult(collection, success_count, len(outcomes) - success_count)
        logger.info(
            "CSV import into %s: %s added, %s skipped", collection, result.success_count, result.error_count
        )
        return result
