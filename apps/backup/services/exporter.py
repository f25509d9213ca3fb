"""Export orchestration: store -> flatten/tag -> CSV, ZIP or JSON artifact."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from django.utils import timezone

from apps.registry.constants import CUSTOMERS, MOVEMENTS, PARTS, SUPPLIERS
from apps.store.store import DocumentStore, StoredDocument

from ..exceptions import NothingToExport, UnsupportedCollection
from ..utils.archive import build_zip
from ..utils.csv_codec import dump_csv
from ..utils.flatten import flatten_record
from ..utils.snapshot import dump_snapshot, snapshot_record
from .state import LastBackupTracker

logger = logging.getLogger(__name__)

# Processing order is also the order of sections/files in multi-collection artifacts.
WATCHED_COLLECTIONS = (CUSTOMERS, SUPPLIERS, PARTS, MOVEMENTS)

CSV_CONTENT_TYPE = "text/csv; charset=utf-8"
JSON_CONTENT_TYPE = "application/json"
ZIP_CONTENT_TYPE = "application/zip"


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    content: bytes
    content_type: str
    record_count: int


def tabular_record(doc: StoredDocument) -> dict:
    record = {"id": doc.id}
    record.update((key, value) for key, value in doc.data.items() if key != "id")
    return flatten_record(record)


class BackupExporter:
    def __init__(
        self,
        store: DocumentStore,
        tracker: LastBackupTracker,
        today: Callable = timezone.localdate,
    ):
        self.store = store
        self.tracker = tracker
        self.today = today

    def _stamp(self) -> str:
        return self.today().isoformat()

    def _csv_payload(self, collection: str) -> Optional[Tuple[str, int]]:
        docs = self.store.list_all(collection)
        if not docs:
            return None
        return dump_csv([tabular_record(doc) for doc in docs]), len(docs)

    def export_json(self) -> ExportArtifact:
        sections = {}
        total = 0
        for collection in WATCHED_COLLECTIONS:
            sections[collection] = [snapshot_record(doc.id, doc.data) for doc in self.store.list_all(collection)]
            total += len(sections[collection])
        text = dump_snapshot(sections)
        artifact = ExportArtifact(
            filename=f"backup_completo_{self._stamp()}.json",
            content=text.encode("utf-8"),
            content_type=JSON_CONTENT_TYPE,
            record_count=total,
        )
        self.tracker.set()
        logger.info("Full JSON backup built with %s records", total)
        return artifact

    def export_csv(self, collection: str) -> ExportArtifact:
        if collection not in WATCHED_COLLECTIONS:
            raise UnsupportedCollection(collection, "export")
        payload = self._csv_payload(collection)
        if payload is None:
            raise NothingToExport(collection)
        text, count = payload
        logger.info("CSV export of %s with %s records", collection, count)
        return ExportArtifact(
            filename=f"backup_{collection}_{self._stamp()}.csv",
            content=text.encode("utf-8"),
            content_type=CSV_CONTENT_TYPE,
            record_count=count,
        )

    def export_zip(self) -> ExportArtifact:
        files: List[Tuple[str, str]] = []
        total = 0
        for collection in WATCHED_COLLECTIONS:
            payload = self._csv_payload(collection)
            if payload is None:
                continue
            text, count = payload
            files.append((f"{collection}.csv", text))
            total += count
        if not files:
            raise NothingToExport()
        artifact = ExportArtifact(
            filename=f"backup_geral_{self._stamp()}.zip",
            content=build_zip(files),
            content_type=ZIP_CONTENT_TYPE,
            record_count=total,
        )
        self.tracker.set()
        logger.info("ZIP backup built with %s files, %s records", len(files), total)
        return artifact
