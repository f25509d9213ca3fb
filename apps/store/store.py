"""
Document store on top of the ORM.

Each collection is a set of JSON documents keyed by a string id. Values may
nest freely; ``datetime`` values survive storage because the ``data`` column
uses the tagged-timestamp JSON encoder.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from django.db import DatabaseError, transaction
from django.db.models import Q, TextField, Value
from django.db.models.fields.json import KeyTextTransform
from django.db.models.functions import Coalesce

from apps.backup.utils.timestamps import to_iso

from .models import Document

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]

LOOKUPS = {
    "==": "exact",
    "!=": "exact",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "in": "in",
}


class StoreError(Exception):
    """The store could not be reached or refused the operation."""


class DocumentNotFound(StoreError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: Dict[str, Any]

    def get(self, key: str, default=None):
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.data}


@dataclass
class Page:
    documents: List[StoredDocument] = field(default_factory=list)
    next_cursor: Optional[str] = None
    previous_cursor: Optional[str] = None


@contextmanager
def _db_errors(action: str):
    try:
        yield
    except DatabaseError as exc:
        logger.error("Store %s failed: %s", action, exc)
        raise StoreError(f"Store {action} failed: {exc}") from exc


def _as_body(body: Any) -> Dict[str, Any]:
    if not isinstance(body, Mapping):
        raise StoreError(f"Document body must be a mapping, got {type(body).__name__}")
    return dict(body)


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def _filter_q(field_path: str, op: str, value: Any) -> Q:
    if op not in LOOKUPS:
        raise StoreError(f"Unsupported operator: {op}")
    path = "data__" + "__".join(field_path.split("."))
    sample = value[0] if op == "in" and value else value
    if isinstance(sample, datetime):
        # Tagged timestamps store a fixed-width UTC ISO string under "value".
        path += "__value"
    if op == "in":
        value = [_comparable(item) for item in value]
    else:
        value = _comparable(value)
    q = Q(**{f"{path}__{LOOKUPS[op]}": value})
    return ~q if op == "!=" else q


def _to_document(row: Document) -> StoredDocument:
    return StoredDocument(id=row.doc_id, data=dict(row.data or {}))


def _sort_value(value: Any):
    # Ranked by type so mixed values never compare directly; None sorts last.
    if value is None:
        return (3, "")
    if isinstance(value, datetime):
        return (0, to_iso(value))
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    return (2, str(value))


class DocumentStore:
    def __init__(self, using: Optional[str] = None):
        self.using = using

    def _rows(self, collection: str):
        return Document.objects.using(self.using).filter(collection=collection)

    # --- reads ---
    def list_all(self, collection: str) -> List[StoredDocument]:
        with _db_errors(f"list {collection}"):
            return [_to_document(row) for row in self._rows(collection).order_by("created_at", "id")]

    def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[StoredDocument]:
        qs = self._rows(collection)
        for field_path, op, value in filters:
            qs = qs.filter(_filter_q(field_path, op, value))
        with _db_errors(f"query {collection}"):
            docs = [_to_document(row) for row in qs.order_by("created_at", "id")]
        if order_by:
            docs.sort(key=lambda doc: _sort_value(doc.data.get(order_by)), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def list_where(self, collection: str, field_path: str, op: str, value: Any) -> List[StoredDocument]:
        return self.query(collection, [(field_path, op, value)])

    def count(self, collection: str, filters: Sequence[Filter] = ()) -> int:
        qs = self._rows(collection)
        for field_path, op, value in filters:
            qs = qs.filter(_filter_q(field_path, op, value))
        with _db_errors(f"count {collection}"):
            return qs.count()

    def get_by_id(self, collection: str, doc_id: str) -> Optional[StoredDocument]:
        with _db_errors(f"get {collection}/{doc_id}"):
            row = self._rows(collection).filter(doc_id=doc_id).first()
        return _to_document(row) if row else None

    def page(
        self,
        collection: str,
        order_by: str,
        filters: Sequence[Filter] = (),
        start_after: Optional[str] = None,
        end_before: Optional[str] = None,
        limit: int = 10,
    ) -> Page:
        """
        Cursor pagination ordered by a top-level text field, ties broken by id.
        ``start_after`` moves forward from a document id, ``end_before`` backward.
        """
        qs = self._rows(collection).annotate(sort_key=Coalesce(KeyTextTransform(order_by, "data"), Value(""), output_field=TextField()))
        for field_path, op, value in filters:
            qs = qs.filter(_filter_q(field_path, op, value))

        with _db_errors(f"page {collection}"):
            cursor_id = start_after or end_before
            if cursor_id:
                anchor = qs.filter(doc_id=cursor_id).values_list("sort_key", flat=True).first()
                if anchor is None:
                    raise DocumentNotFound(collection, cursor_id)
                if start_after:
                    qs = qs.filter(Q(sort_key__gt=anchor) | Q(sort_key=anchor, doc_id__gt=cursor_id))
                else:
                    qs = qs.filter(Q(sort_key__lt=anchor) | Q(sort_key=anchor, doc_id__lt=cursor_id))

            if end_before:
                rows = list(qs.order_by("-sort_key", "-doc_id")[: limit + 1])
                has_more = len(rows) > limit
                rows = list(reversed(rows[:limit]))
            else:
                rows = list(qs.order_by("sort_key", "doc_id")[: limit + 1])
                has_more = len(rows) > limit
                rows = rows[:limit]

        documents = [_to_document(row) for row in rows]
        if not documents:
            return Page()
        if end_before:
            return Page(
                documents=documents,
                next_cursor=documents[-1].id,
                previous_cursor=documents[0].id if has_more else None,
            )
        return Page(
            documents=documents,
            next_cursor=documents[-1].id if has_more else None,
            previous_cursor=documents[0].id if start_after else None,
        )

    # --- writes ---
    def create(self, collection: str, body: Mapping[str, Any]) -> str:
        data = _as_body(body)
        with _db_errors(f"create in {collection}"):
            row = Document.objects.using(self.using).create(collection=collection, data=data)
        return row.doc_id

    def upsert(self, collection: str, doc_id: str, body: Mapping[str, Any], merge: bool = False) -> None:
        data = _as_body(body)
        with _db_errors(f"upsert {collection}/{doc_id}"):
            with transaction.atomic(using=self.using):
                row = self._rows(collection).select_for_update().filter(doc_id=doc_id).first()
                if row is None:
                    Document.objects.using(self.using).create(collection=collection, doc_id=doc_id, data=data)
                    return
                row.data = {**(row.data or {}), **data} if merge else data
                row.save(update_fields=["data", "updated_at"])

    def update_fields(self, collection: str, doc_id: str, partial: Mapping[str, Any]) -> None:
        data = _as_body(partial)
        with _db_errors(f"update {collection}/{doc_id}"):
            with transaction.atomic(using=self.using):
                row = self._rows(collection).select_for_update().filter(doc_id=doc_id).first()
                if row is None:
                    raise DocumentNotFound(collection, doc_id)
                row.data = {**(row.data or {}), **data}
                row.save(update_fields=["data", "updated_at"])

    def batch_upsert(self, writes: Iterable[Tuple[str, str, Mapping[str, Any]]]) -> int:
        """Apply every write in one transaction; any failure rolls all of them back."""
        count = 0
        with _db_errors("batch upsert"):
            with transaction.atomic(using=self.using):
                for collection, doc_id, body in writes:
                    self.upsert(collection, doc_id, body)
                    count += 1
        return count
