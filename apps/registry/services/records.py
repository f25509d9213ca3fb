"""Customers/mechanics, suppliers, parts and the company config singleton."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Type

from rest_framework import serializers

from apps.store.store import DocumentStore, Page, StoredDocument

from ..constants import (
    ACTIVE,
    COMPANY_CONFIG_ID,
    CUSTOMERS,
    ITEMS_PER_PAGE,
    OPTIONS_LIMIT,
    PARTS,
    SETTINGS,
    SUPPLIERS,
)
from ..serializers import CustomerSerializer, PartSerializer, SupplierSerializer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordKind:
    collection: str
    serializer_class: Type[serializers.Serializer]
    label_field: str


RECORD_KINDS: Dict[str, RecordKind] = {
    CUSTOMERS: RecordKind(CUSTOMERS, CustomerSerializer, "nomeRazaoSocial"),
    SUPPLIERS: RecordKind(SUPPLIERS, SupplierSerializer, "razaoSocial"),
    PARTS: RecordKind(PARTS, PartSerializer, "descricao"),
}

CUSTOMER_ROLES = ("cliente", "mecanico")


def get_kind(collection: str) -> Optional[RecordKind]:
    return RECORD_KINDS.get(collection)


def create_record(store: DocumentStore, collection: str, data: Mapping[str, Any]) -> str:
    body = dict(data)
    body.setdefault("status", ACTIVE)
    doc_id = store.create(collection, body)
    logger.info("Created %s/%s", collection, doc_id)
    return doc_id


def update_record(store: DocumentStore, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
    store.update_fields(collection, doc_id, data)


def set_status(store: DocumentStore, collection: str, doc_id: str, status: str) -> None:
    # Inactivation is the only deletion these records support.
    store.update_fields(collection, doc_id, {"status": status})
    logger.info("Status of %s/%s set to %s", collection, doc_id, status)


def list_records(
    store: DocumentStore,
    collection: str,
    status: str = ACTIVE,
    start_after: Optional[str] = None,
    end_before: Optional[str] = None,
) -> Page:
    kind = RECORD_KINDS[collection]
    return store.page(
        collection,
        order_by=kind.label_field,
        filters=[("status", "==", status)],
        start_after=start_after,
        end_before=end_before,
        limit=ITEMS_PER_PAGE,
    )


def lookup_options(store: DocumentStore, collection: str, role: Optional[str] = None) -> List[Dict[str, str]]:
    """Active records as ``{value, label}`` pairs for pickers, optionally only customers or mechanics."""
    kind = RECORD_KINDS[collection]
    filters = [("status", "==", ACTIVE)]
    if collection == CUSTOMERS and role in CUSTOMER_ROLES:
        filters.append((f"tipo.{role}", "==", True))
    docs = store.query(collection, filters, order_by=kind.label_field, limit=OPTIONS_LIMIT)
    return [{"value": doc.id, "label": doc.get(kind.label_field, "")} for doc in docs]


def find_active_part(store: DocumentStore, code: str) -> Optional[StoredDocument]:
    docs = store.query(PARTS, [("codigoPeca", "==", code), ("status", "==", ACTIVE)], limit=1)
    return docs[0] if docs else None


def get_company(store: DocumentStore) -> Dict[str, Any]:
    doc = store.get_by_id(SETTINGS, COMPANY_CONFIG_ID)
    return dict(doc.data) if doc else {}


def save_company(store: DocumentStore, data: Mapping[str, Any]) -> None:
    store.upsert(SETTINGS, COMPANY_CONFIG_ID, data, merge=True)
