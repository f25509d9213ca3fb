"""
Returns and warranties.

Display names are copied from the referenced part/customer/mechanic/supplier
when the movement is written and are not refreshed afterwards.
"""
from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Mapping, Optional

from django.utils import timezone

from apps.store.store import DocumentNotFound, DocumentStore, StoredDocument

from ..constants import (
    ACTIVE,
    CUSTOMERS,
    KIND_RETURN,
    KIND_WARRANTY,
    MOVEMENTS,
    OUTCOME_PENDING,
    PARTS,
    SUPPLIERS,
)

logger = logging.getLogger(__name__)

# Fields owned by one variant; never copied onto the other.
RETURN_ONLY_FIELDS = ("acaoRequisicao",)
WARRANTY_ONLY_FIELDS = (
    "fornecedorId",
    "fornecedorNome",
    "requisicaoGarantia",
    "defeitoRelatado",
    "nfCompra",
    "valorPeca",
    "acaoRetorno",
    "nfRetorno",
)


class MovementError(Exception):
    pass


class ReferenceNotFound(MovementError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Referenced {collection}/{doc_id} does not exist")


class NotAWarranty(MovementError):
    pass


def _require(store: DocumentStore, collection: str, doc_id: str) -> StoredDocument:
    doc = store.get_by_id(collection, doc_id) if doc_id else None
    if doc is None:
        raise ReferenceNotFound(collection, doc_id)
    return doc


def _base_body(store: DocumentStore, data: Mapping[str, Any], kind: str) -> Dict[str, Any]:
    foreign = WARRANTY_ONLY_FIELDS if kind == KIND_RETURN else RETURN_ONLY_FIELDS
    part = _require(store, PARTS, data["pecaId"])
    customer = _require(store, CUSTOMERS, data["clienteId"])
    mechanic = _require(store, CUSTOMERS, data["mecanicoId"])
    body = {key: value for key, value in data.items() if key not in foreign}
    body.update(
        {
            "tipoMovimentacao": kind,
            "pecaCodigo": data.get("pecaCodigo") or part.get("codigoPeca", ""),
            "pecaDescricao": part.get("descricao", ""),
            "clienteNome": customer.get("nomeRazaoSocial", ""),
            "mecanicoNome": mechanic.get("nomeRazaoSocial", ""),
            "dataMovimentacao": timezone.now(),
            "requisicaoVenda": data.get("requisicaoVenda") or "",
            "observacao": data.get("observacao") or "",
        }
    )
    return body


def register_return(store: DocumentStore, data: Mapping[str, Any]) -> str:
    body = _base_body(store, data, KIND_RETURN)
    doc_id = store.create(MOVEMENTS, body)
    logger.info("Registered return %s for part %s", doc_id, body["pecaCodigo"])
    return doc_id


def register_warranty(store: DocumentStore, data: Mapping[str, Any]) -> str:
    body = _base_body(store, data, KIND_WARRANTY)
    supplier = _require(store, SUPPLIERS, data["fornecedorId"])
    body.update(
        {
            "fornecedorNome": supplier.get("razaoSocial", ""),
            "valorPeca": data.get("valorPeca") or 0,
            "acaoRetorno": OUTCOME_PENDING,
            "nfRetorno": "",
        }
    )
    doc_id = store.create(MOVEMENTS, body)
    logger.info("Registered warranty %s for part %s", doc_id, body["pecaCodigo"])
    return doc_id


def update_warranty_outcome(store: DocumentStore, movement_id: str, data: Mapping[str, Any]) -> None:
    doc = store.get_by_id(MOVEMENTS, movement_id)
    if doc is None:
        raise DocumentNotFound(MOVEMENTS, movement_id)
    if doc.get("tipoMovimentacao") != KIND_WARRANTY:
        raise NotAWarranty(f"{movement_id} is not a warranty")
    store.update_fields(
        MOVEMENTS,
        movement_id,
        {"acaoRetorno": data["acaoRetorno"], "nfRetorno": data.get("nfRetorno") or ""},
    )


def _start_of_day(day: date) -> datetime:
    return timezone.make_aware(datetime.combine(day, time.min))


def _end_of_day(day: date) -> datetime:
    return timezone.make_aware(datetime.combine(day, time(23, 59, 59, 999000)))


def search_movements(store: DocumentStore, criteria: Mapping[str, Any]) -> List[StoredDocument]:
    kind = criteria.get("tipoMovimentacao", "Todas")
    outcome = criteria.get("statusGarantia", "Todos")
    warranty_scope = kind in (KIND_WARRANTY, "Todas")

    filters = []
    if kind != "Todas":
        filters.append(("tipoMovimentacao", "==", kind))
    if outcome != "Todos" and warranty_scope:
        filters.append(("acaoRetorno", "==", outcome))
    if criteria.get("dataInicio"):
        filters.append(("dataMovimentacao", ">=", _start_of_day(criteria["dataInicio"])))
    if criteria.get("dataFim"):
        filters.append(("dataMovimentacao", "<=", _end_of_day(criteria["dataFim"])))
    for key in ("clienteId", "mecanicoId", "pecaCodigo", "requisicaoVenda"):
        if criteria.get(key):
            filters.append((key, "==", criteria[key]))
    if criteria.get("fornecedorId") and warranty_scope:
        filters.append(("fornecedorId", "==", criteria["fornecedorId"]))
    if criteria.get("numeroNF"):
        filters.append(("nfSaida", "==", criteria["numeroNF"]))

    return store.query(MOVEMENTS, filters, order_by="dataMovimentacao", descending=True)


def dashboard_stats(store: DocumentStore, today: Optional[date] = None) -> Dict[str, int]:
    today = today or timezone.localdate()
    first_day = today.replace(day=1)
    last_day = first_day + timedelta(days=calendar.monthrange(today.year, today.month)[1] - 1)
    return {
        "devolucoesMes": store.count(
            MOVEMENTS,
            [
                ("tipoMovimentacao", "==", KIND_RETURN),
                ("dataMovimentacao", ">=", _start_of_day(first_day)),
                ("dataMovimentacao", "<=", _end_of_day(last_day)),
            ],
        ),
        "garantiasPendentes": store.count(
            MOVEMENTS,
            [("tipoMovimentacao", "==", KIND_WARRANTY), ("acaoRetorno", "==", OUTCOME_PENDING)],
        ),
        "clientesAtivos": store.count(CUSTOMERS, [("status", "==", ACTIVE)]),
        "pecasAtivas": store.count(PARTS, [("status", "==", ACTIVE)]),
    }
