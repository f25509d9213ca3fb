import logging
from functools import wraps

from django.http import Http404
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.store.store import DocumentNotFound, DocumentStore, StoreError

from .constants import ACTIVE, MOVEMENTS
from .serializers import (
    CompanySerializer,
    MovementFilterSerializer,
    ReturnSerializer,
    StatusSerializer,
    WarrantyOutcomeSerializer,
    WarrantySerializer,
)
from .services import movements, records

logger = logging.getLogger(__name__)


def _store_errors(view):
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            return view(request, *args, **kwargs)
        except DocumentNotFound as exc:
            return Response({"detail": "Registro não encontrado.", "id": exc.doc_id}, status=status.HTTP_404_NOT_FOUND)
        except movements.ReferenceNotFound as exc:
            return Response(
                {"detail": "Cliente, mecânico, fornecedor ou peça não encontrado.", "collection": exc.collection},
                status=status.HTTP_400_BAD_REQUEST,
            )
        except movements.NotAWarranty:
            return Response({"detail": "A movimentação não é uma garantia."}, status=status.HTTP_400_BAD_REQUEST)
        except StoreError:
            logger.exception("Store unavailable for %s", request.path)
            return Response({"detail": "Banco de dados indisponível."}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    return wrapper


def _kind_or_404(collection: str):
    kind = records.get_kind(collection)
    if kind is None:
        raise Http404("Unknown collection.")
    return kind


def _page_payload(page):
    return {
        "results": [doc.to_dict() for doc in page.documents],
        "next": page.next_cursor,
        "previous": page.previous_cursor,
    }


@api_view(["GET", "POST"])
@permission_classes([IsAuthenticated])
@_store_errors
def record_list(request, collection):
    kind = _kind_or_404(collection)
    store = DocumentStore()
    if request.method == "POST":
        serializer = kind.serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        doc_id = records.create_record(store, collection, serializer.validated_data)
        return Response({"id": doc_id}, status=status.HTTP_201_CREATED)

    page = records.list_records(
        store,
        collection,
        status=request.query_params.get("status", ACTIVE),
        start_after=request.query_params.get("after") or None,
        end_before=request.query_params.get("before") or None,
    )
    return Response(_page_payload(page))


@api_view(["GET", "PATCH"])
@permission_classes([IsAuthenticated])
@_store_errors
def record_detail(request, collection, doc_id):
    kind = _kind_or_404(collection)
    store = DocumentStore()
    if request.method == "PATCH":
        serializer = kind.serializer_class(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        records.update_record(store, collection, doc_id, serializer.validated_data)
        return Response({"success": True})

    doc = store.get_by_id(collection, doc_id)
    if doc is None:
        raise DocumentNotFound(collection, doc_id)
    return Response(doc.to_dict())


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@_store_errors
def record_status(request, collection, doc_id):
    _kind_or_404(collection)
    serializer = StatusSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    records.set_status(DocumentStore(), collection, doc_id, serializer.validated_data["status"])
    return Response({"success": True})


@api_view(["GET"])
@permission_classes([IsAuthenticated])
@_store_errors
def record_options(request, collection):
    _kind_or_404(collection)
    options = records.lookup_options(DocumentStore(), collection, role=request.query_params.get("role"))
    return Response(options)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
@_store_errors
def part_lookup(request):
    code = (request.query_params.get("codigo") or "").strip()
    part = records.find_active_part(DocumentStore(), code) if code else None
    if part is None:
        return Response({"detail": "Peça não encontrada."}, status=status.HTTP_404_NOT_FOUND)
    return Response(part.to_dict())


@api_view(["GET"])
@permission_classes([IsAuthenticated])
@_store_errors
def movement_search(request):
    criteria = MovementFilterSerializer(data=request.query_params)
    criteria.is_valid(raise_exception=True)
    docs = movements.search_movements(DocumentStore(), criteria.validated_data)
    return Response([doc.to_dict() for doc in docs])


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@_store_errors
def return_create(request):
    serializer = ReturnSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    doc_id = movements.register_return(DocumentStore(), serializer.validated_data)
    return Response({"id": doc_id}, status=status.HTTP_201_CREATED)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
@_store_errors
def warranty_create(request):
    serializer = WarrantySerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    doc_id = movements.register_warranty(DocumentStore(), serializer.validated_data)
    return Response({"id": doc_id}, status=status.HTTP_201_CREATED)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
@_store_errors
def movement_detail(request, doc_id):
    doc = DocumentStore().get_by_id(MOVEMENTS, doc_id)
    if doc is None:
        raise DocumentNotFound(MOVEMENTS, doc_id)
    return Response(doc.to_dict())


@api_view(["PATCH"])
@permission_classes([IsAuthenticated])
@_store_errors
def warranty_outcome(request, doc_id):
    serializer = WarrantyOutcomeSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    movements.update_warranty_outcome(DocumentStore(), doc_id, serializer.validated_data)
    return Response({"success": True})


@api_view(["GET", "PUT"])
@permission_classes([IsAuthenticated])
@_store_errors
def company(request):
    store = DocumentStore()
    if request.method == "PUT":
        serializer = CompanySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        records.save_company(store, serializer.validated_data)
        return Response({"success": True})
    return Response(records.get_company(store))


@api_view(["GET"])
@permission_classes([IsAuthenticated])
@_store_errors
def dashboard(request):
    return Response(movements.dashboard_stats(DocumentStore()))
