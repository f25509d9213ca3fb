import logging

from django.apps import apps
from django.conf import settings
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.store.store import DocumentStore, StoreError

from .exceptions import BackupEncodeError, BackupParseError, NothingToExport, UnsupportedCollection
from .notices import ERROR, SUCCESS, WARNING, Notice, collection_label, notify
from .services.exporter import BackupExporter
from .services.importer import BackupImporter
from .utils.csv_codec import decode_upload
from .utils.timestamps import to_iso

logger = logging.getLogger(__name__)

EXPORT_FAILED = Notice("Erro na exportação", "Não foi possível exportar os dados.", ERROR)
IMPORT_FAILED = Notice("Erro na importação", "O arquivo pode estar corrompido ou mal formatado.", ERROR)
STORE_DOWN = Notice("Banco de dados indisponível", "Tente novamente em alguns instantes.", ERROR)


class UploadRejected(Exception):
    def __init__(self, notice: Notice):
        super().__init__(notice.description)
        self.notice = notice


def _tracker():
    return apps.get_app_config("backup").tracker


def _exporter():
    return BackupExporter(DocumentStore(), _tracker())


def _download(artifact):
    response = HttpResponse(artifact.content, content_type=artifact.content_type)
    response["Content-Disposition"] = f'attachment; filename="{artifact.filename}"'
    return response


def _reply(request, notice: Notice, http_status=status.HTTP_200_OK, **extra):
    notify(request, notice)
    return Response({"notice": notice.as_dict(), **extra}, status=http_status)


def _failure(request, exc: Exception, action: str, fallback: Notice):
    if isinstance(exc, NothingToExport):
        if exc.collection:
            notice = Notice("Nenhum dado", f"Não há dados de {collection_label(exc.collection)} para exportar.", WARNING)
        else:
            notice = Notice("Nenhum dado", "Não há dados para exportar.", WARNING)
        return _reply(request, notice, status.HTTP_404_NOT_FOUND)
    if isinstance(exc, UnsupportedCollection):
        notice = Notice("Coleção não suportada", f"{exc.collection} não pode ser usada aqui.", ERROR)
        return _reply(request, notice, status.HTTP_404_NOT_FOUND if exc.action == "export" else status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, UploadRejected):
        return _reply(request, exc.notice, status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, BackupParseError):
        logger.warning("%s rejected: %s", action, exc)
        return _reply(request, IMPORT_FAILED, status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, StoreError):
        logger.error("%s failed, store unavailable: %s", action, exc)
        return _reply(request, STORE_DOWN, status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(exc, BackupEncodeError):
        logger.error("%s failed: %s", action, exc)
    else:
        logger.exception("%s failed unexpectedly", action)
    return _reply(request, fallback, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _read_upload(request) -> str:
    upload = request.FILES.get("file")
    if upload is None:
        raise UploadRejected(Notice("Nenhum arquivo", "Selecione um arquivo para importar.", ERROR))
    try:
        if upload.size > settings.BACKUP_MAX_UPLOAD_BYTES:
            raise UploadRejected(Notice("Arquivo muito grande", "O arquivo excede o tamanho permitido.", ERROR))
        return decode_upload(upload.read())
    finally:
        upload.close()


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def export_json(request):
    try:
        artifact = _exporter().export_json()
    except Exception as exc:
        return _failure(request, exc, "JSON export", EXPORT_FAILED)
    notify(request, Notice("Backup Concluído", "Backup completo em JSON exportado com sucesso."))
    return _download(artifact)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def export_csv(request, collection):
    try:
        artifact = _exporter().export_csv(collection)
    except Exception as exc:
        return _failure(request, exc, f"CSV export of {collection}", EXPORT_FAILED)
    notify(
        request,
        Notice(
            "Exportação Concluída",
            f"{artifact.record_count} registros de {collection_label(collection)} exportados com sucesso.",
        ),
    )
    return _download(artifact)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def export_zip(request):
    try:
        artifact = _exporter().export_zip()
    except Exception as exc:
        return _failure(request, exc, "ZIP export", EXPORT_FAILED)
    notify(request, Notice("Backup Concluído", "Backup completo exportado em ZIP."))
    return _download(artifact)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def import_json(request):
    try:
        result = BackupImporter(DocumentStore()).restore_json(_read_upload(request))
    except Exception as exc:
        return _failure(request, exc, "JSON restore", IMPORT_FAILED)
    notice = Notice("Restauração Concluída", f"{result.total} registros restaurados com sucesso.")
    return _reply(request, notice, restored=result.counts, total=result.total)


@api_view(["POST"])
@permission_classes([IsAuthenticated])
def import_csv(request, collection):
    try:
        result = BackupImporter(DocumentStore()).import_csv(collection, _read_upload(request))
    except Exception as exc:
        return _failure(request, exc, f"CSV import into {collection}", IMPORT_FAILED)
    notice = Notice(
        "Importação Concluída",
        f"{result.success_count} registros importados. {result.error_count} registros com erro.",
        WARNING if result.error_count else SUCCESS,
    )
    return _reply(request, notice, successCount=result.success_count, errorCount=result.error_count)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def backup_status(request):
    tracker = _tracker()
    last_backup = tracker.get()
    return Response(
        {
            "lastBackup": to_iso(last_backup) if last_backup else None,
            "stale": tracker.is_stale(),
            "staleAfterHours": settings.BACKUP_STALE_AFTER_HOURS,
        }
    )
