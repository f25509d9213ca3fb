import uuid

from django.db import models

from apps.backup.utils.timestamps import TimestampJSONDecoder, TimestampJSONEncoder


DOC_ID_MAX_LENGTH = 64


def new_document_id() -> str:
    return uuid.uuid4().hex


class Document(models.Model):
    collection = models.CharField("Coleção", max_length=64, db_index=True)
    doc_id = models.CharField("Identificador", max_length=DOC_ID_MAX_LENGTH, default=new_document_id)
    data = models.JSONField(
        "Dados",
        default=dict,
        blank=True,
        encoder=TimestampJSONEncoder,
        decoder=TimestampJSONDecoder,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["collection", "created_at", "id"]
        verbose_name = "Documento"
        verbose_name_plural = "Documentos"
        constraints = [
            models.UniqueConstraint(fields=["collection", "doc_id"], name="unique_document_per_collection"),
        ]

    def __str__(self):
        return f"{self.collection}/{self.doc_id}"
