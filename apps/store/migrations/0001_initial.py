from django.db import migrations, models

import apps.backup.utils.timestamps
import apps.store.models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Document",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("collection", models.CharField(db_index=True, max_length=64, verbose_name="Coleção")),
                (
                    "doc_id",
                    models.CharField(
                        default=apps.store.models.new_document_id,
                        max_length=64,
                        verbose_name="Identificador",
                    ),
                ),
                (
                    "data",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        decoder=apps.backup.utils.timestamps.TimestampJSONDecoder,
                        encoder=apps.backup.utils.timestamps.TimestampJSONEncoder,
                        verbose_name="Dados",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Documento",
                "verbose_name_plural": "Documentos",
                "ordering": ["collection", "created_at", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="document",
            constraint=models.UniqueConstraint(fields=("collection", "doc_id"), name="unique_document_per_collection"),
        ),
    ]
