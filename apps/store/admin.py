from django.contrib import admin

from .models import Document


@admin.register(Document)
class DocumentAdmin(admin.ModelAdmin):
    list_display = ("collection", "doc_id", "created_at", "updated_at")
    list_filter = ("collection",)
    search_fields = ("doc_id",)
    readonly_fields = ("created_at", "updated_at")
