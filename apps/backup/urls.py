from django.urls import path

from . import views

urlpatterns = [
    path("status/", views.backup_status, name="backup_status"),
    path("export/json/", views.export_json, name="backup_export_json"),
    path("export/zip/", views.export_zip, name="backup_export_zip"),
    path("export/csv/<str:collection>/", views.export_csv, name="backup_export_csv"),
    path("import/json/", views.import_json, name="backup_import_json"),
    path("import/csv/<str:collection>/", views.import_csv, name="backup_import_csv"),
]
